# Copyright © 2017 Collabora Ltd.
#
# SPDX-License-Identifier: MIT
#
# Permission is hereby granted, free of charge, to any person obtaining
# a copy of this software and associated documentation files (the
# "Software"), to deal in the Software without restriction, including
# without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to
# permit persons to whom the Software is furnished to do so, subject to
# the following conditions:
#
# The above copyright notice and this permission notice shall be included
# in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT.
# IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY
# CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT,
# TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE
# SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.

"""
Low-level writers and readers for the formats that make up a .deb:
the ar container and the (compressed) tarballs inside it.
"""

import hashlib
import io
import logging
import os
import tarfile
import time
import typing

from debian import arfile

from mkdeb.entry import (
    DIRECTORY,
    HARDLINK,
    DEFAULT_DIR_MODE,
    Entry,
    normalize_path,
)
from mkdeb.errors import PackagingFailure, UnsupportedCompression


logger = logging.getLogger('mkdeb.archive')

AR_MAGIC = b'!<arch>\n'
#: The size field of an ar header is 10 decimal digits
AR_MAX_SIZE = 10 ** 10 - 1
AR_MEMBER_MODE = '100644'

#: Compression name -> tarfile compression suffix
COMPRESSIONS = {
    'none': '',
    'gzip': 'gz',
    'bzip2': 'bz2',
    'xz': 'xz',
}


def check_compression(compression):
    # type: (str) -> None
    if compression not in COMPRESSIONS:
        raise UnsupportedCompression(
            'The compression method {!r} is not supported (use one of '
            '{})'.format(compression, ', '.join(sorted(COMPRESSIONS)))
        )


def tar_member_name(basename, compression):
    # type: (str, str) -> str
    """
    Return e.g. 'data.tar.xz' for basename 'data' and compression 'xz'.
    """
    check_compression(compression)
    suffix = COMPRESSIONS[compression]

    if suffix:
        return '{}.tar.{}'.format(basename, suffix)
    else:
        return '{}.tar'.format(basename)


def open_tar_writer(fileobj, compression):
    # type: (typing.BinaryIO, str) -> tarfile.TarFile
    check_compression(compression)
    suffix = COMPRESSIONS[compression]
    return tarfile.open(
        fileobj=fileobj,
        mode='w:' + suffix,
        format=tarfile.GNU_FORMAT,
    )


class ChecksumRecord(typing.NamedTuple):
    name: str
    size: int
    md5: str
    sha1: str
    sha256: str


class Digester:

    """
    Accumulates size, MD5, SHA-1 and SHA-256 of a byte stream.
    """

    def __init__(self):
        # type: () -> None
        self.size = 0
        self._hashes = (hashlib.md5(), hashlib.sha1(), hashlib.sha256())

    def update(self, data):
        # type: (bytes) -> None
        self.size += len(data)

        for h in self._hashes:
            h.update(data)

    def record(self, name):
        # type: (str) -> ChecksumRecord
        md5, sha1, sha256 = (h.hexdigest() for h in self._hashes)
        return ChecksumRecord(name, self.size, md5, sha1, sha256)

    @classmethod
    def of_bytes(cls, name, data):
        # type: (str, bytes) -> ChecksumRecord
        digester = cls()
        digester.update(data)
        return digester.record(name)


class DigestingReader:

    def __init__(self, fileobj):
        # type: (typing.Any) -> None
        self._fileobj = fileobj
        self.digester = Digester()

    def read(self, n=-1):
        # type: (int) -> bytes
        data = self._fileobj.read(n)
        self.digester.update(data)
        return data


class DigestingWriter:

    def __init__(self, fileobj):
        # type: (typing.BinaryIO) -> None
        self._fileobj = fileobj
        self.digester = Digester()

    def write(self, data):
        # type: (bytes) -> int
        self.digester.update(data)
        return self._fileobj.write(data)

    def tell(self):
        # type: () -> int
        return self.digester.size

    def flush(self):
        # type: () -> None
        self._fileobj.flush()


class ArWriter:

    """
    Write a System V/GNU style ar archive of the kind dpkg expects:
    members have owner 0, group 0 and mode 100644.
    """

    def __init__(self, fileobj, mtime=None):
        # type: (typing.BinaryIO, typing.Optional[int]) -> None
        if mtime is None:
            mtime = int(time.time())

        self.fileobj = fileobj
        self.mtime = mtime
        self.members = []       # type: typing.List[str]
        self.fileobj.write(AR_MAGIC)

    def _header(self, name, size):
        # type: (str, int) -> bytes
        if len(name) > 16 or '/' in name:
            raise ValueError(
                'ar member name {!r} must be at most 16 characters and '
                'must not contain "/"'.format(name)
            )

        if not 0 <= size <= AR_MAX_SIZE:
            raise PackagingFailure(
                'ar member {} has size {}, which does not fit in an ar '
                'header'.format(name, size)
            )

        return '{:<16}{:<12}{:<6}{:<6}{:<8}{:<10}`\n'.format(
            name, self.mtime, 0, 0, AR_MEMBER_MODE, size,
        ).encode('ascii')

    def add_bytes(self, name, data):
        # type: (str, bytes) -> None
        self.add_stream(name, io.BytesIO(data), len(data))

    def add_stream(self, name, reader, size):
        # type: (str, typing.BinaryIO, int) -> None
        self.fileobj.write(self._header(name, size))
        remaining = size

        while remaining > 0:
            block = reader.read(min(remaining, 1024 * 1024))

            if not block:
                raise PackagingFailure(
                    'ar member {} is shorter than {} bytes'.format(
                        name, size,
                    )
                )

            self.fileobj.write(block)
            remaining -= len(block)

        if size % 2:
            self.fileobj.write(b'\n')

        self.members.append(name)

    def add_file(self, name, path):
        # type: (str, str) -> None
        with open(path, 'rb') as reader:
            self.add_stream(name, reader, os.fstat(reader.fileno()).st_size)


def open_ar(path):
    # type: (str) -> arfile.ArFile
    """
    Index the members of an ar archive such as a .deb.
    """
    try:
        return arfile.ArFile(path)
    except (arfile.ArError, OSError, ValueError) as e:
        raise PackagingFailure(
            'Unable to read {} as an ar archive: {}'.format(path, e)
        ) from e


def read_member(member):
    # type: (arfile.ArMember) -> bytes
    try:
        return member.read()
    finally:
        member.close()


def open_member_tar(data):
    # type: (bytes) -> tarfile.TarFile
    """
    Open a tarball read from an ar member, whatever its compression.
    """
    return tarfile.open(fileobj=io.BytesIO(data), mode='r:*')


class TarBuilder:

    """
    Writes entries into a (possibly compressed) tarball and records the
    size and digests of every regular file from the same pass.

    Parent directories that were never emitted are created, and
    directories emitted more than once are only written the first time.
    """

    def __init__(self, fileobj, compression):
        # type: (typing.BinaryIO, str) -> None
        self.tar = open_tar_writer(fileobj, compression)
        self.checksums = []     # type: typing.List[ChecksumRecord]
        self.paths = set()      # type: typing.Set[str]
        self.logger = logger.getChild('TarBuilder')

    def __enter__(self):
        return self

    def __exit__(self, et, ev, tb):
        self.close()
        return False

    def close(self):
        # type: () -> None
        self.tar.close()

    @property
    def data_size(self):
        # type: () -> int
        return sum(c.size for c in self.checksums)

    def _ensure_parents(self, path, mtime):
        # type: (str, int) -> None
        parts = path.split('/')[:-1]

        for i in range(1, len(parts) + 1):
            parent = '/'.join(parts[:i])

            if parent not in self.paths:
                self._add(
                    Entry(
                        path=parent,
                        kind=DIRECTORY,
                        mode=DEFAULT_DIR_MODE,
                        uid=0,
                        gid=0,
                        user='root',
                        group='root',
                        mtime=mtime,
                    ),
                    None,
                )

    def add(self, entry, fileobj=None):
        # type: (Entry, typing.Optional[typing.BinaryIO]) -> None
        path = normalize_path(entry.path)

        if not path:
            return

        entry = entry._replace(path=path)

        if path in self.paths:
            if not entry.is_dir:
                self.logger.warning('Skipping duplicate entry %s', path)

            return

        self._ensure_parents(path, entry.mtime)
        self._add(entry, fileobj)

    def _add(self, entry, fileobj):
        # type: (Entry, typing.Optional[typing.BinaryIO]) -> None
        if entry.kind == HARDLINK:
            entry = entry._replace(
                linkname='./' + normalize_path(entry.linkname))

        info = entry.to_tarinfo()
        self.paths.add(entry.path)

        if not entry.is_file:
            self.tar.addfile(info)
            return

        if fileobj is None:
            raise PackagingFailure(
                'No content supplied for {}'.format(entry.path))

        reader = DigestingReader(fileobj)
        self.tar.addfile(info, reader)

        if reader.digester.size != entry.size:
            raise PackagingFailure(
                '{}: read {} bytes, expected {}'.format(
                    entry.path, reader.digester.size, entry.size,
                )
            )

        self.checksums.append(reader.digester.record(entry.path))
