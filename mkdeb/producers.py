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
Sources of archive entries.

Each producer walks its source and hands (entry, stream) pairs to a
consumer callable. The stream is None for anything that is not a
regular file. Entries are filtered by include/exclude patterns on the
source-relative path and then passed through the producer's mappers.
"""

import fnmatch
import grp
import logging
import os
import pwd
import stat
import tarfile
import time
import typing

from mkdeb.entry import (
    DIRECTORY,
    FILE,
    HARDLINK,
    SYMLINK,
    DEFAULT_LINK_MODE,
    Entry,
    normalize_path,
)
from mkdeb.errors import PackagingFailure, SourceUnreadable
from mkdeb.mapping import Mapper, apply_mappers


logger = logging.getLogger('mkdeb.producers')

Consumer = typing.Callable[[Entry, typing.Optional[typing.BinaryIO]], None]


def _matches(path, pattern):
    # type: (str, str) -> bool
    if fnmatch.fnmatchcase(path, pattern):
        return True

    # '**/' also matches zero directories, as in Ant and rsync
    while pattern.startswith('**/'):
        pattern = pattern[3:]

        if fnmatch.fnmatchcase(path, pattern):
            return True

    return False


def _user_name(uid):
    # type: (int) -> str
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return ''


def _group_name(gid):
    # type: (int) -> str
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return ''


class SourceReader:

    """
    Read exactly size bytes from a file object, raising SourceUnreadable
    if it ends early or fails.
    """

    def __init__(self, fileobj, name, size):
        # type: (typing.BinaryIO, str, int) -> None
        self._fileobj = fileobj
        self.name = name
        self.remaining = size

    def read(self, n=-1):
        # type: (int) -> bytes
        if n < 0 or n > self.remaining:
            n = self.remaining

        if n == 0:
            return b''

        try:
            data = self._fileobj.read(n)
        except (OSError, tarfile.TarError, EOFError) as e:
            raise SourceUnreadable(self.name, str(e)) from e

        if not data:
            raise SourceUnreadable(
                self.name,
                'ended {} bytes before its declared size'.format(
                    self.remaining,
                ),
            )

        self.remaining -= len(data)
        return data


class DataProducer:

    def __init__(
        self,
        includes=(),    # type: typing.Sequence[str]
        excludes=(),    # type: typing.Sequence[str]
        mappers=()      # type: typing.Sequence[Mapper]
    ):
        # type: (...) -> None
        self.includes = tuple(includes)
        self.excludes = tuple(excludes)
        self.mappers = tuple(mappers)

    def is_included(self, path):
        # type: (str) -> bool
        if self.includes and not any(
            _matches(path, p) for p in self.includes
        ):
            return False

        return not any(_matches(path, p) for p in self.excludes)

    def emit(
        self,
        consumer,       # type: Consumer
        entry,          # type: Entry
        fileobj=None    # type: typing.Optional[typing.BinaryIO]
    ):
        # type: (...) -> None
        if not self.is_included(entry.path):
            logger.debug('Excluded %s', entry.path)
            return

        consumer(apply_mappers(entry, self.mappers), fileobj)

    def produce(self, consumer):
        # type: (Consumer) -> None
        raise NotImplementedError

    def _entry_from_stat(self, path, name, st):
        # type: (str, str, os.stat_result) -> Entry
        if stat.S_ISDIR(st.st_mode):
            kind = DIRECTORY
            linkname = ''
        elif stat.S_ISLNK(st.st_mode):
            kind = SYMLINK
            linkname = os.readlink(path)
        else:
            kind = FILE
            linkname = ''

        return Entry(
            path=name,
            kind=kind,
            size=st.st_size if kind == FILE else 0,
            mode=stat.S_IMODE(st.st_mode),
            uid=st.st_uid,
            gid=st.st_gid,
            user=_user_name(st.st_uid),
            group=_group_name(st.st_gid),
            linkname=linkname,
            mtime=int(st.st_mtime),
        )


class DataProducerFile(DataProducer):

    """
    A single regular file. It is named after its basename unless dest
    is given.
    """

    def __init__(self, src, dest=None, **kwargs):
        # type: (str, typing.Optional[str], typing.Any) -> None
        super().__init__(**kwargs)
        self.src = src
        self.dest = dest

    def produce(self, consumer):
        # type: (Consumer) -> None
        name = normalize_path(self.dest or os.path.basename(self.src))

        try:
            reader = open(self.src, 'rb')
            st = os.fstat(reader.fileno())
        except OSError as e:
            raise SourceUnreadable(self.src, e.strerror or str(e)) from e

        with reader:
            if not stat.S_ISREG(st.st_mode):
                raise SourceUnreadable(self.src, 'not a regular file')

            entry = self._entry_from_stat(self.src, name, st)
            self.emit(
                consumer,
                entry,
                SourceReader(reader, self.src, entry.size),
            )

    def __repr__(self):
        return 'DataProducerFile({!r})'.format(self.src)


class DataProducerDirectory(DataProducer):

    """
    A directory tree, walked in sorted order. The top-level directory
    itself is not emitted.
    """

    def __init__(self, src, follow_symlinks=False, **kwargs):
        # type: (str, bool, typing.Any) -> None
        super().__init__(**kwargs)
        self.src = src
        self.follow_symlinks = follow_symlinks

    def produce(self, consumer):
        # type: (Consumer) -> None
        if not os.path.isdir(self.src):
            raise SourceUnreadable(self.src, 'not a directory')

        self._walk(consumer, self.src, '')

    def _walk(self, consumer, directory, relative):
        # type: (Consumer, str, str) -> None
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            raise SourceUnreadable(directory, e.strerror or str(e)) from e

        for name in names:
            path = os.path.join(directory, name)
            archive_name = relative + name

            try:
                if self.follow_symlinks:
                    st = os.stat(path)
                else:
                    st = os.lstat(path)
            except OSError as e:
                raise SourceUnreadable(path, e.strerror or str(e)) from e

            if stat.S_ISDIR(st.st_mode):
                self.emit(
                    consumer,
                    self._entry_from_stat(path, archive_name, st),
                )
                self._walk(consumer, path, archive_name + '/')
            elif stat.S_ISLNK(st.st_mode):
                self.emit(
                    consumer,
                    self._entry_from_stat(path, archive_name, st),
                )
            elif stat.S_ISREG(st.st_mode):
                entry = self._entry_from_stat(path, archive_name, st)

                if not self.is_included(archive_name):
                    continue

                try:
                    reader = open(path, 'rb')
                except OSError as e:
                    raise SourceUnreadable(
                        path, e.strerror or str(e),
                    ) from e

                with reader:
                    self.emit(
                        consumer,
                        entry,
                        SourceReader(reader, path, entry.size),
                    )
            else:
                logger.warning('Ignoring special file %s', path)

    def __repr__(self):
        return 'DataProducerDirectory({!r})'.format(self.src)


class DataProducerArchive(DataProducer):

    """
    The members of an existing tarball, read as a stream. gzip, bzip2
    and xz compression are detected automatically.
    """

    def __init__(self, src, **kwargs):
        # type: (str, typing.Any) -> None
        super().__init__(**kwargs)
        self.src = src

    def produce(self, consumer):
        # type: (Consumer) -> None
        try:
            with tarfile.open(self.src, 'r|*') as reader:
                for info in reader:
                    self._produce_member(consumer, reader, info)
        except (OSError, EOFError, tarfile.TarError) as e:
            raise SourceUnreadable(self.src, str(e)) from e

    def _produce_member(self, consumer, reader, info):
        # type: (Consumer, tarfile.TarFile, tarfile.TarInfo) -> None
        if not (info.isreg() or info.isdir() or info.issym() or
                info.islnk()):
            logger.warning(
                'Ignoring special file %s in %s', info.name, self.src)
            return

        entry = Entry.from_tarinfo(info)

        try:
            entry = entry._replace(path=normalize_path(entry.path))

            if entry.kind == HARDLINK:
                entry = entry._replace(
                    linkname=normalize_path(entry.linkname))
        except PackagingFailure as e:
            raise SourceUnreadable(
                '{}:{}'.format(self.src, info.name), str(e),
            ) from e

        if not entry.path:
            return

        if entry.is_file:
            member = reader.extractfile(info)
            assert member is not None
            self.emit(
                consumer,
                entry,
                SourceReader(
                    member,
                    '{}:{}'.format(self.src, info.name),
                    entry.size,
                ),
            )
        else:
            self.emit(consumer, entry)

    def __repr__(self):
        return 'DataProducerArchive({!r})'.format(self.src)


class DataProducerLink(DataProducer):

    """
    A symbolic or hard link that does not exist on disk.
    """

    def __init__(self, path, target, symlink=True, **kwargs):
        # type: (str, str, bool, typing.Any) -> None
        super().__init__(**kwargs)
        self.path = path
        self.target = target
        self.symlink = symlink

    def produce(self, consumer):
        # type: (Consumer) -> None
        self.emit(
            consumer,
            Entry(
                path=normalize_path(self.path),
                kind=SYMLINK if self.symlink else HARDLINK,
                mode=DEFAULT_LINK_MODE,
                uid=0,
                gid=0,
                user='root',
                group='root',
                linkname=self.target,
                mtime=int(time.time()),
            ),
        )

    def __repr__(self):
        return 'DataProducerLink({!r} -> {!r})'.format(
            self.path, self.target)
