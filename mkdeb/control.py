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
The control member of a .deb and the description of a built package.
"""

import io
import os
import stat
import tarfile
import typing

from debian import deb822

from mkdeb.archive import ChecksumRecord
from mkdeb.entry import DEFAULT_FILE_MODE, Entry
from mkdeb.errors import (
    InvalidControlDirectory,
    PackagingFailure,
    SourceUnreadable,
)


#: Control files that dpkg runs, and therefore need to be executable
MAINTAINER_SCRIPTS = frozenset({
    'config',
    'postinst',
    'postrm',
    'preinst',
    'prerm',
})

#: Fields that must be present in the control file
REQUIRED_FIELDS = ('Package', 'Version', 'Architecture')


def check_control_directory(control_dir):
    # type: (typing.Optional[str]) -> None
    if not control_dir or not os.path.isdir(control_dir):
        raise InvalidControlDirectory(
            '"{}" is not a valid control directory'.format(control_dir)
        )


def list_control_files(control_dir):
    # type: (str) -> typing.List[str]
    """
    Return the regular files directly inside control_dir, sorted by
    name. Subdirectories are ignored.
    """
    check_control_directory(control_dir)
    files = []

    for name in sorted(os.listdir(control_dir)):
        path = os.path.join(control_dir, name)

        if os.path.isfile(path):
            files.append(path)

    return files


def read_control_fields(control_dir):
    # type: (str) -> deb822.Deb822
    path = os.path.join(control_dir, 'control')

    try:
        with open(path, encoding='utf-8') as reader:
            fields = deb822.Deb822(reader)
    except OSError as e:
        raise SourceUnreadable(path, e.strerror or str(e)) from e

    missing = [f for f in REQUIRED_FIELDS if not fields.get(f)]

    if missing:
        raise PackagingFailure(
            '{} lacks required field(s): {}'.format(path, ', '.join(missing))
        )

    return fields


def format_md5sums(checksums):
    # type: (typing.Iterable[ChecksumRecord]) -> bytes
    """
    Return the contents of DEBIAN/md5sums for the given data files.
    """
    return ''.join(
        '{}  {}\n'.format(c.md5, c.name) for c in checksums
    ).encode('utf-8')


def build_control_tar(
    control_files,      # type: typing.Sequence[str]
    mtime,              # type: int
    extra=None          # type: typing.Optional[typing.Mapping[str, bytes]]
):
    # type: (...) -> bytes
    """
    Return a gzipped tarball of control_files (with any extra files
    given as name -> contents), in the order given.

    Maintainer scripts get mode 0755 and everything else 0644, all
    owned by root.
    """
    buf = io.BytesIO()

    with tarfile.open(
        fileobj=buf, mode='w:gz', format=tarfile.GNU_FORMAT,
    ) as writer:
        for path in control_files:
            name = os.path.basename(path)

            try:
                reader = open(path, 'rb')
                st = os.fstat(reader.fileno())
            except OSError as e:
                raise SourceUnreadable(path, e.strerror or str(e)) from e

            with reader:
                if not stat.S_ISREG(st.st_mode):
                    raise SourceUnreadable(path, 'not a regular file')

                info = _control_entry(name, st.st_size, mtime).to_tarinfo()
                writer.addfile(info, reader)

        for name, data in sorted((extra or {}).items()):
            info = _control_entry(name, len(data), mtime).to_tarinfo()
            writer.addfile(info, io.BytesIO(data))

    return buf.getvalue()


def _control_entry(name, size, mtime):
    # type: (str, int, int) -> Entry
    if name in MAINTAINER_SCRIPTS:
        mode = 0o755
    else:
        mode = DEFAULT_FILE_MODE

    return Entry(
        path=name,
        size=size,
        mode=mode,
        uid=0,
        gid=0,
        user='root',
        group='root',
        mtime=mtime,
    )


class PackageDescriptor:

    """
    What we know about a package after building it.
    """

    def __init__(
        self,
        control,                # type: deb822.Deb822
        checksums,              # type: typing.Sequence[ChecksumRecord]
        installed_size,         # type: int
        deb=None                # type: typing.Optional[ChecksumRecord]
    ):
        # type: (...) -> None
        self.control = control
        self.checksums = tuple(checksums)
        #: Installed-Size, in KiB
        self.installed_size = installed_size
        #: Checksums of the .deb itself
        self.deb = deb

    @property
    def name(self):
        # type: () -> str
        return self.control['Package']

    @property
    def version(self):
        # type: () -> str
        return self.control['Version']

    @property
    def architecture(self):
        # type: () -> str
        return self.control['Architecture']

    @property
    def source(self):
        # type: () -> str
        """
        The source package name, without any version in parentheses.
        """
        return self.control.get('Source', self.name).split()[0]

    def get(self, field, default=None):
        # type: (str, typing.Optional[str]) -> typing.Optional[str]
        return self.control.get(field, default)

    def checksums_by_path(self):
        # type: () -> typing.Dict[str, ChecksumRecord]
        return {c.name: c for c in self.checksums}

    def __repr__(self):
        return 'PackageDescriptor({}_{}_{})'.format(
            self.name, self.version, self.architecture)


def installed_size_kib(data_size):
    # type: (int) -> int
    return (data_size + 1023) // 1024
