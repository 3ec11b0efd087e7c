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
The in-memory description of one archive member.
"""

import tarfile
import typing

from mkdeb.errors import PackagingFailure


FILE = 'file'
DIRECTORY = 'directory'
SYMLINK = 'symlink'
HARDLINK = 'hardlink'

KINDS = (FILE, DIRECTORY, SYMLINK, HARDLINK)

_TAR_TYPES = {
    FILE: tarfile.REGTYPE,
    DIRECTORY: tarfile.DIRTYPE,
    SYMLINK: tarfile.SYMTYPE,
    HARDLINK: tarfile.LNKTYPE,
}

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755
DEFAULT_LINK_MODE = 0o777


class Entry(typing.NamedTuple):

    """
    One member of the data or control tarball.

    uid and gid are -1 and user and group are empty if they should be
    inherited from whatever created the entry.
    """

    path: str
    kind: str = FILE
    size: int = 0
    mode: int = DEFAULT_FILE_MODE
    uid: int = -1
    gid: int = -1
    user: str = ''
    group: str = ''
    linkname: str = ''
    mtime: int = 0

    @property
    def is_dir(self):
        # type: () -> bool
        return self.kind == DIRECTORY

    @property
    def is_file(self):
        # type: () -> bool
        return self.kind == FILE

    @property
    def is_link(self):
        # type: () -> bool
        return self.kind in (SYMLINK, HARDLINK)

    def to_tarinfo(self):
        # type: () -> tarfile.TarInfo
        """
        Return a TarInfo for this entry, named the way dpkg-deb names
        members ("./usr/bin/foo").
        """
        info = tarfile.TarInfo('./' + self.path)
        info.type = _TAR_TYPES[self.kind]
        info.mode = self.mode & 0o7777
        info.uid = max(self.uid, 0)
        info.gid = max(self.gid, 0)
        info.uname = self.user or 'root'
        info.gname = self.group or 'root'
        info.mtime = self.mtime

        if self.kind == FILE:
            info.size = self.size
        else:
            info.size = 0

        if self.is_link:
            info.linkname = self.linkname

        return info

    @classmethod
    def from_tarinfo(cls, info):
        # type: (tarfile.TarInfo) -> Entry
        if info.isdir():
            kind = DIRECTORY
        elif info.issym():
            kind = SYMLINK
        elif info.islnk():
            kind = HARDLINK
        else:
            kind = FILE

        return cls(
            path=info.name,
            kind=kind,
            size=info.size if kind == FILE else 0,
            mode=info.mode,
            uid=info.uid,
            gid=info.gid,
            user=info.uname,
            group=info.gname,
            linkname=info.linkname,
            mtime=int(info.mtime),
        )


def normalize_path(path):
    # type: (str) -> str
    """
    Return path with backslashes, "." components, duplicate and leading
    separators removed and ".." components resolved. The result is ''
    for the root.

    Raise PackagingFailure if path would lead outside the root.
    """
    parts = []      # type: typing.List[str]

    for part in path.replace('\\', '/').split('/'):
        if part in ('', '.'):
            continue

        if part == '..':
            if not parts:
                raise PackagingFailure(
                    '{!r} leads outside the archive root'.format(path))

            parts.pop()
        else:
            parts.append(part)

    return '/'.join(parts)
