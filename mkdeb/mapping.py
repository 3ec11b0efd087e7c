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
Transformations applied to each entry before it is written.
"""

import typing

from mkdeb.entry import HARDLINK, Entry, normalize_path
from mkdeb.errors import InvalidPermissionString


def to_mode_from_rwx(perm):
    # type: (typing.Optional[str]) -> int
    """
    Convert a symbolic permission string such as 'rwxr-xr-x' into
    the equivalent number (0o755).
    """
    if perm is None or len(perm) != 9:
        raise InvalidPermissionString(
            '{!r} does not seem to be a valid POSIX rwxrwxrwx '
            'permission'.format(perm)
        )

    mode = 0

    for i, c in enumerate(perm):
        expected = 'rwx'[i % 3]

        if c == expected:
            mode |= 1 << (8 - i)
        elif c != '-':
            raise InvalidPermissionString(
                'Illegal character {!r} in POSIX permission {!r}'.format(
                    c, perm,
                )
            )

    return mode


def to_rwx(mode):
    # type: (int) -> str
    return ''.join(
        'rwx'[i % 3] if mode & (1 << (8 - i)) else '-'
        for i in range(9)
    )


def to_mode(mode_string):
    # type: (typing.Optional[str]) -> int
    """
    Parse an octal mode such as '0755' or '755'. Return -1 if
    mode_string is empty or None.
    """
    if not mode_string:
        return -1

    try:
        return int(mode_string, 8)
    except ValueError:
        raise InvalidPermissionString(
            '{!r} is not an octal permission'.format(mode_string)
        ) from None


def parse_mode(value):
    # type: (typing.Union[None, int, str]) -> int
    """
    Accept an int, an octal string or a symbolic rwxrwxrwx string.
    """
    if value is None:
        return -1

    if isinstance(value, int):
        return value

    value = str(value).strip()

    if len(value) == 9 and not value.isdigit():
        return to_mode_from_rwx(value)

    return to_mode(value)


def strip_path(strip, path):
    # type: (int, str) -> str
    """
    Remove the first strip components of path. Stripping more
    components than path has results in ''.
    """
    if strip <= 0:
        return path

    parts = [p for p in path.split('/') if p]
    return '/'.join(parts[strip:])


class Mapper:

    def map(self, entry):
        # type: (Entry) -> Entry
        raise NotImplementedError


class PermMapper(Mapper):

    """
    Applies a uniform set of permissions and ownership to every entry,
    after stripping leading path components and adding a prefix.
    """

    def __init__(
        self,
        uid=-1,             # type: int
        gid=-1,             # type: int
        user=None,          # type: typing.Optional[str]
        group=None,         # type: typing.Optional[str]
        file_mode=-1,       # type: int
        dir_mode=-1,        # type: int
        strip=0,            # type: int
        prefix=''           # type: typing.Optional[str]
    ):
        # type: (...) -> None
        self.uid = uid
        self.gid = gid
        self.user = user or None
        self.group = group or None
        self.file_mode = file_mode
        self.dir_mode = dir_mode
        self.strip = strip
        self.prefix = prefix or ''

    @classmethod
    def from_config(
        cls,        # type: typing.Type[PermMapper]
        details,    # type: typing.Mapping[str, typing.Any]
    ):
        # type: (...) -> PermMapper
        return cls(
            uid=int(details.get('uid', -1)),
            gid=int(details.get('gid', -1)),
            user=details.get('user'),
            group=details.get('group'),
            file_mode=parse_mode(details.get('filemode')),
            dir_mode=parse_mode(details.get('dirmode')),
            strip=int(details.get('strip', 0)),
            prefix=details.get('prefix', ''),
        )

    def map_path(self, path):
        # type: (str) -> str
        stripped = strip_path(self.strip, path)

        if not self.prefix:
            return stripped

        if not stripped:
            return self.prefix

        return self.prefix.rstrip('/') + '/' + stripped

    def map(self, entry):
        # type: (Entry) -> Entry
        if entry.is_dir:
            mode = self.dir_mode
        else:
            mode = self.file_mode

        linkname = entry.linkname

        # A hard link's target is the path of another member
        if entry.kind == HARDLINK:
            linkname = self.map_path(normalize_path(linkname))

        return entry._replace(
            path=self.map_path(entry.path),
            linkname=linkname,
            uid=self.uid if self.uid > -1 else entry.uid,
            gid=self.gid if self.gid > -1 else entry.gid,
            user=self.user if self.user is not None else entry.user,
            group=self.group if self.group is not None else entry.group,
            mode=mode if mode > -1 else entry.mode,
        )

    def __repr__(self):
        return (
            'PermMapper(uid={}, gid={}, user={!r}, group={!r}, '
            'file_mode={}, dir_mode={}, strip={}, prefix={!r})'
        ).format(
            self.uid, self.gid, self.user, self.group,
            oct(self.file_mode) if self.file_mode > -1 else -1,
            oct(self.dir_mode) if self.dir_mode > -1 else -1,
            self.strip, self.prefix,
        )


def apply_mappers(entry, mappers):
    # type: (Entry, typing.Iterable[Mapper]) -> Entry
    for mapper in mappers:
        entry = mapper.map(entry)

    return entry


_MAPPER_TYPES = {
    'perm': PermMapper,
}


def mapper_from_config(details):
    # type: (typing.Mapping[str, typing.Any]) -> Mapper
    kind = details.get('type', 'perm')

    try:
        mapper_class = _MAPPER_TYPES[kind]
    except KeyError:
        raise ValueError('Unknown mapper type {!r}'.format(kind)) from None

    return mapper_class.from_config(details)
