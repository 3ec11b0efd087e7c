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
Debian .changes manifests: creating them from a package descriptor, or
merging a freshly built package into an existing one.
"""

import email.utils
import logging
import typing

from debian import deb822

from mkdeb.control import PackageDescriptor
from mkdeb.errors import IncompleteManifest, PackagingFailure


logger = logging.getLogger('mkdeb.changes')

FORMAT = '1.8'

MANDATORY_FIELDS = (
    'Format',
    'Date',
    'Source',
    'Binary',
    'Architecture',
    'Version',
    'Distribution',
    'Urgency',
    'Maintainer',
    'Description',
    'Changes',
    'Checksums-Sha1',
    'Checksums-Sha256',
    'Files',
)

_FILE_LISTS = ('Checksums-Sha1', 'Checksums-Sha256', 'Files')

_MULTILINE_FIELDS = ('Description', 'Changes')


def format_multiline(text):
    # type: (str) -> str
    """
    Turn free text into the continuation-line form used by multi-line
    fields whose first line is empty, e.g. Changes.
    """
    if text.startswith('\n'):
        return text.rstrip('\n')

    lines = []

    for line in text.strip('\n').splitlines():
        if line.strip():
            lines.append(' ' + line)
        else:
            lines.append(' .')

    return '\n' + '\n'.join(lines)


class ChangesManifest:

    """
    A .changes file held as a deb822.Changes object.
    """

    def __init__(self, changes=None):
        # type: (typing.Optional[deb822.Changes]) -> None
        if changes is None:
            changes = deb822.Changes()

        self.changes = changes

    @classmethod
    def parse(
        cls,        # type: typing.Type[ChangesManifest]
        text,       # type: typing.Union[str, bytes]
    ):
        # type: (...) -> ChangesManifest
        """
        Parse an existing .changes file. An OpenPGP signature around it
        is removed.
        """
        try:
            if isinstance(text, bytes):
                text = text.decode('utf-8')

            changes = deb822.Changes(text)
        except ValueError as e:
            raise PackagingFailure(
                'Unable to parse changes file: {}'.format(e)) from e

        return cls(changes)

    def __getitem__(self, key):
        # type: (str) -> typing.Any
        return self.changes[key]

    def __contains__(self, key):
        # type: (str) -> bool
        return key in self.changes

    def get(self, key, default=None):
        # type: (str, typing.Any) -> typing.Any
        return self.changes.get(key, default)

    def file_names(self):
        # type: () -> typing.List[str]
        return [f['name'] for f in self.changes.get('Files', [])]

    def _set_default(self, key, value):
        # type: (str, typing.Optional[str]) -> None
        if value and not self.changes.get(key):
            self.changes[key] = value

    def _add_word(self, key, word):
        # type: (str, str) -> None
        words = self.changes.get(key, '').split()

        if word not in words:
            words.append(word)

        self.changes[key] = ' '.join(words)

    def _replace_file(self, key, item):
        # type: (str, typing.Dict[str, str]) -> None
        files = list(self.changes.get(key, []))

        for i, existing in enumerate(files):
            if existing['name'] == item['name']:
                files[i] = item
                break
        else:
            files.append(item)

        self.changes[key] = files

    def merge(
        self,
        descriptor,         # type: PackageDescriptor
        fields=None,        # type: typing.Optional[typing.Mapping[str, str]]
        date=None           # type: typing.Optional[str]
    ):
        # type: (...) -> ChangesManifest
        """
        Add the .deb described by descriptor. Fields already present
        are kept unless overridden by fields; the file lists gain or
        update one line for the .deb.
        """
        if descriptor.deb is None:
            raise PackagingFailure(
                '{!r} does not describe a built .deb'.format(descriptor))

        self._set_default('Format', FORMAT)
        self._set_default('Date', date or email.utils.formatdate())
        self._set_default('Source', descriptor.source)
        self._add_word('Binary', descriptor.name)
        self._add_word('Architecture', descriptor.architecture)
        self._set_default('Version', descriptor.version)
        self._set_default('Maintainer', descriptor.get('Maintainer'))

        synopsis = (descriptor.get('Description') or '').split('\n')[0]

        if synopsis.strip():
            self._set_default(
                'Description',
                '\n {} - {}'.format(descriptor.name, synopsis.strip()),
            )

        for key, value in (fields or {}).items():
            value = str(value)

            if key in _MULTILINE_FIELDS:
                value = format_multiline(value)

            self.changes[key] = value

        deb = descriptor.deb
        self._replace_file('Checksums-Sha1', {
            'sha1': deb.sha1,
            'size': str(deb.size),
            'name': deb.name,
        })
        self._replace_file('Checksums-Sha256', {
            'sha256': deb.sha256,
            'size': str(deb.size),
            'name': deb.name,
        })
        self._replace_file('Files', {
            'md5sum': deb.md5,
            'size': str(deb.size),
            'section': descriptor.get('Section') or '-',
            'priority': descriptor.get('Priority') or '-',
            'name': deb.name,
        })

        # Keep the file lists at the end, where dpkg-genchanges puts them
        for key in _FILE_LISTS:
            value = self.changes[key]
            del self.changes[key]
            self.changes[key] = value

        return self

    def check(self):
        # type: () -> None
        missing = [f for f in MANDATORY_FIELDS if not self.changes.get(f)]

        if missing:
            raise IncompleteManifest(missing)

    def dump(self):
        # type: () -> str
        self.check()
        return self.changes.dump()

    def __str__(self):
        return self.dump()


def merge(
    existing,           # type: typing.Union[None, str, bytes]
    descriptor,         # type: PackageDescriptor
    fields=None,        # type: typing.Optional[typing.Mapping[str, str]]
    date=None           # type: typing.Optional[str]
):
    # type: (...) -> ChangesManifest
    """
    Return a manifest describing descriptor, based on the existing
    .changes text if there is one. Raise IncompleteManifest if a
    mandatory field is still missing afterwards.
    """
    if existing:
        manifest = ChangesManifest.parse(existing)
        logger.debug(
            'Merging %s into changes listing %s',
            descriptor, manifest.file_names(),
        )
    else:
        manifest = ChangesManifest()

    manifest.merge(descriptor, fields=fields, date=date)
    manifest.check()
    return manifest
