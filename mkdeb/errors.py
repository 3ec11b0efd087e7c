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
Exceptions raised while assembling a package.

Everything derives from PackagingError so that a front end can catch a
single type and report the chained causes.
"""

import typing


class PackagingError(Exception):
    pass


class ConfigurationError(PackagingError):

    """
    The build was configured inconsistently. Raised before any output
    is written.
    """

    def __init__(
        self,
        message,            # type: str
        problems=()         # type: typing.Sequence[PackagingError]
    ):
        # type: (...) -> None
        super().__init__(message)
        self.problems = list(problems)

    def __str__(self):
        if not self.problems:
            return super().__str__()

        return '{}:\n{}'.format(
            super().__str__(),
            '\n'.join('- {}'.format(p) for p in self.problems),
        )


class InvalidControlDirectory(ConfigurationError):
    pass


class UnsupportedCompression(ConfigurationError):
    pass


class InvalidPermissionString(PackagingError, ValueError):
    pass


class SourceUnreadable(PackagingError):

    def __init__(self, path, reason=''):
        # type: (str, str) -> None
        if reason:
            message = 'Cannot read {}: {}'.format(path, reason)
        else:
            message = 'Cannot read {}'.format(path)

        super().__init__(message)
        self.path = path


class PackagingFailure(PackagingError):
    pass


class SigningFailure(PackagingError):
    pass


class KeyNotFound(SigningFailure):
    pass


class BadPassphrase(SigningFailure):
    pass


class UnreadableKeyring(SigningFailure):
    pass


class IncompleteManifest(PackagingError):

    def __init__(self, missing):
        # type: (typing.Sequence[str]) -> None
        super().__init__(
            'Changes manifest lacks mandatory field(s): {}'.format(
                ', '.join(missing)
            )
        )
        self.missing = list(missing)
