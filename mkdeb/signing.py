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
OpenPGP signatures, made by running gpg against a throw-away home
directory into which the supplied keyring is imported.

Signatures use SHA-1 because that is what existing .changes and
_gpgbuilder consumers were written against. SHA-1 is weak by modern
standards.
"""

import logging
import os
import shutil
import subprocess
import typing
from contextlib import ExitStack
from tempfile import TemporaryDirectory

from mkdeb.errors import (
    BadPassphrase,
    KeyNotFound,
    SigningFailure,
    UnreadableKeyring,
)


logger = logging.getLogger('mkdeb.signing')

DIGEST_ALGORITHM = 'SHA1'

# GPG_ERR_BAD_PASSPHRASE, GPG_ERR_NO_PASSPHRASE
_PASSPHRASE_ERRORS = (11, 31)


class Signer:

    """
    Something that can sign byte strings.
    """

    def sign(self, payload):
        # type: (bytes) -> bytes
        """
        Return an ASCII-armored detached signature for payload.
        """
        raise NotImplementedError

    def clearsign(self, text):
        # type: (str) -> str
        """
        Return text wrapped in an OpenPGP cleartext signature.
        """
        raise NotImplementedError

    @property
    def identity(self):
        # type: () -> str
        raise NotImplementedError


def _status_lines(stderr):
    # type: (bytes) -> typing.List[typing.List[str]]
    lines = []

    for line in stderr.decode('utf-8', 'replace').splitlines():
        if line.startswith('[GNUPG:] '):
            lines.append(line[len('[GNUPG:] '):].split())

    return lines


class GpgSigner(Signer):

    """
    Signs with key key_id from keyring, an exported OpenPGP secret
    keyring (binary or armored).
    """

    def __init__(
        self,
        keyring,            # type: bytes
        key_id,             # type: str
        passphrase,         # type: str
        gpg='gpg'           # type: str
    ):
        # type: (...) -> None
        self.keyring = keyring
        self.key_id = key_id
        self.passphrase = passphrase
        self.gpg = gpg
        self.logger = logger.getChild('GpgSigner')
        self.__identity = None      # type: typing.Optional[str]

    @classmethod
    def from_file(cls, path, key_id, passphrase, **kwargs):
        # type: (str, str, str, typing.Any) -> GpgSigner
        try:
            with open(path, 'rb') as reader:
                keyring = reader.read()
        except OSError as e:
            raise UnreadableKeyring(
                'Cannot open keyring {}: {}'.format(path, e.strerror or e)
            ) from e

        return cls(keyring, key_id, passphrase, **kwargs)

    def _run(self, home, args, stdin=b''):
        # type: (str, typing.List[str], bytes) -> subprocess.CompletedProcess
        argv = [
            self.gpg,
            '--homedir', home,
            '--batch',
            '--no-tty',
            '--no-auto-check-trustdb',
            '--status-fd', '2',
        ] + args
        self.logger.debug('%r', argv)

        try:
            return subprocess.run(
                argv,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SigningFailure(
                'Unable to run {}: {}'.format(self.gpg, e)) from e

    def _passphrase_input(self):
        # type: () -> bytes
        return self.passphrase.encode('utf-8') + b'\n'

    def _prepare(self, stack):
        # type: (ExitStack) -> str
        home = stack.enter_context(TemporaryDirectory(prefix='mkdeb-gpg.'))
        os.chmod(home, 0o700)
        stack.callback(self._kill_agent, home)

        keyring = os.path.join(home, 'keyring.import')

        with open(keyring, 'wb') as writer:
            writer.write(self.keyring)

        proc = self._run(home, [
            '--pinentry-mode', 'loopback',
            '--passphrase-fd', '0',
            '--import', keyring,
        ], stdin=self._passphrase_input())
        secret_keys_read = 0

        # IMPORT_RES count no_user_id imported imported_rsa unchanged
        # n_uids n_subk n_sigs n_revoc sec_read ...
        for status in _status_lines(proc.stderr):
            if status[0] == 'IMPORT_RES' and len(status) > 10:
                secret_keys_read += int(status[10])

        if proc.returncode != 0:
            self._check_passphrase(proc.stderr)

        if not secret_keys_read and proc.returncode != 0:
            raise UnreadableKeyring(
                'Keyring could not be read: {}'.format(
                    proc.stderr.decode('utf-8', 'replace').strip()
                )
            )

        proc = self._run(
            home, ['--with-colons', '--list-secret-keys', self.key_id],
        )

        if proc.returncode != 0:
            raise KeyNotFound(
                'Secret key {} not found in keyring'.format(self.key_id))

        for line in proc.stdout.decode('utf-8', 'replace').splitlines():
            fields = line.split(':')

            if fields[0] == 'uid' and len(fields) > 9:
                self.__identity = fields[9]
                break

        return home

    def _kill_agent(self, home):
        # type: (str) -> None
        gpgconf = shutil.which('gpgconf')

        if gpgconf is not None:
            subprocess.call(
                [gpgconf, '--homedir', home, '--kill', 'gpg-agent'],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )

    def _sign(self, payload, mode):
        # type: (bytes, str) -> bytes
        with ExitStack() as stack:
            home = self._prepare(stack)
            source = os.path.join(home, 'payload')
            output = os.path.join(home, 'payload.asc')

            with open(source, 'wb') as writer:
                writer.write(payload)

            proc = self._run(home, [
                '--pinentry-mode', 'loopback',
                '--passphrase-fd', '0',
                '--digest-algo', DIGEST_ALGORITHM,
                '--local-user', self.key_id,
                '--armor',
                '--output', output,
                mode,
                source,
            ], stdin=self._passphrase_input())

            if proc.returncode != 0:
                self._raise_failure(proc.stderr)

            with open(output, 'rb') as reader:
                return reader.read()

    def _raise_failure(self, stderr):
        # type: (bytes) -> None
        self._check_passphrase(stderr)
        raise SigningFailure(
            'gpg failed: {}'.format(
                stderr.decode('utf-8', 'replace').strip(),
            )
        )

    def _check_passphrase(self, stderr):
        # type: (bytes) -> None
        for status in _status_lines(stderr):
            if status[0] in ('BAD_PASSPHRASE', 'MISSING_PASSPHRASE'):
                raise BadPassphrase(
                    'Cannot unlock key {}: bad passphrase'.format(
                        self.key_id,
                    )
                )

            if status[0] in ('FAILURE', 'ERROR') and len(status) > 2:
                try:
                    code = int(status[-1]) & 0xffff
                except ValueError:
                    continue

                if code in _PASSPHRASE_ERRORS:
                    raise BadPassphrase(
                        'Cannot unlock key {}: bad passphrase'.format(
                            self.key_id,
                        )
                    )

    def sign(self, payload):
        # type: (bytes) -> bytes
        return self._sign(payload, '--detach-sign')

    def clearsign(self, text):
        # type: (str) -> str
        return self._sign(text.encode('utf-8'), '--clearsign').decode('utf-8')

    @property
    def identity(self):
        # type: () -> str
        if self.__identity is None:
            with ExitStack() as stack:
                self._prepare(stack)

        return self.__identity or self.key_id


def sign(payload, keyring, key_id, passphrase):
    # type: (bytes, bytes, str, str) -> bytes
    """
    Return an ASCII-armored detached signature of payload made with
    key_id from keyring.
    """
    return GpgSigner(keyring, key_id, passphrase).sign(payload)
