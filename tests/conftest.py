import io
import os
import shutil
import subprocess
import tarfile
import typing

import pytest
from debian import arfile


CONTROL = (
    'Package: test-package\n'
    'Version: 1.0\n'
    'Architecture: all\n'
    'Maintainer: Test Maintainer <maint@example.com>\n'
    'Section: misc\n'
    'Priority: optional\n'
    'Description: a package for testing\n'
    ' It has a long description too.\n'
)

PASSPHRASE = 's3cret'


@pytest.fixture
def control_dir(tmp_path):
    d = tmp_path / 'control'
    d.mkdir()
    (d / 'control').write_text(CONTROL)
    (d / 'postinst').write_text('#!/bin/sh\nexit 0\n')
    # Subdirectories are not part of the control member
    (d / 'ignored').mkdir()
    return d


@pytest.fixture
def app_file(tmp_path):
    path = tmp_path / 'app'
    path.write_bytes(b'#!/bin/sh\necho hello\n')
    os.chmod(path, 0o755)
    return path


class Member(typing.NamedTuple):
    name: str
    mtime: int
    uid: int
    gid: int
    mode: int
    size: int
    data: bytes


def read_deb(path):
    """
    Return the members of an ar archive, read with python-debian rather
    than with our own code.
    """
    members = []

    for member in arfile.ArFile(str(path)):
        try:
            data = member.read()
        finally:
            member.close()

        members.append(Member(
            name=member.name,
            mtime=member.mtime,
            uid=member.owner,
            gid=member.group,
            mode=int(member.fmode.strip(), 8),
            size=member.size,
            data=data,
        ))

    return members


def tar_contents(member):
    """
    Return {name: (TarInfo, bytes or None)} for a tarball ar member,
    with the leading './' removed from names.
    """
    contents = {}

    with tarfile.open(fileobj=io.BytesIO(member.data), mode='r:*') as tar:
        for info in tar:
            data = None

            if info.isfile():
                data = tar.extractfile(info).read()

            name = info.name

            if name.startswith('./'):
                name = name[2:]

            contents[name] = (info, data)

    return contents


def deb_member(path, prefix):
    for member in read_deb(path):
        if member.name.startswith(prefix):
            return member

    raise AssertionError('No member {} in {}'.format(prefix, path))


def _gpg(home, *args, **kwargs):
    return subprocess.run(
        ['gpg', '--homedir', str(home), '--batch', '--no-tty'] + list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=True,
        **kwargs
    )


class SigningKey:
    def __init__(self, home, fingerprint, secret):
        self.home = home
        self.fingerprint = fingerprint
        self.secret = secret

    def verify(self, signed, detached=None):
        """Return the gpg status lines from verifying a signature."""
        args = [
            '--status-fd', '1', '--allow-weak-digest-algos', '--verify',
        ]
        files = []

        if detached is not None:
            sig = self.home / 'check.asc'
            sig.write_bytes(signed)
            data = self.home / 'check.dat'
            data.write_bytes(detached)
            files = [str(sig), str(data)]
        else:
            sig = self.home / 'check.txt'
            sig.write_bytes(signed)
            files = [str(sig)]

        proc = _gpg(self.home, *(args + files))
        return proc.stdout.decode('utf-8').splitlines()


@pytest.fixture(scope='session')
def gpg_key(tmp_path_factory):
    if shutil.which('gpg') is None:
        pytest.skip('gpg not available')

    home = tmp_path_factory.mktemp('gnupg')
    os.chmod(home, 0o700)
    loopback = [
        '--pinentry-mode', 'loopback', '--passphrase', PASSPHRASE,
    ]

    try:
        _gpg(
            home, *loopback,
            '--quick-generate-key', 'Test Signer <signer@example.com>',
            'rsa2048', 'sign', 'never',
        )
        secret = _gpg(home, *loopback, '--export-secret-keys').stdout
        listing = _gpg(
            home, '--with-colons', '--list-secret-keys',
        ).stdout.decode('utf-8')

        fingerprint = [
            line.split(':')[9] for line in listing.splitlines()
            if line.startswith('fpr:')
        ][0]

        yield SigningKey(home, fingerprint, secret)
    finally:
        if shutil.which('gpgconf') is not None:
            subprocess.call(
                ['gpgconf', '--homedir', str(home), '--kill', 'gpg-agent'])
