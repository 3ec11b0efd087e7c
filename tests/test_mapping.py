"""Tests for permission parsing and PermMapper."""

import pytest

from mkdeb.entry import DIRECTORY, FILE, HARDLINK, SYMLINK, Entry
from mkdeb.errors import InvalidPermissionString
from mkdeb.mapping import (
    PermMapper,
    apply_mappers,
    mapper_from_config,
    parse_mode,
    strip_path,
    to_mode,
    to_mode_from_rwx,
    to_rwx,
)


def test_rwx_values():
    assert to_mode_from_rwx('rwxrwxrwx') == 0o777
    assert to_mode_from_rwx('rw-r--r--') == 0o644
    assert to_mode_from_rwx('rwxr-xr-x') == 0o755
    assert to_mode_from_rwx('---------') == 0


def test_rwx_round_trip():
    for mode in range(0o1000):
        perm = to_rwx(mode)
        assert len(perm) == 9
        assert to_mode_from_rwx(perm) == mode
        assert to_rwx(to_mode_from_rwx(perm)) == perm


@pytest.mark.parametrize('perm', [
    'rw-r--r-',
    'rw-r--r--x',
    '',
    None,
    'rwzr--r--',
    'wrxr--r--',
    'rw-r--r-?',
])
def test_rwx_invalid(perm):
    with pytest.raises(InvalidPermissionString):
        to_mode_from_rwx(perm)


def test_invalid_permission_is_value_error():
    with pytest.raises(ValueError):
        to_mode_from_rwx('rwzr--r--')


def test_to_mode():
    assert to_mode('0755') == 0o755
    assert to_mode('755') == 0o755
    assert to_mode('0644') == 0o644
    assert to_mode('') == -1
    assert to_mode(None) == -1

    with pytest.raises(InvalidPermissionString):
        to_mode('0789')


def test_parse_mode():
    assert parse_mode(None) == -1
    assert parse_mode(0o600) == 0o600
    assert parse_mode('rwx------') == 0o700
    assert parse_mode('0640') == 0o640


def test_strip_path():
    assert strip_path(0, 'a/b/c') == 'a/b/c'
    assert strip_path(1, 'a/b/c') == 'b/c'
    assert strip_path(3, 'a/b/c') == ''
    assert strip_path(5, 'a/b/c') == ''


def test_strip_and_prefix():
    mapper = PermMapper(strip=2, prefix='/opt/app')
    entry = mapper.map(Entry('a/b/c/file.txt'))
    assert entry.path == '/opt/app/c/file.txt'


def test_strip_too_many_segments():
    mapper = PermMapper(strip=4, prefix='/opt/app')
    assert mapper.map(Entry('a/b', kind=DIRECTORY)).path == '/opt/app'
    assert PermMapper(strip=4).map(Entry('a/b')).path == ''


def test_prefix_only():
    mapper = PermMapper(prefix='usr/share/doc/')
    assert mapper.map(Entry('README')).path == 'usr/share/doc/README'


def test_uid_override_independent_of_gid():
    source = Entry('f', uid=500, gid=600, user='me', group='us')

    entry = PermMapper(uid=1000).map(source)
    assert entry.uid == 1000
    assert entry.gid == 600

    entry = PermMapper(gid=1000).map(source)
    assert entry.uid == 500
    assert entry.gid == 1000

    entry = PermMapper(uid=-1, gid=-1).map(source)
    assert entry.uid == 500
    assert entry.gid == 600


def test_name_override():
    source = Entry('f', uid=500, gid=600, user='me', group='us')

    entry = PermMapper(user='root').map(source)
    assert entry.user == 'root'
    assert entry.group == 'us'

    entry = PermMapper(group='wheel').map(source)
    assert entry.user == 'me'
    assert entry.group == 'wheel'

    entry = PermMapper(user='', group=None).map(source)
    assert entry.user == 'me'
    assert entry.group == 'us'


def test_mode_override_by_kind():
    mapper = PermMapper(file_mode=0o600, dir_mode=0o700)

    assert mapper.map(Entry('f', kind=FILE, mode=0o644)).mode == 0o600
    assert mapper.map(Entry('d', kind=DIRECTORY, mode=0o755)).mode == 0o700

    mapper = PermMapper(dir_mode=0o700)
    assert mapper.map(Entry('f', kind=FILE, mode=0o644)).mode == 0o644


def test_hard_link_target_follows_path():
    mapper = PermMapper(strip=1, prefix='opt/app')

    entry = mapper.map(Entry('a/b/hl', kind=HARDLINK, linkname='./a/b/file'))
    assert entry.path == 'opt/app/b/hl'
    assert entry.linkname == 'opt/app/b/file'

    # Symbolic link targets are not archive paths
    entry = mapper.map(Entry('a/b/sl', kind=SYMLINK, linkname='../file'))
    assert entry.path == 'opt/app/b/sl'
    assert entry.linkname == '../file'


def test_size_carried_through():
    mapper = PermMapper(strip=1, prefix='/x', uid=0, file_mode=0o600)
    entry = mapper.map(Entry('a/b', size=12345))
    assert entry.size == 12345


def test_chain_applies_in_order():
    mappers = [
        PermMapper(prefix='usr'),
        PermMapper(strip=1, prefix='opt'),
    ]
    assert apply_mappers(Entry('bin/x'), mappers).path == 'opt/bin/x'


def test_mapper_from_config():
    mapper = mapper_from_config({
        'type': 'perm',
        'prefix': '/usr/lib/app',
        'strip': 1,
        'uid': 0,
        'gid': 0,
        'user': 'root',
        'group': 'root',
        'filemode': 'rw-r-----',
        'dirmode': '0750',
    })
    assert mapper.file_mode == 0o640
    assert mapper.dir_mode == 0o750
    assert mapper.map_path('dist/lib.so') == '/usr/lib/app/lib.so'

    with pytest.raises(ValueError):
        mapper_from_config({'type': 'nonsense'})
