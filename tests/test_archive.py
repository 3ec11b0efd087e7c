"""Tests for the ar and tar writers."""

import hashlib
import io

import pytest
from debian import arfile

from mkdeb.archive import (
    AR_MAGIC,
    ArWriter,
    Digester,
    TarBuilder,
    open_ar,
    open_member_tar,
    read_member,
    tar_member_name,
)
from mkdeb.entry import DIRECTORY, HARDLINK, SYMLINK, Entry, normalize_path
from mkdeb.errors import (
    ConfigurationError,
    PackagingFailure,
    UnsupportedCompression,
)


def test_ar_header_layout():
    buf = io.BytesIO()
    writer = ArWriter(buf, mtime=1234567890)
    writer.add_bytes('debian-binary', b'2.0\n')
    writer.add_bytes('odd', b'abc')

    data = buf.getvalue()
    assert data.startswith(AR_MAGIC)

    header = data[8:68]
    assert header == (
        b'debian-binary   '
        b'1234567890  '
        b'0     '
        b'0     '
        b'100644  '
        b'4         '
        b'`\n'
    )
    assert data[68:72] == b'2.0\n'

    # odd-sized members are padded with one newline
    assert data[72 + 60:] == b'abc\n'
    assert len(data) == 8 + 60 + 4 + 60 + 3 + 1


def test_ar_round_trip():
    buf = io.BytesIO()
    writer = ArWriter(buf, mtime=0)
    writer.add_bytes('first', b'1')
    writer.add_bytes('second', b'22')
    writer.add_stream('third', io.BytesIO(b'333'), 3)
    assert writer.members == ['first', 'second', 'third']

    buf.seek(0)
    members = arfile.ArFile(fileobj=buf).getmembers()
    assert [m.name for m in members] == ['first', 'second', 'third']
    assert [m.read() for m in members] == [b'1', b'22', b'333']
    assert all(m.owner == 0 and m.group == 0 for m in members)
    assert all(int(m.fmode.strip(), 8) == 0o100644 for m in members)


def test_ar_rejects_long_names():
    writer = ArWriter(io.BytesIO())

    with pytest.raises(ValueError):
        writer.add_bytes('a-very-long-member-name', b'')


def test_ar_short_stream():
    writer = ArWriter(io.BytesIO())

    with pytest.raises(PackagingFailure):
        writer.add_stream('short', io.BytesIO(b'ab'), 10)


def test_ar_rejects_oversized_members():
    writer = ArWriter(io.BytesIO())

    with pytest.raises(PackagingFailure):
        writer.add_stream('huge', io.BytesIO(), 10 ** 10)


def test_open_ar(tmp_path):
    path = tmp_path / 'test.ar'

    with open(str(path), 'wb') as raw:
        writer = ArWriter(raw, mtime=0)
        writer.add_bytes('one', b'1')
        writer.add_bytes('two', b'two')

    members = open_ar(str(path)).getmembers()
    assert [m.name for m in members] == ['one', 'two']
    assert [read_member(m) for m in members] == [b'1', b'two']


def test_open_ar_rejects_garbage(tmp_path):
    path = tmp_path / 'garbage.deb'
    path.write_bytes(b'not an archive')

    with pytest.raises(PackagingFailure):
        open_ar(str(path))

    with pytest.raises(PackagingFailure):
        open_ar(str(tmp_path / 'missing.deb'))


def test_tar_member_name():
    assert tar_member_name('data', 'none') == 'data.tar'
    assert tar_member_name('data', 'gzip') == 'data.tar.gz'
    assert tar_member_name('data', 'bzip2') == 'data.tar.bz2'
    assert tar_member_name('data', 'xz') == 'data.tar.xz'

    with pytest.raises(UnsupportedCompression):
        tar_member_name('data', 'lzip')


def test_unsupported_compression_is_configuration_error():
    with pytest.raises(ConfigurationError):
        tar_member_name('data', 'zstd')


def test_digester():
    record = Digester.of_bytes('x', b'hello')
    assert record.name == 'x'
    assert record.size == 5
    assert record.md5 == hashlib.md5(b'hello').hexdigest()
    assert record.sha1 == hashlib.sha1(b'hello').hexdigest()
    assert record.sha256 == hashlib.sha256(b'hello').hexdigest()


def _build(entries, compression='gzip'):
    buf = io.BytesIO()

    with TarBuilder(buf, compression) as builder:
        for entry, data in entries:
            builder.add(entry, io.BytesIO(data) if data is not None else None)

    return builder, buf.getvalue()


@pytest.mark.parametrize('compression', ['none', 'gzip', 'bzip2', 'xz'])
def test_tar_builder_creates_parents(compression):
    builder, data = _build([
        (Entry('usr/share/doc/pkg/README', size=5, mode=0o644), b'hello'),
    ], compression)

    with open_member_tar(data) as tar:
        infos = tar.getmembers()

    assert [i.name for i in infos] == [
        './usr',
        './usr/share',
        './usr/share/doc',
        './usr/share/doc/pkg',
        './usr/share/doc/pkg/README',
    ]
    assert all(i.isdir() and i.mode == 0o755 for i in infos[:4])
    assert all(i.uname == 'root' and i.uid == 0 for i in infos[:4])
    assert builder.data_size == 5


def test_tar_builder_checksums():
    builder, _ = _build([
        (Entry('/a', size=3), b'aaa'),
        (Entry('b/', kind=DIRECTORY), None),
        (Entry('./b/c', size=2), b'cc'),
    ])

    assert [c.name for c in builder.checksums] == ['a', 'b/c']
    assert builder.checksums[0].md5 == hashlib.md5(b'aaa').hexdigest()
    assert builder.checksums[1].sha256 == hashlib.sha256(b'cc').hexdigest()
    assert builder.data_size == 5


def test_tar_builder_links_and_duplicates():
    builder, data = _build([
        (Entry('bin', kind=DIRECTORY, mode=0o755), None),
        (Entry('bin/a', size=1), b'x'),
        (Entry('bin/a', size=1), b'y'),
        (Entry('bin/b', kind=HARDLINK, linkname='/bin/a'), None),
        (Entry('bin/c', kind=SYMLINK, linkname='a'), None),
        (Entry('bin', kind=DIRECTORY, mode=0o700), None),
    ])

    with open_member_tar(data) as tar:
        infos = {i.name: i for i in tar.getmembers()}

    assert sorted(infos) == ['./bin', './bin/a', './bin/b', './bin/c']
    assert infos['./bin'].mode == 0o755
    assert infos['./bin/b'].islnk()
    assert infos['./bin/b'].linkname == './bin/a'
    assert infos['./bin/c'].issym()
    assert infos['./bin/c'].linkname == 'a'
    assert len(builder.checksums) == 1


def test_tar_builder_requires_content():
    with pytest.raises(PackagingFailure):
        _build([(Entry('a', size=3), None)])


def test_normalize_path():
    assert normalize_path('/usr//bin/./app') == 'usr/bin/app'
    assert normalize_path('./') == ''
    assert normalize_path('usr/lib/../bin/app') == 'usr/bin/app'

    with pytest.raises(PackagingFailure):
        normalize_path('../etc/passwd')

    with pytest.raises(PackagingFailure):
        normalize_path('/usr/../../etc/passwd')


def test_tar_builder_rejects_escaping_paths():
    with pytest.raises(PackagingFailure):
        _build([(Entry('../evil', size=1), b'x')])

    with pytest.raises(PackagingFailure):
        _build([(Entry('evil', kind=HARDLINK, linkname='../../x'), None)])
