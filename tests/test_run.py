"""Tests for the command-line interface."""

import pytest
import yaml

import run


BUILD = '''\
deb: test.deb
control: control
data:
  - src: app
    dest: usr/bin/app
    mapper:
      user: root
      group: root
      uid: 0
      gid: 0
'''


@pytest.fixture
def description(tmp_path, control_dir, app_file):
    path = tmp_path / 'build.yaml'
    path.write_text(BUILD)
    return path


def test_version(capsys):
    run.main(['--version'])

    assert capsys.readouterr().out == 'mkdeb {}\n'.format(run.VERSION)


def test_build_and_inspect(tmp_path, description, capsys):
    run.main(['build', '--compression', 'bzip2', str(description)])

    summary = yaml.safe_load(capsys.readouterr().out)
    assert summary['package'] == 'test-package'
    assert summary['version'] == '1.0'
    assert summary['deb'] == str(tmp_path / 'test.deb')
    assert summary['installed_size'] == 1
    assert summary['changes'] is None

    run.main(['inspect', str(tmp_path / 'test.deb')])

    listing = yaml.safe_load(capsys.readouterr().out)
    members = listing['members']
    assert [m['name'] for m in members] == [
        'debian-binary', 'control.tar.gz', 'data.tar.bz2',
    ]
    assert members[0]['content'] == '2.0'
    assert '0755 root/root 0 ./usr' in members[2]['entries']
    assert any(
        e.startswith('0755 root/root ') and e.endswith(' ./usr/bin/app')
        for e in members[2]['entries']
    )


def test_build_chdir_and_deb_override(
    tmp_path, description, capsys, monkeypatch,
):
    monkeypatch.chdir(str(tmp_path))
    run.main([
        '--quiet', '--chdir', str(tmp_path),
        'build', '--deb', 'renamed.deb', 'build.yaml',
    ])

    assert (tmp_path / 'renamed.deb').exists()
    assert not (tmp_path / 'test.deb').exists()


def test_build_failure(tmp_path, capsys):
    path = tmp_path / 'build.yaml'
    path.write_text('deb: test.deb\ncontrol: missing\n')

    with pytest.raises(SystemExit) as excinfo:
        run.main(['build', str(path)])

    assert excinfo.value.code == 1
    assert not (tmp_path / 'test.deb').exists()


def test_command_required():
    with pytest.raises(SystemExit) as excinfo:
        run.main([])

    assert excinfo.value.code == 2


def test_build_passphrase_from_option(
    tmp_path, control_dir, app_file, capsys, monkeypatch,
):
    (tmp_path / 'secring.gpg').write_bytes(b'')
    path = tmp_path / 'build.yaml'
    path.write_text(
        BUILD +
        'signing:\n'
        '  keyring: secring.gpg\n'
        '  key: signer@example.com\n'
        '  passphrase_env: MKDEB_TEST_UNSET\n'
    )
    monkeypatch.delenv('MKDEB_TEST_UNSET', raising=False)
    monkeypatch.setenv('MKDEB_TEST_PASSPHRASE', 'secret')

    run.main([
        'build', '--passphrase-env', 'MKDEB_TEST_PASSPHRASE', str(path),
    ])

    assert (tmp_path / 'test.deb').exists()


def test_inspect_garbage(tmp_path):
    path = tmp_path / 'garbage.deb'
    path.write_bytes(b'this is not a package')

    with pytest.raises(SystemExit) as excinfo:
        run.main(['inspect', str(path)])

    assert excinfo.value.code == 1
