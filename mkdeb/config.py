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
Loading a build description from YAML.

A description looks like this (relative paths are relative to the
YAML file):

    deb: build/hello_1.0_all.deb
    control: debian
    compression: xz
    data:
      - type: directory
        src: build/root
        excludes: ['**/*.pyc']
        mapper:
          type: perm
          prefix: /usr/share/hello
          user: root
          group: root
          filemode: rw-r--r--
          dirmode: '0755'
      - type: link
        path: /usr/bin/hello
        target: ../share/hello/hello.py
    changes:
      in: hello.changes
      out: build/hello_1.0_amd64.changes
      fields:
        Distribution: unstable
        Urgency: low
    signing:
      keyring: secring.gpg
      key: '0xDEADBEEF'
      passphrase_env: HELLO_PASSPHRASE
      sign_package: true
"""

import os
import typing

import yaml

from mkdeb.errors import ConfigurationError
from mkdeb.mapping import mapper_from_config
from mkdeb.processor import BuildConfig
from mkdeb.producers import (
    DataProducer,
    DataProducerArchive,
    DataProducerDirectory,
    DataProducerFile,
    DataProducerLink,
)


def _as_list(value):
    # type: (typing.Any) -> typing.List[typing.Any]
    if value is None:
        return []

    if isinstance(value, str):
        return [p.strip() for p in value.split(',') if p.strip()]

    return list(value)


def _optional_str(value):
    # type: (typing.Any) -> typing.Optional[str]
    if value is None:
        return None

    return str(value)


def producer_from_config(details, base_dir='.'):
    # type: (typing.Mapping[str, typing.Any], str) -> DataProducer
    """
    Return the data producer described by one item of the 'data' list.
    """
    kind = details.get('type')
    mapper_details = details.get('mapper')

    if mapper_details is None:
        mappers = []
    elif isinstance(mapper_details, list):
        mappers = [mapper_from_config(m) for m in mapper_details]
    else:
        mappers = [mapper_from_config(mapper_details)]

    common = dict(
        includes=_as_list(details.get('includes')),
        excludes=_as_list(details.get('excludes')),
        mappers=mappers,
    )   # type: typing.Dict[str, typing.Any]

    if kind == 'link':
        for required in ('path', 'target'):
            if not details.get(required):
                raise ConfigurationError(
                    'link data requires {!r}'.format(required))

        return DataProducerLink(
            details['path'],
            details['target'],
            symlink=details.get('symlink', True),
            **common
        )

    src = details.get('src')

    if not src:
        raise ConfigurationError(
            '{} data requires "src"'.format(kind or 'untyped'))

    src = os.path.join(base_dir, os.path.expanduser(src))

    if kind is None:
        if os.path.isdir(src):
            kind = 'directory'
        elif src.endswith(('.tar', '.tar.gz', '.tgz', '.tar.bz2',
                           '.tar.xz')):
            kind = 'archive'
        else:
            kind = 'file'

    if kind == 'file':
        return DataProducerFile(src, dest=details.get('dest'), **common)
    elif kind == 'directory':
        return DataProducerDirectory(
            src,
            follow_symlinks=details.get('follow_symlinks', False),
            **common
        )
    elif kind == 'archive':
        return DataProducerArchive(src, **common)
    else:
        raise ConfigurationError('Unknown data type {!r}'.format(kind))


def load_build_config(path, environ=None, **overrides):
    # type: (str, typing.Optional[typing.Mapping[str, str]], typing.Any) -> BuildConfig
    """
    Read a YAML build description. Keyword arguments that are not None
    replace the corresponding BuildConfig fields.
    """
    if environ is None:
        environ = os.environ

    base_dir = os.path.dirname(os.path.abspath(path))

    try:
        with open(path, encoding='utf-8') as reader:
            details = yaml.safe_load(reader) or {}
    except OSError as e:
        raise ConfigurationError(
            'Unable to read {}: {}'.format(path, e.strerror or e)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            'Unable to parse {}: {}'.format(path, e)) from e

    if not isinstance(details, dict):
        raise ConfigurationError(
            '{} must contain a mapping'.format(path))

    def resolve(value):
        # type: (typing.Optional[str]) -> typing.Optional[str]
        if value is None:
            return None

        return os.path.join(base_dir, os.path.expanduser(str(value)))

    problems = []
    producers = []

    for item in details.get('data', []):
        try:
            producers.append(producer_from_config(item, base_dir))
        except (ConfigurationError, ValueError) as e:
            problems.append(ConfigurationError(str(e)))

    changes = details.get('changes', {}) or {}
    signing = details.get('signing', {}) or {}
    passphrase = overrides.get('passphrase')

    if passphrase is None:
        passphrase = _optional_str(signing.get('passphrase'))

    if passphrase is None and signing.get('passphrase_env'):
        passphrase = environ.get(signing['passphrase_env'])

        if passphrase is None:
            problems.append(ConfigurationError(
                'Environment variable {} is not set'.format(
                    signing['passphrase_env'],
                )
            ))

    config = BuildConfig(
        deb=resolve(details.get('deb')),
        control=resolve(details.get('control')),
        producers=producers,
        compression=details.get('compression', 'gzip'),
        changes_in=resolve(changes.get('in')),
        changes_out=resolve(changes.get('out')),
        changes_save=resolve(changes.get('save')),
        changes_fields={
            str(k): str(v) for k, v in (changes.get('fields') or {}).items()
        },
        keyring=resolve(signing.get('keyring')),
        key=_optional_str(signing.get('key')),
        passphrase=passphrase,
        sign_package=bool(signing.get('sign_package', False)),
    )

    config = config._replace(
        **{k: v for k, v in overrides.items() if v is not None}
    )
    problems.extend(config.validate())

    if len(problems) == 1:
        raise problems[0]
    elif problems:
        raise ConfigurationError(
            'Invalid build description {}'.format(path), problems)

    return config
