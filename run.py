#!/usr/bin/python3

# mkdeb — build Debian binary packages and .changes files
#
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
Create Debian packages from files, directories, tarballs and links.
"""

import argparse
import logging
import os
import sys
import tarfile
import typing

import yaml

from mkdeb.archive import open_ar, open_member_tar, read_member
from mkdeb.config import load_build_config
from mkdeb.errors import PackagingError, PackagingFailure
from mkdeb.processor import DebMaker


logger = logging.getLogger('mkdeb')

VERSION = '0.1.0'


class Builder:

    """
    Main object
    """

    def __init__(self):
        # type: () -> None
        self.logger = logger.getChild('Builder')

    def run_command_line(self, argv=None):
        # type: (typing.Optional[typing.Sequence[str]]) -> None
        """
        Run appropriate commands for the command-line arguments
        """
        parser = argparse.ArgumentParser(
            description='Build Debian packages',
        )
        parser.add_argument('--chdir', default=None)
        parser.add_argument('--version', action='store_true')
        parser.add_argument(
            '--verbose', '-v', dest='log_level', action='store_const',
            const=logging.DEBUG, default=logging.INFO,
        )
        parser.add_argument(
            '--quiet', '-q', dest='log_level', action='store_const',
            const=logging.WARNING,
        )
        subparsers = parser.add_subparsers(dest='command', metavar='command')

        subparser = subparsers.add_parser(
            'build',
            help='Build a package from a YAML description',
        )
        subparser.add_argument(
            '--compression', default=None,
            help='Override the data compression (none, gzip, bzip2, xz)',
        )
        subparser.add_argument(
            '--deb', default=None,
            help='Override where the package is written',
        )
        subparser.add_argument(
            '--passphrase-env', default=None, metavar='VAR',
            help='Read the signing passphrase from environment variable VAR',
        )
        subparser.add_argument('yaml_file')

        subparser = subparsers.add_parser(
            'inspect',
            help='List the members and contents of a package',
        )
        subparser.add_argument('deb')

        args = parser.parse_args(argv)

        if args.version:
            print('mkdeb {}'.format(VERSION))
            return

        logging.getLogger().setLevel(args.log_level)

        if args.chdir is not None:
            os.chdir(args.chdir)

        if args.command is None:
            parser.error('A command is required')

        getattr(
            self, 'command_' + args.command.replace('-', '_'))(**vars(args))

    def command_build(
        self,
        *,
        yaml_file,              # type: str
        compression=None,       # type: typing.Optional[str]
        deb=None,               # type: typing.Optional[str]
        passphrase_env=None,    # type: typing.Optional[str]
        **kwargs
    ):
        # type: (...) -> None
        passphrase = None

        if passphrase_env is not None:
            passphrase = os.environ.get(passphrase_env)

        config = load_build_config(
            yaml_file,
            compression=compression,
            deb=os.path.abspath(deb) if deb is not None else None,
            passphrase=passphrase,
        )
        descriptor = DebMaker(config).make_deb()

        yaml.safe_dump(
            {
                'package': descriptor.name,
                'version': descriptor.version,
                'architecture': descriptor.architecture,
                'installed_size': descriptor.installed_size,
                'deb': config.deb,
                'size': descriptor.deb.size if descriptor.deb else None,
                'sha256': descriptor.deb.sha256 if descriptor.deb else None,
                'changes': config.changes_out,
            },
            stream=sys.stdout,
            default_flow_style=False,
            sort_keys=False,
        )

    def command_inspect(
        self,
        *,
        deb,        # type: str
        **kwargs
    ):
        # type: (...) -> None
        members = []

        for member in open_ar(deb):
            data = read_member(member)
            details = {
                'name': member.name,
                'size': member.size,
            }   # type: typing.Dict[str, typing.Any]

            if member.name.startswith(('control.tar', 'data.tar')):
                try:
                    with open_member_tar(data) as tar:
                        details['entries'] = [
                            '{} {}/{} {} {}{}'.format(
                                oct(info.mode)[2:].rjust(4, '0'),
                                info.uname, info.gname,
                                info.size, info.name,
                                ' -> ' + info.linkname
                                if info.linkname else '',
                            )
                            for info in tar
                        ]
                except (tarfile.TarError, EOFError, OSError) as e:
                    raise PackagingFailure(
                        'Unable to read {} in {}: {}'.format(
                            member.name, deb, e,
                        )
                    ) from e
            elif member.name == 'debian-binary':
                details['content'] = data.decode('ascii').strip()

            members.append(details)

        yaml.safe_dump(
            {'deb': deb, 'members': members},
            stream=sys.stdout,
            default_flow_style=False,
            sort_keys=False,
        )


def setup_logging():
    # type: () -> None
    if sys.stderr.isatty():
        import colorlog

        formatter = colorlog.ColoredFormatter(
            '%(log_color)s%(levelname)s:%(name)s:%(reset)s %(message)s')
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logging.getLogger().addHandler(handler)
    else:
        logging.basicConfig()

    logging.getLogger().setLevel(logging.INFO)


def main(argv=None):
    # type: (typing.Optional[typing.Sequence[str]]) -> None
    setup_logging()

    try:
        Builder().run_command_line(argv)
    except KeyboardInterrupt:
        raise SystemExit(130)
    except PackagingError as e:
        logger.error('%s', e)

        cause = e.__cause__

        while cause is not None:
            logger.error('caused by: %s', cause)
            cause = cause.__cause__

        raise SystemExit(1)


if __name__ == '__main__':
    main()
