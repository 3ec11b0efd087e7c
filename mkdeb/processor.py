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
Assembling .deb packages and .changes files.
"""

import email.utils
import logging
import os
import tarfile
import time
import typing
from contextlib import ExitStack
from tempfile import TemporaryDirectory

from mkdeb.archive import (
    ArWriter,
    ChecksumRecord,
    Digester,
    DigestingWriter,
    TarBuilder,
    check_compression,
    tar_member_name,
)
from mkdeb.changes import ChangesManifest, merge
from mkdeb.control import (
    PackageDescriptor,
    build_control_tar,
    check_control_directory,
    format_md5sums,
    installed_size_kib,
    list_control_files,
    read_control_fields,
)
from mkdeb.errors import (
    ConfigurationError,
    PackagingError,
    PackagingFailure,
    SigningFailure,
)
from mkdeb.producers import DataProducer
from mkdeb.signing import GpgSigner, Signer


logger = logging.getLogger('mkdeb')

DEBIAN_BINARY = b'2.0\n'
CONTROL_MEMBER = 'control.tar.gz'
SIGNATURE_MEMBER = '_gpgbuilder'


def replace_atomically(path, data):
    # type: (str, bytes) -> None
    """
    Write data to path.new and rename it over path.
    """
    temporary = path + '.new'

    try:
        with open(temporary, 'wb') as writer:
            writer.write(data)

        os.rename(temporary, path)
    except BaseException:
        _remove_if_exists(temporary)
        raise


def _remove_if_exists(path):
    # type: (str) -> None
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class Processor:

    """
    Builds a .deb from a control directory and a sequence of data
    producers.
    """

    def __init__(self, mtime=None):
        # type: (typing.Optional[int]) -> None
        #: Modification time recorded in ar headers and generated
        #: control members, or None for the time of the build
        self.mtime = mtime
        self.logger = logger.getChild('Processor')

    def build(
        self,
        control_dir,        # type: str
        producers,          # type: typing.Sequence[DataProducer]
        output,             # type: str
        compression='gzip'  # type: str
    ):
        # type: (...) -> PackageDescriptor
        return self._build(control_dir, producers, output, compression)

    def build_signed(
        self,
        control_dir,        # type: str
        producers,          # type: typing.Sequence[DataProducer]
        output,             # type: str
        compression,        # type: str
        signer,             # type: Signer
    ):
        # type: (...) -> PackageDescriptor
        """
        Like build(), but add a _gpgbuilder member with a clearsigned
        list of the checksums of the other members, in the format used
        by dpkg-sig.
        """
        return self._build(
            control_dir, producers, output, compression, signer=signer,
        )

    def _build(
        self,
        control_dir,        # type: str
        producers,          # type: typing.Sequence[DataProducer]
        output,             # type: str
        compression,        # type: str
        signer=None         # type: typing.Optional[Signer]
    ):
        # type: (...) -> PackageDescriptor
        check_control_directory(control_dir)
        check_compression(compression)

        control_files = list_control_files(control_dir)
        control = read_control_fields(control_dir)
        mtime = self.mtime

        if mtime is None:
            mtime = int(time.time())

        self.logger.info('Creating debian package: %s', output)

        with ExitStack() as stack:
            scratch = stack.enter_context(
                TemporaryDirectory(prefix='mkdeb.')
            )
            data_member = tar_member_name('data', compression)
            data_path = os.path.join(scratch, data_member)

            try:
                with open(data_path, 'wb') as writer:
                    digesting_writer = DigestingWriter(writer)

                    with TarBuilder(digesting_writer, compression) as builder:
                        for producer in producers:
                            self.logger.info('Adding data from %r', producer)
                            producer.produce(builder.add)
            except (PackagingError, OSError, tarfile.TarError) as e:
                raise PackagingFailure(
                    'Failed to create data for {}: {}'.format(output, e)
                ) from e

            data_record = digesting_writer.digester.record(data_member)
            checksums = builder.checksums
            installed_size = installed_size_kib(builder.data_size)
            self.logger.debug(
                'Wrote %d files, Installed-Size %d KiB',
                len(checksums), installed_size,
            )

            extra = {}

            if 'md5sums' not in map(os.path.basename, control_files):
                extra['md5sums'] = format_md5sums(checksums)

            try:
                control_tar = build_control_tar(control_files, mtime, extra)
            except (PackagingError, OSError, tarfile.TarError) as e:
                raise PackagingFailure(
                    'Failed to create control member for {}: {}'.format(
                        output, e,
                    )
                ) from e

            signature = None        # type: typing.Optional[bytes]

            if signer is not None:
                signature = self._sign_members(signer, mtime, [
                    Digester.of_bytes('debian-binary', DEBIAN_BINARY),
                    Digester.of_bytes(CONTROL_MEMBER, control_tar),
                    data_record,
                ])

            deb = self._write_ar(
                output, mtime, control_tar, data_member, data_path,
                signature,
            )

        return PackageDescriptor(
            control=control,
            checksums=checksums,
            installed_size=installed_size,
            deb=deb,
        )

    def _write_ar(
        self,
        output,             # type: str
        mtime,              # type: int
        control_tar,        # type: bytes
        data_member,        # type: str
        data_path,          # type: str
        signature           # type: typing.Optional[bytes]
    ):
        # type: (...) -> ChecksumRecord
        temporary = output + '.new'

        try:
            with open(temporary, 'wb') as raw:
                writer = DigestingWriter(raw)
                ar = ArWriter(writer, mtime=mtime)
                ar.add_bytes('debian-binary', DEBIAN_BINARY)
                ar.add_bytes(CONTROL_MEMBER, control_tar)
                ar.add_file(data_member, data_path)

                if signature is not None:
                    ar.add_bytes(SIGNATURE_MEMBER, signature)

            os.rename(temporary, output)
        except OSError as e:
            _remove_if_exists(temporary)
            raise PackagingFailure(
                'Failed to write {}: {}'.format(output, e)) from e
        except BaseException:
            _remove_if_exists(temporary)
            raise

        return writer.digester.record(os.path.basename(output))

    def _sign_members(self, signer, mtime, records):
        # type: (Signer, int, typing.Sequence[ChecksumRecord]) -> bytes
        self.logger.info('Signing package with %s', signer.identity)
        lines = [
            'Version: 4',
            'Signer: {}'.format(signer.identity),
            'Date: {}'.format(email.utils.formatdate(mtime)),
            'Role: builder',
            'Files: ',
        ]

        for record in records:
            lines.append('\t{} {} {} {}'.format(
                record.md5, record.sha1, record.size, record.name,
            ))

        return signer.clearsign('\n'.join(lines) + '\n').encode('utf-8')

    def create_changes(
        self,
        descriptor,         # type: PackageDescriptor
        existing=None,      # type: typing.Union[None, str, bytes]
        fields=None,        # type: typing.Optional[typing.Mapping[str, str]]
        signer=None         # type: typing.Optional[Signer]
    ):
        # type: (...) -> typing.Tuple[ChangesManifest, str]
        """
        Return the merged manifest and its text, clearsigned if a signer
        is given.
        """
        manifest = merge(existing, descriptor, fields=fields)
        text = manifest.dump()

        if signer is not None:
            self.logger.info('Signing changes with %s', signer.identity)
            text = signer.clearsign(text)

        return manifest, text


def _is_possible_output(path):
    # type: (str) -> bool
    if os.path.exists(path):
        return os.path.isfile(path) and os.access(path, os.W_OK)

    return os.access(os.path.dirname(os.path.abspath(path)), os.W_OK)


class BuildConfig(typing.NamedTuple):

    """
    Everything needed to build one package and, optionally, its
    .changes file.
    """

    deb: typing.Optional[str]
    control: typing.Optional[str]
    producers: typing.Sequence[DataProducer] = ()
    compression: str = 'gzip'
    #: Existing .changes to merge into
    changes_in: typing.Optional[str] = None
    #: Where to write the (signed) .changes
    changes_out: typing.Optional[str] = None
    #: Where to save an unsigned copy of the merged .changes
    changes_save: typing.Optional[str] = None
    changes_fields: typing.Mapping[str, str] = {}
    keyring: typing.Optional[str] = None
    key: typing.Optional[str] = None
    passphrase: typing.Optional[str] = None
    sign_package: bool = False

    def validate(self):
        # type: () -> typing.List[PackagingError]
        """
        Return every problem with this configuration.
        """
        problems = []       # type: typing.List[PackagingError]

        try:
            check_control_directory(self.control)
        except ConfigurationError as e:
            problems.append(e)

        try:
            check_compression(self.compression)
        except ConfigurationError as e:
            problems.append(e)

        if not self.deb:
            problems.append(ConfigurationError(
                'You need to specify where the deb file is supposed to '
                'be created'))
        elif not _is_possible_output(self.deb):
            problems.append(ConfigurationError(
                'Cannot write the package to {}'.format(self.deb)))

        if self.changes_in is not None:
            if not (os.path.isfile(self.changes_in) and
                    os.access(self.changes_in, os.R_OK)):
                problems.append(ConfigurationError(
                    'The changes input {} was not found or is not '
                    'readable'.format(self.changes_in)))

            if self.changes_out is None:
                problems.append(ConfigurationError(
                    'A changes input without a changes output does not '
                    'make much sense'))

        for label, path in (
            ('changes output', self.changes_out),
            ('saved changes', self.changes_save),
        ):
            if path is not None and not _is_possible_output(path):
                problems.append(ConfigurationError(
                    'Cannot write the {} to {}'.format(label, path)))

        if self.changes_save is not None and self.changes_out is None:
            problems.append(ConfigurationError(
                'Saving the changes requires a changes output'))

        if self.sign_package or self.keyring is not None:
            if self.sign_package and self.keyring is None:
                problems.append(ConfigurationError(
                    'Signing requested, but no keyring supplied'))
            elif self.keyring is not None and not os.path.isfile(
                    self.keyring):
                problems.append(ConfigurationError(
                    'Keyring {} does not exist'.format(self.keyring)))

            if self.key is None:
                problems.append(ConfigurationError(
                    'Signing requested, but no key supplied'))

            if self.passphrase is None:
                problems.append(ConfigurationError(
                    'Signing requested, but no passphrase supplied'))

        return problems

    def check(self):
        # type: () -> None
        problems = self.validate()

        if len(problems) == 1:
            raise problems[0]
        elif problems:
            raise ConfigurationError(
                'Invalid build configuration', problems)


class DebMaker:

    """
    Builds a .deb and optionally a .changes file from a BuildConfig.
    Nothing is left at the output paths unless every requested output
    was produced.
    """

    def __init__(self, config, processor=None, signer=None):
        # type: (BuildConfig, typing.Optional[Processor], typing.Optional[Signer]) -> None
        self.config = config
        self.processor = processor or Processor()
        self.signer = signer
        self.logger = logger.getChild('DebMaker')

    def _get_signer(self):
        # type: () -> typing.Optional[Signer]
        if self.signer is not None:
            return self.signer

        if self.config.keyring is None:
            return None

        assert self.config.key is not None
        assert self.config.passphrase is not None
        return GpgSigner.from_file(
            self.config.keyring, self.config.key, self.config.passphrase,
        )

    def make_deb(self):
        # type: () -> PackageDescriptor
        config = self.config
        config.check()
        assert config.deb is not None
        assert config.control is not None

        signer = self._get_signer()
        existing = None     # type: typing.Optional[bytes]

        if config.changes_in is not None:
            try:
                with open(config.changes_in, 'rb') as reader:
                    existing = reader.read()
            except OSError as e:
                raise PackagingFailure(
                    'Unable to read {}: {}'.format(config.changes_in, e)
                ) from e

        try:
            if config.sign_package:
                assert signer is not None
                descriptor = self.processor.build_signed(
                    config.control, config.producers, config.deb,
                    config.compression, signer,
                )
            else:
                descriptor = self.processor.build(
                    config.control, config.producers, config.deb,
                    config.compression,
                )
        except (ConfigurationError, SigningFailure, PackagingFailure):
            raise
        except PackagingError as e:
            raise PackagingFailure(
                'Failed to create debian package {}'.format(config.deb)
            ) from e

        if config.changes_out is None:
            return descriptor

        written = [config.deb]

        try:
            self.logger.info('Creating changes file: %s', config.changes_out)
            manifest, text = self.processor.create_changes(
                descriptor,
                existing=existing,
                fields=config.changes_fields,
                signer=signer,
            )
            replace_atomically(config.changes_out, text.encode('utf-8'))
            written.append(config.changes_out)

            if config.changes_save is not None:
                self.logger.info(
                    'Saving changes to file: %s', config.changes_save)
                replace_atomically(
                    config.changes_save, manifest.dump().encode('utf-8'))
        except BaseException as e:
            for path in written:
                _remove_if_exists(path)

            if isinstance(e, OSError):
                raise PackagingFailure(
                    'Failed to create debian changes file {}'.format(
                        config.changes_out,
                    )
                ) from e

            raise

        return descriptor
