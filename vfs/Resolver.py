#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# NestedVFS - Uniform access to files nested inside archives
# Copyright (C) 2026 NestedVFS contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Decode chain resolution.

Given a base resource and member names, peel one layer per name:

    http://h/data.zip.gz ! data.zip ! report.csv.bz2 ! report.csv

Each step looks at the sniffing filename of the current layer (the base's
file name, then each member name) and the next member name:

1. name == next + '.gz'  -> gzip decompressor
2. name == next + '.bz2' -> bzip2 decompressor
3. name == next + '.zst' -> zstandard decompressor
4. name ends with .zip   -> forward-only member search
5. name ends with .tar, .tgz or .tar.gz -> forward-only tar member search

Compression rules come first so 'name.csv.gz' inside 'outer.zip' resolves
unambiguously. Every layer closes the layer below it.
"""

import bz2
import contextlib
import gzip
import io
import tarfile
import zlib

from typing import Sequence, Tuple

import zstandard

from vfs.Address import BaseRef, DataURI, InlineBytes, LocalFile, RemoteURL, baseName
from vfs.Errors import DecodeFailure, NotFound, Unsupported, VfsError
from vfs.Kernel import getLogger
from vfs.Openers import openUrl
from vfs.SequentialZip import SequentialZipReader
from vfs.Settings import DEFAULT_SETTINGS, VfsSettings
from vfs.Streams import ChainedCloseStream, callOpener

logger = getLogger(__name__)

DEFAULT_SNIFF_NAME = 'file'

# Sniffing filenames for data URIs, by declared media type
MEDIA_TYPE_NAMES = {
    'application/gzip': 'file.gz',
    'application/bzip2': 'file.bz2',
    'application/zip': 'file.zip',
    'application/x-tar': 'file.tar',
    'application/zstd': 'file.zst',
}

SINGLE_STREAM_SUFFIXES = ('.gz', '.bz2', '.zst')
TAR_SUFFIXES = ('.tar', '.tgz', '.tar.gz')
ZIP_SUFFIX = '.zip'

# Errors raised by decoders, reported as DecodeFailure
DECODER_ERRORS = (zlib.error, EOFError, gzip.BadGzipFile, tarfile.TarError, zstandard.ZstdError)


@contextlib.contextmanager
def decodeErrors(description):
    """Report decoder failures as DecodeFailure."""
    try:
        yield
    except VfsError:
        raise
    except DECODER_ERRORS as e:
        raise DecodeFailure(f"Cannot decode {description}: {e}") from e


def _openGzip(stream):
    return gzip.GzipFile(fileobj=stream, mode='rb')


def _openBzip2(stream):
    return bz2.BZ2File(stream, mode='rb')


def _openZstd(stream):
    return zstandard.ZstdDecompressor().stream_reader(stream, read_across_frames=True, closefd=False)


# Tried in order; first match wins
COMPRESSION_RULES = (
    ('.gz', _openGzip),
    ('.bz2', _openBzip2),
    ('.zst', _openZstd),
)


def sniffName(base: BaseRef) -> str:
    """Filename used to decide how the base resource itself is decoded."""
    if isinstance(base, LocalFile):
        return base.name
    if isinstance(base, RemoteURL):
        return base.path
    if isinstance(base, DataURI):
        return MEDIA_TYPE_NAMES.get((base.mediaType or '').lower(), DEFAULT_SNIFF_NAME)
    if isinstance(base, InlineBytes):
        return DEFAULT_SNIFF_NAME
    raise TypeError(f"Unknown base resource: {base!r}")


def _closeQuietly(stream, description):
    try:
        stream.close()
    except Exception as e:
        logger.debug(f"Error closing {description} after failure: {e}")


class DecodeChainResolver:
    """Open the content addressed by (base, segments)."""

    def __init__(self, settings: VfsSettings = DEFAULT_SETTINGS):
        self.settings = settings

    def openBase(self, base: BaseRef) -> Tuple[object, str]:
        """
        Open the raw stream of a base resource.

        Returns:
            (stream, sniffing filename)
        """
        if isinstance(base, LocalFile):
            return open(base.path, 'rb'), base.name

        if isinstance(base, RemoteURL):
            opener = self.settings.urlOpener or openUrl
            stream = callOpener(lambda: opener(base.url, self.settings), base.url)
            return stream, base.path

        if isinstance(base, (DataURI, InlineBytes)):
            return io.BytesIO(base.data), sniffName(base)

        raise TypeError(f"Unknown base resource: {base!r}")

    def resolve(self, base: BaseRef, segments: Sequence[str] = ()):
        """
        Open the content of the member addressed by segments below base.

        Raises:
            NotFound: If a named member is absent
            Unsupported: If segments remain below a bare single-stream compressed file
            DecodeFailure: On transport or decoding errors
        """
        stream, filename = self.openBase(base)
        logger.debug(f"Resolving {base} ! {'!'.join(segments)}" if segments else f"Resolving {base}")
        return self.unwrap(stream, filename, tuple(segments))

    def unwrap(self, stream, filename: str, remaining: Tuple[str, ...]):
        """
        Peel decode layers off stream until no member names remain.

        Takes ownership of stream: the returned stream closes it, and it is
        closed before any failure propagates.
        """
        if not remaining:
            return stream

        try:
            with decodeErrors(filename):
                return self._unwrapLayer(stream, baseName(filename), remaining)
        except BaseException:
            _closeQuietly(stream, filename)
            raise

    def _unwrapLayer(self, stream, name: str, remaining: Tuple[str, ...]):
        target, rest = remaining[0], remaining[1:]

        for suffix, decompressorFactory in COMPRESSION_RULES:
            if name == target + suffix:
                layer = ChainedCloseStream(decompressorFactory(stream), stream.close)
                return self.unwrap(layer, target, rest)

        lowerName = name.lower()

        if lowerName.endswith(ZIP_SUFFIX):
            return self._unwrapZip(stream, name, target, rest)

        if lowerName.endswith(TAR_SUFFIXES):
            return self._unwrapTar(stream, name, target, rest)

        if lowerName.endswith(SINGLE_STREAM_SUFFIXES):
            raise Unsupported(target, name)

        raise NotFound(target, name)

    def _unwrapZip(self, stream, name, target, rest):
        reader = SequentialZipReader(stream)
        try:
            for member in reader:
                if member.name == target:
                    inner = self.unwrap(reader.cursor, target, rest)
                    # Only one member is extracted per resolution, so the reader
                    # can be retired together with it.
                    return ChainedCloseStream(inner, reader.close)
        except BaseException:
            _closeQuietly(reader, name)
            raise

        reader.close()
        raise NotFound(target, name)

    def _unwrapTar(self, stream, name, target, rest):
        source = stream
        if not name.lower().endswith('.tar'):
            source = ChainedCloseStream(_openGzip(stream), stream.close)

        tar = None
        try:
            tar = tarfile.open(fileobj=source, mode='r|')

            for info in tar:
                if info.name != target:
                    continue

                if not info.isfile():
                    raise NotFound(target, name)

                inner = self.unwrap(tar.extractfile(info), target, rest)

                def closeArchive():
                    try:
                        tar.close()
                    finally:
                        source.close()

                return ChainedCloseStream(inner, closeArchive)

        except BaseException:
            if tar is not None:
                _closeQuietly(tar, name)
            _closeQuietly(source, name)
            raise

        tar.close()
        source.close()
        raise NotFound(target, name)
