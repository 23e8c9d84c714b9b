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

import os

from typing import Callable, Iterator, Optional

from vfs.Address import (
    FILE_SCHEME, SEGMENT_SEPARATOR, DataURI, InlineBytes, LocalFile, RemoteURL, baseName, classifyBase, parseAddress
)
from vfs.Errors import MalformedAddress
from vfs.Kernel import getLogger
from vfs.Resolver import DecodeChainResolver, decodeErrors, sniffName
from vfs.Settings import DEFAULT_SETTINGS, VfsSettings
from vfs.Streams import OneShotOpener, callOpener
from vfs.Utils import decodeText

logger = getLogger(__name__)

BASE_TYPES = (LocalFile, RemoteURL, DataURI, InlineBytes)

# Documentation-only address schemes, chosen from the sniffing filename
SUFFIX_SCHEMES = (
    ('.zip', 'zip'),
    ('.gz', 'gz'),
    ('.bz2', 'bz2'),
    ('.zst', 'zst'),
    ('.tgz', 'tgz'),
    ('.tar', 'tar'),
)


def _toBase(base):
    if isinstance(base, BASE_TYPES):
        return base
    if isinstance(base, (bytes, bytearray)):
        return InlineBytes(bytes(base))
    if isinstance(base, os.PathLike):
        return LocalFile(os.fspath(base))
    if isinstance(base, str):
        return classifyBase(base)
    raise TypeError(f"Unsupported base resource type: {type(base).__name__}")


class Entry:
    """
    One addressable piece of content: a base resource plus the names of the
    container members leading down to it.

    Entries are immutable identities. Descending into a container produces a
    new Entry via child(); the only replaceable part is the content opener,
    which the scanner binds to an already open parent container.
    """

    def __init__(self, base, *segments: str, modified: Optional[float] = None, settings: VfsSettings = None):
        for segment in segments:
            if not isinstance(segment, str) or not segment:
                raise ValueError(f"Invalid segment: {segment!r}")

        self.base = _toBase(base)
        self.segments = tuple(segments)
        self.settings = settings or DEFAULT_SETTINGS
        self._modified = modified
        self._opener: Optional[Callable] = None

    @classmethod
    def resolve(cls, address: str, settings: VfsSettings = None) -> 'Entry':
        """
        Build an Entry from an address string.

        Raises:
            MalformedAddress: If the address cannot be parsed
        """
        base, segments = parseAddress(address)
        return cls(base, *segments, settings=settings)

    def child(self, name: str, modified: Optional[float] = None) -> 'Entry':
        """Entry for member name of this entry (which must be a container)"""
        return Entry(self.base, *self.segments, name, modified=modified, settings=self.settings)

    @property
    def lastPath(self) -> str:
        if not self.segments:
            return str(self.base)
        return self.segments[-1]

    @property
    def lastName(self) -> str:
        if not self.segments:
            if isinstance(self.base, LocalFile):
                return self.base.name
            return self.lastPath
        return baseName(self.segments[-1])

    @property
    def isNative(self) -> bool:
        """True when content is a plain local file that supports random access"""
        return not self.segments and isinstance(self.base, LocalFile)

    @property
    def modified(self) -> Optional[float]:
        """Modification time in POSIX seconds, None when unknown"""
        if self._modified is not None:
            return self._modified

        if self.isNative:
            try:
                return os.path.getmtime(self.base.path)
            except OSError as e:
                logger.debug(f"Cannot stat {self.base.path}: {e}")

        return None

    @property
    def address(self) -> str:
        """Address string that Entry.resolve() maps back to this entry's content"""
        if isinstance(self.base, LocalFile):
            baseText = f'{FILE_SCHEME}://{self.base.path}'
        elif isinstance(self.base, InlineBytes):
            baseText = str(DataURI(None, self.base.data))
        else:
            baseText = str(self.base)

        if not self.segments:
            return baseText

        name = baseName(sniffName(self.base)).lower()
        for suffix, scheme in SUFFIX_SCHEMES:
            if name.endswith(suffix):
                baseText = f'{scheme}:{baseText}'
                break

        for segment in self.segments:
            if SEGMENT_SEPARATOR in segment:
                raise MalformedAddress(f"Member name cannot be addressed: {segment}", address=str(self))

        return SEGMENT_SEPARATOR.join((baseText,) + self.segments)

    # Opener management

    @property
    def isBound(self) -> bool:
        return self._opener is not None

    def bindOpener(self, factory: Callable, singleUse: bool = False):
        """
        Serve content from factory instead of resolving it from the base.

        A single-use factory serves the first open only; later opens resolve
        the content from the base again.
        """
        if singleUse:
            self._opener = OneShotOpener(factory, str(self), fallback=self._resolveContent)
        else:
            self._opener = factory

    def detachOpener(self):
        """Go back to resolving content from the base resource."""
        self._opener = None

    def _resolveContent(self):
        return DecodeChainResolver(self.settings).resolve(self.base, self.segments)

    # Content access

    def open(self):
        """
        Open the content as a binary stream. The caller must close it.

        Raises:
            NotFound: If a named member is absent
            DecodeFailure: On any other failure to produce the stream
        """
        opener = self._opener or self._resolveContent
        return callOpener(opener, str(self))

    def readAll(self) -> bytes:
        if not self.segments and isinstance(self.base, (DataURI, InlineBytes)):
            return self.base.data

        with self.open() as stream, decodeErrors(str(self)):
            return stream.read()

    def forEachChunk(self, callback: Callable):
        """
        Feed the content to callback(buffer, offset, length) in chunks of
        settings.chunkSize bytes (64 KiB by default).
        """
        chunkSize = self.settings.chunkSize

        with self.open() as stream, decodeErrors(str(self)):
            while True:
                chunk = stream.read(chunkSize)
                if not chunk:
                    break
                callback(chunk, 0, len(chunk))

    def iterChunks(self, chunkSize: int = None) -> Iterator[bytes]:
        """
        Iterate over content in chunks

        The stream is closed when the iterator is exhausted or closed.

        Args:
            chunkSize: Size of each chunk in bytes (settings.chunkSize if omitted)

        Yields:
            bytes: Content chunks
        """
        chunkSize = chunkSize or self.settings.chunkSize

        with self.open() as stream, decodeErrors(str(self)):
            while True:
                chunk = stream.read(chunkSize)
                if not chunk:
                    break
                yield chunk

    def readText(self, encoding: str = None) -> str:
        """Content as text: explicit encoding, else UTF-8, else detected charset."""
        data = self.readAll()
        if encoding:
            return data.decode(encoding)
        return decodeText(data, ['utf-8'])

    def __str__(self):
        return ''.join([str(self.base)] + [f'/{segment}' for segment in self.segments])

    def __repr__(self):
        return f'Entry({self.base!r}, segments={self.segments!r})'

    def __eq__(self, other):
        if not isinstance(other, Entry):
            return NotImplemented
        return self.base == other.base and self.segments == other.segments

    def __hash__(self):
        return hash((self.base, self.segments))
