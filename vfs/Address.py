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
Address parsing for nested resources.

An address is a chain of optional schemes followed by a base resource and
'!'-separated member names:

    zip:gz:http://host/outer.zip.gz!outer.zip!dir/inner.csv

Schemes only document the decode chain; the member names and the sniffed
file names decide how each layer is actually decoded.
"""

import os

from dataclasses import dataclass
from typing import List, Tuple, Union
from urllib.parse import urlparse

from vfs import DataUrl
from vfs.Errors import MalformedAddress

SEGMENT_SEPARATOR = '!'
FILE_SCHEME = 'file'


@dataclass(frozen=True)
class LocalFile:
    path: str

    def __str__(self):
        return self.path

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


@dataclass(frozen=True)
class RemoteURL:
    url: str

    def __str__(self):
        return self.url

    @property
    def path(self) -> str:
        """URL path component, used as the sniffing filename"""
        return urlparse(self.url).path


@dataclass(frozen=True)
class DataURI:
    mediaType: Union[str, None]
    data: bytes

    def __str__(self):
        return DataUrl.encode(self.data, self.mediaType)


@dataclass(frozen=True)
class InlineBytes:
    data: bytes

    def __str__(self):
        return f'bytes[{len(self.data)}]'


BaseRef = Union[LocalFile, RemoteURL, DataURI, InlineBytes]


def _isSchemeChar(c: str) -> bool:
    return ('a' <= c <= 'z') or ('0' <= c <= '9')


def _splitSchemes(text: str) -> Tuple[List[str], str]:
    """Strip leading '[a-z0-9]+:' tokens, returning (schemes, remainder)."""
    schemes = []

    while True:
        i = 0
        while i < len(text) and _isSchemeChar(text[i]):
            i += 1

        if i > 0 and i < len(text) and text[i] == ':':
            schemes.append(text[:i])
            text = text[i + 1:]
            continue

        return schemes, text


def parsePath(text: str) -> List[str]:
    """
    Split an address into its base string and member names.

    Examples:
        >>> parsePath("data:test")
        ['data:test']

        >>> parsePath("gz:http://example.org/test.csv.gz!test.csv")
        ['http://example.org/test.csv.gz', 'test.csv']

        >>> parsePath("zip:file:///tmp/a.zip!b.txt")
        ['/tmp/a.zip', 'b.txt']

    Raises:
        MalformedAddress: If the address is empty or has no base
    """
    if text is None or not str(text).strip():
        raise MalformedAddress("Address cannot be empty", address=text)

    schemes, remainder = _splitSchemes(str(text))

    paths = [piece for piece in remainder.split(SEGMENT_SEPARATOR) if piece]
    if not paths:
        raise MalformedAddress(f"Address has no base resource: {text}", address=text)

    if schemes:
        lastScheme = schemes[-1]

        if lastScheme == FILE_SCHEME and paths[0].startswith('//'):
            paths[0] = paths[0][2:]
        else:
            paths[0] = f'{lastScheme}:{paths[0]}'

    return paths


def classifyBase(text: str) -> BaseRef:
    """Map a base string to its resource kind."""
    if DataUrl.isDataUrl(text):
        mediaType, _, payload = DataUrl.decode(text)
        return DataURI(mediaType, payload)

    if ':' in text:
        parsed = urlparse(text)
        if not parsed.scheme:
            raise MalformedAddress(f"Invalid URL: {text}", address=text)
        return RemoteURL(text)

    return LocalFile(text)


def parseAddress(text: str) -> Tuple[BaseRef, Tuple[str, ...]]:
    """Parse an address into (base resource, member names)."""
    paths = parsePath(text)
    return classifyBase(paths[0]), tuple(paths[1:])


def baseName(name: str) -> str:
    """Strip leading directory components, accepting both '/' and '\\'."""
    i = name.rfind('/')
    if i != -1:
        name = name[i + 1:]

    i = name.rfind('\\')
    if i != -1:
        name = name[i + 1:]

    return name
