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
data: URI codec.

Format: data:[mediaType][;base64],<payload>

Non-base64 payloads are percent-decoded as latin-1 so every byte value
survives the round trip.
"""

import base64
import binascii

from urllib.parse import quote, unquote_to_bytes

from vfs.Errors import MalformedAddress

DATA_URL_PREFIX = 'data:'

# Payload charset for non-base64 data URIs (8-bit, one char per byte)
PAYLOAD_CHARSET = 'latin-1'


def isDataUrl(text) -> bool:
    return text is not None and text.startswith(DATA_URL_PREFIX)


def decode(url: str):
    """
    Decode a data URI.

    Args:
        url: data: URI text

    Returns:
        (mediaType or None, isBase64, payload bytes)

    Raises:
        MalformedAddress: If url is not a data URI or the base64 payload is invalid
    """
    if not isDataUrl(url):
        raise MalformedAddress(f"Not a data URI: {url[:32]}", address=url)

    data = url[len(DATA_URL_PREFIX):]
    mediaType = None
    isBase64 = False

    commaIndex = data.find(',')
    if commaIndex != -1:
        header = data[:commaIndex]
        semicolonIndex = header.find(';')

        if semicolonIndex != -1:
            isBase64 = header[semicolonIndex + 1:] == 'base64'
            if semicolonIndex > 0:
                mediaType = header[:semicolonIndex]
        elif commaIndex > 0:
            mediaType = header

        data = data[commaIndex + 1:]

    if isBase64:
        try:
            payload = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedAddress(f"Invalid base64 payload in data URI: {e}", address=url) from e
    else:
        try:
            payload = unquote_to_bytes(data.encode(PAYLOAD_CHARSET))
        except UnicodeEncodeError as e:
            raise MalformedAddress(f"Data URI payload is not {PAYLOAD_CHARSET} text: {e}", address=url) from e

    return mediaType, isBase64, payload


def encode(payload: bytes, mediaType: str = None, useBase64: bool = True) -> str:
    """Build a data URI for payload."""
    parts = [DATA_URL_PREFIX]

    if mediaType:
        parts.append(mediaType)

    if useBase64:
        parts.append(';base64')

    if mediaType or useBase64:
        parts.append(',')

    if useBase64:
        parts.append(base64.b64encode(payload).decode('ascii'))
    else:
        # '!' separates address segments, so it must stay escaped in the payload
        parts.append(quote(payload.decode(PAYLOAD_CHARSET), safe='', encoding=PAYLOAD_CHARSET))

    return ''.join(parts)
