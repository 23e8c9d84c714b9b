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

import locale
import os
import sys

import bitmath
import chardet

from vfs.Kernel import getLogger

ONE_KB = bitmath.KiB(1).bytes
ONE_MB = bitmath.MiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

logger = getLogger(__name__)

_UNICODE_TRY_ENCODINGS = tuple(e for e in ('utf-8', locale.getlocale()[1]) if e)


def decodeText(data, encodings=None, throw=True, confidence=0.8):
    """
    Decode bytes to str, trying the given encodings first, then UTF-8 and the
    locale encoding, with chardet's guess ordered by its confidence.

    @param data Bytes to decode.
    @param encodings Preferred encodings, tried in order before detection.
    @param throw Raise the last decode error if nothing works.
    @param confidence Minimum chardet confidence to try its guess first.
    @return Decoded string, or None when throw is False and decoding failed.
    """
    if isinstance(data, str):
        return data

    candidates = list(encodings or [])

    try:
        result = chardet.detect(data)

        if result['confidence'] > confidence:
            if result['encoding']:
                candidates.append(result['encoding'])
            candidates.extend(_UNICODE_TRY_ENCODINGS)
        else:
            candidates.extend(_UNICODE_TRY_ENCODINGS)
            if result['encoding']:
                candidates.append(result['encoding'])

    except Exception as e:
        logger.debug(f"Charset detection failed: {e}")
        candidates.extend(_UNICODE_TRY_ENCODINGS)

    error = None
    for encoding in candidates:
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            error = e

    if throw and error:
        raise error

    return None


# flush is required when stdout is a pipe consumed interactively.
def flushPrint(text, stream=None):
    stream = stream or sys.stdout
    try:
        print(text, file=stream, flush=True)
    except UnicodeEncodeError as e:
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}")

        buf = getattr(stream, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
            return

        print(text.encode(stream.encoding, errors='replace').decode(stream.encoding), file=stream, flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB: # Less than 1GB
            decimal = 0
        elif size < ONE_TB: # Between 1GB and 1TB
            decimal = 1
        else: # Greater than 1TB
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    sizeStr = bitmath.Byte(size).best_prefix(system=bitmath.SI).format(
        "{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit')
    )

    if not sizeStr.endswith('Byte') and not sizeStr.endswith('Bytes') and not sizeStr.endswith('Bits'):
        return sizeStr.replace('B', '').upper()
    else:
        return sizeStr.replace('Byte', ' Byte').replace('Bit', ' Byte')


# Helper functions for environment variable configuration
def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            elif isinstance(default, str):
                return str(value)
            else:
                # For other types, try to convert to same type as default
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default
