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
Forward-only ZIP reader.

zipfile.ZipFile needs a seekable file because it starts from the central
directory at the end of the archive. Archives nested in other streams
(HTTP bodies, decompressors, members of other archives) are read here
instead by walking local file headers in order:

    [LFH][data][optional data descriptor] ... [central directory][EOCD]

Only one member cursor is live at a time; advancing to the next member
drains whatever the previous cursor left unread.
"""

import datetime
import io
import struct
import zlib

from dataclasses import dataclass
from typing import Iterator, Optional

from vfs.Errors import DecodeFailure
from vfs.Kernel import getLogger

logger = getLogger(__name__)

LOCAL_FILE_HEADER_SIGNATURE = 0x04034b50
CENTRAL_DIR_SIGNATURE = 0x02014b50
END_OF_CENTRAL_DIR_SIGNATURE = 0x06054b50
ZIP64_END_OF_CENTRAL_DIR_SIGNATURE = 0x06064b50
DATA_DESCRIPTOR_SIGNATURE = 0x08074b50

LOCAL_FILE_HEADER_FORMAT = '<IHHHHHIIIHH'
LOCAL_FILE_HEADER_SIZE = struct.calcsize(LOCAL_FILE_HEADER_FORMAT) # 30 bytes

ENCRYPTED_FLAG = 0x0001
DATA_DESCRIPTOR_FLAG = 0x0008
UTF8_FLAG = 0x0800

STORE = 0
DEFLATE = 8

ZIP64_EXTRA_ID = 0x0001
ZIP64_LIMIT = 0xFFFFFFFF

READ_CHUNK = 64 * 1024


def dosToTimestamp(dosTime: int, dosDate: int) -> Optional[float]:
    """
    Convert DOS time/date fields to a POSIX timestamp (local time, like zipfile).

    Returns None for fields that do not form a valid date.
    """
    try:
        dt = datetime.datetime(
            1980 + ((dosDate >> 9) & 0x7F),
            (dosDate >> 5) & 0x0F,
            dosDate & 0x1F,
            (dosTime >> 11) & 0x1F,
            (dosTime >> 5) & 0x3F,
            min((dosTime & 0x1F) * 2, 59),
        )
        return dt.timestamp()
    except (ValueError, OverflowError, OSError):
        return None


@dataclass
class ZipMember:
    """Metadata from one local file header"""
    name: str
    method: int
    flags: int
    crc: int
    compressedSize: Optional[int] # None when deferred to a data descriptor
    size: Optional[int]
    mtime: Optional[float]
    zip64: bool = False

    @property
    def isDir(self) -> bool:
        return self.name.endswith('/')

    @property
    def hasDataDescriptor(self) -> bool:
        return bool(self.flags & DATA_DESCRIPTOR_FLAG)


class _PushbackReader:
    """Wraps a stream so over-read bytes can be returned to it"""

    def __init__(self, stream):
        self._stream = stream
        self._pending = b''

    def read(self, size: int) -> bytes:
        if self._pending:
            data = self._pending[:size]
            self._pending = self._pending[size:]
            return data
        return self._stream.read(size)

    def readExact(self, size: int, what='data') -> bytes:
        chunks = []
        needed = size
        while needed > 0:
            data = self.read(needed)
            if not data:
                raise DecodeFailure(f"Unexpected end of ZIP stream while reading {what}")
            chunks.append(data)
            needed -= len(data)
        return b''.join(chunks)

    def readUpTo(self, size: int) -> bytes:
        """Read size bytes unless the stream ends first."""
        chunks = []
        needed = size
        while needed > 0:
            data = self.read(needed)
            if not data:
                break
            chunks.append(data)
            needed -= len(data)
        return b''.join(chunks)

    def unread(self, data: bytes):
        if data:
            self._pending = data + self._pending

    def close(self):
        self._pending = b''
        self._stream.close()


class MemberCursor(io.RawIOBase):
    """
    Decoded content of the current member.

    The cursor does not own the archive stream: closing it only stops reads
    through this object. CRC-32 is verified when the member ends.
    """

    def __init__(self, source: _PushbackReader, member: ZipMember):
        super().__init__()
        self._source = source
        self.member = member
        self.name = member.name
        self._remaining = member.compressedSize
        self._decompressor = zlib.decompressobj(-15) if member.method == DEFLATE else None
        self._buffer = bytearray()
        self._crc = 0
        self.finished = False

        # Unreadable members fail on read; drain() can still skip them when their size is known.
        self._unsupported = None
        if member.method not in (STORE, DEFLATE):
            self._unsupported = f"Unsupported compression method {member.method} for {member.name}"
        elif member.method == STORE and self._remaining is None:
            self._unsupported = f"Stored member {member.name} with deferred size cannot be streamed"

    def readable(self) -> bool:
        return True

    def read(self, size=-1):
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        return self._take(size, verify=True)

    def readinto(self, b) -> int:
        data = self.read(len(b))
        n = len(data)
        b[:n] = data
        return n

    def drain(self):
        """Skip the unread rest of this member without verifying its checksum."""
        while not self.finished:
            self._fill(verify=False)
        self._buffer.clear()

    def _take(self, size, verify: bool) -> bytes:
        if size is None or size < 0:
            while not self.finished:
                self._fill(verify)
            data = bytes(self._buffer)
            self._buffer.clear()
            return data

        while not self.finished and len(self._buffer) < size:
            self._fill(verify)

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def _readCompressed(self) -> bytes:
        if self._remaining is not None:
            if self._remaining == 0:
                return b''
            data = self._source.read(min(READ_CHUNK, self._remaining))
            if not data:
                raise DecodeFailure(f"Unexpected end of ZIP stream in {self.name}")
            self._remaining -= len(data)
            return data

        data = self._source.read(READ_CHUNK)
        if not data:
            raise DecodeFailure(f"Unexpected end of ZIP stream in {self.name}")
        return data

    def _emit(self, data: bytes):
        if data:
            self._crc = zlib.crc32(data, self._crc)
            self._buffer.extend(data)

    def _skipUnsupported(self, verify: bool):
        if verify or self._remaining is None:
            raise DecodeFailure(self._unsupported)

        while self._remaining:
            self._readCompressed()
        self._decompressor = None
        self._complete(verify)

    def _fill(self, verify: bool):
        if self._unsupported:
            self._skipUnsupported(verify)
            return

        if self._decompressor is None:
            if self._remaining == 0:
                self._complete(verify)
                return
            self._emit(self._readCompressed())
            return

        if self._decompressor.eof or self._remaining == 0:
            self._complete(verify)
            return

        chunk = self._readCompressed()
        try:
            self._emit(self._decompressor.decompress(chunk))
        except zlib.error as e:
            raise DecodeFailure(f"Corrupt deflate data in {self.name}: {e}") from e

        if self._decompressor.eof:
            unused = self._decompressor.unused_data
            self._source.unread(unused)
            if self._remaining is not None:
                self._remaining += len(unused)
            self._complete(verify)

    def _readDataDescriptor(self) -> int:
        head = self._source.readExact(4, 'data descriptor')
        (signature,) = struct.unpack('<I', head)
        if signature == DATA_DESCRIPTOR_SIGNATURE:
            head = self._source.readExact(4, 'data descriptor')
        (crc,) = struct.unpack('<I', head)
        self._source.readExact(16 if self.member.zip64 else 8, 'data descriptor')
        return crc

    def _complete(self, verify: bool):
        if self.finished:
            return

        if self._decompressor is not None and not self._decompressor.eof:
            raise DecodeFailure(f"Truncated deflate data in {self.name}")

        # Bytes the header declared but deflate did not consume
        if self._remaining:
            self._source.readExact(self._remaining, self.name)
            self._remaining = 0

        self.finished = True

        expectedCrc = self._readDataDescriptor() if self.member.hasDataDescriptor else self.member.crc
        if verify and (self._crc & 0xFFFFFFFF) != expectedCrc:
            raise DecodeFailure(f"Bad CRC-32 for {self.name}: {self._crc & 0xFFFFFFFF:08x} != {expectedCrc:08x}")


class SequentialZipReader:
    """
    Iterate members of a ZIP stream in archive order.

    The reader owns the stream it was given and closes it on close().
    """

    def __init__(self, stream):
        self._source = _PushbackReader(stream)
        self._cursor: Optional[MemberCursor] = None
        self._ended = False
        self._closed = False

    @property
    def cursor(self) -> Optional[MemberCursor]:
        """Cursor of the member returned by the last nextMember() call"""
        return self._cursor

    def _parseExtra(self, extra: bytes, size: int, compressedSize: int):
        zip64 = False
        offset = 0
        while offset + 4 <= len(extra):
            headerId, dataSize = struct.unpack('<HH', extra[offset:offset + 4])
            data = extra[offset + 4:offset + 4 + dataSize]
            if headerId == ZIP64_EXTRA_ID:
                zip64 = True
                pos = 0
                if size == ZIP64_LIMIT and pos + 8 <= len(data):
                    (size,) = struct.unpack('<Q', data[pos:pos + 8])
                    pos += 8
                if compressedSize == ZIP64_LIMIT and pos + 8 <= len(data):
                    (compressedSize,) = struct.unpack('<Q', data[pos:pos + 8])
            offset += 4 + dataSize
        return size, compressedSize, zip64

    def nextMember(self) -> Optional[ZipMember]:
        """
        Advance to the next member, draining the current one first.

        Returns:
            ZipMember, or None after the last member

        Raises:
            DecodeFailure: On malformed headers or unsupported members
        """
        if self._closed:
            raise ValueError("I/O operation on closed ZIP reader")

        if self._cursor is not None:
            self._cursor.drain()
            self._cursor.close()
            self._cursor = None

        if self._ended:
            return None

        signatureBytes = self._source.readUpTo(4)
        if len(signatureBytes) < 4:
            self._ended = True
            return None

        (signature,) = struct.unpack('<I', signatureBytes)
        if signature in (CENTRAL_DIR_SIGNATURE, END_OF_CENTRAL_DIR_SIGNATURE, ZIP64_END_OF_CENTRAL_DIR_SIGNATURE):
            self._ended = True
            return None

        if signature != LOCAL_FILE_HEADER_SIGNATURE:
            raise DecodeFailure(f"Not a ZIP stream (signature {signature:08x})")

        header = signatureBytes + self._source.readExact(LOCAL_FILE_HEADER_SIZE - 4, 'local file header')
        (_, _, flags, method, dosTime, dosDate, crc, compressedSize, size, nameLength,
         extraLength) = struct.unpack(LOCAL_FILE_HEADER_FORMAT, header)

        nameBytes = self._source.readExact(nameLength, 'member name')
        extra = self._source.readExact(extraLength, 'extra field')

        name = nameBytes.decode('utf-8' if flags & UTF8_FLAG else 'cp437')

        if flags & ENCRYPTED_FLAG:
            raise DecodeFailure(f"Encrypted ZIP member is not supported: {name}")

        size, compressedSize, zip64 = self._parseExtra(extra, size, compressedSize)

        deferred = bool(flags & DATA_DESCRIPTOR_FLAG) and compressedSize == 0
        member = ZipMember(
            name=name,
            method=method,
            flags=flags,
            crc=crc,
            compressedSize=None if deferred else compressedSize,
            size=None if deferred else size,
            mtime=dosToTimestamp(dosTime, dosDate),
            zip64=zip64,
        )

        self._cursor = MemberCursor(self._source, member)
        logger.debug(f"ZIP member: {name} (method={method}, size={member.size})")
        return member

    def __iter__(self) -> Iterator[ZipMember]:
        while True:
            member = self.nextMember()
            if member is None:
                return
            yield member

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None
        self._source.close()

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()
