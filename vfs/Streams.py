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
Stream wrappers used to chain resource lifetimes across decode layers.

- LazyStream: defers an expensive open until the stream is first used
- ChainedCloseStream: runs a cleanup action after closing the wrapped stream
- GuardedCloseStream: closes the wrapped stream under a container-wide lock
- BoundMemberStream: non-owning view over a parent container's member cursor
- OneShotOpener: single-use stream factory with an optional fallback
"""

import io
import threading

from typing import Callable, Optional

from vfs.Errors import DecodeFailure, VfsError
from vfs.Kernel import getLogger

logger = getLogger(__name__)


def callOpener(factory: Callable, description=None):
    """
    Invoke a stream factory, reporting failures as I/O errors.

    OSError (including NotFound and DecodeFailure) and other VfsError kinds
    pass through unchanged; anything else is wrapped in DecodeFailure.
    """
    try:
        return factory()
    except (OSError, VfsError):
        raise
    except Exception as e:
        raise DecodeFailure(f"Failed to open {description or 'stream'}: {e}") from e


def readInto(stream, b) -> int:
    """readinto() for streams that only implement read()"""
    data = stream.read(len(b))
    n = len(data)
    b[:n] = data
    return n


class LazyStream(io.RawIOBase):
    """
    Stream that invokes its factory on first use.

    Closing a stream that was never used does not open it.
    """

    def __init__(self, factory: Callable, description=None):
        super().__init__()
        self._factory = factory
        self._description = description
        self._wrapped = None
        self._lock = threading.Lock()

    @property
    def opened(self) -> bool:
        return self._wrapped is not None

    def _stream(self):
        if self.closed:
            raise ValueError("I/O operation on closed stream")

        if self._wrapped is None:
            with self._lock:
                if self._wrapped is None:
                    self._wrapped = callOpener(self._factory, self._description)
                    logger.debug(f"Lazily opened {self._description or 'stream'}")

        return self._wrapped

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        if self._wrapped is None:
            return False
        return self._wrapped.seekable()

    def read(self, size=-1):
        return self._stream().read(size)

    def readinto(self, b) -> int:
        return readInto(self._stream(), b)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._stream().seek(offset, whence)

    def tell(self) -> int:
        return self._stream().tell()

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._wrapped is not None:
                self._wrapped.close()
        finally:
            super().close()


class ChainedCloseStream(io.RawIOBase):
    """
    Stream that closes the wrapped stream, then always runs a cleanup action.

    A failing cleanup is raised as an OSError even when closing the wrapped
    stream failed too (the close failure is kept as the exception context).
    """

    def __init__(self, stream, cleanup: Callable):
        super().__init__()
        if stream is None:
            raise ValueError("stream is required")
        self._wrapped = stream
        self._cleanup = cleanup

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return self._wrapped.seekable()

    def read(self, size=-1):
        return self._wrapped.read(size)

    def readinto(self, b) -> int:
        return readInto(self._wrapped, b)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._wrapped.seek(offset, whence)

    def tell(self) -> int:
        return self._wrapped.tell()

    def _runCleanup(self):
        try:
            self._cleanup()
        except OSError:
            raise
        except Exception as e:
            raise DecodeFailure(f"Cleanup after close failed: {e}") from e

    def close(self) -> None:
        if self.closed:
            return
        try:
            try:
                self._wrapped.close()
            finally:
                self._runCleanup()
        finally:
            super().close()


class GuardedCloseStream(io.RawIOBase):
    """
    Stream over a member handle whose close() must not race with other
    handles of the same container.

    Reads pass straight through; close() holds lock while the wrapped stream
    closes.
    """

    def __init__(self, stream, lock):
        super().__init__()
        self._wrapped = stream
        self._guard = lock

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return self._wrapped.seekable()

    def read(self, size=-1):
        return self._wrapped.read(size)

    def readinto(self, b) -> int:
        return readInto(self._wrapped, b)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._wrapped.seek(offset, whence)

    def tell(self) -> int:
        return self._wrapped.tell()

    def close(self) -> None:
        if self.closed:
            return
        try:
            with self._guard:
                self._wrapped.close()
        finally:
            super().close()


class BoundMemberStream(io.RawIOBase):
    """
    Non-owning view over the current member of a sequential container.

    Reads go to the parent's member cursor; close() only retires this view,
    the parent reader stays owned by whoever iterates the container.
    """

    def __init__(self, cursor, name=None):
        super().__init__()
        self._cursor = cursor
        self.name = name

    def readable(self) -> bool:
        return True

    def read(self, size=-1):
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        return self._cursor.read(size)

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        return readInto(self._cursor, b)

    def close(self) -> None:
        # Detach only; the cursor belongs to the container reader.
        self._cursor = None
        super().close()


class OneShotOpener:
    """
    Stream factory whose primary source may be used once.

    The primary factory is bound to a live forward-only cursor, so a second
    call must not reach it. Later calls go to fallback when one is given
    (typically a full re-resolve from the base) and fail otherwise.
    """

    def __init__(self, factory: Callable, description=None, fallback: Optional[Callable] = None):
        self._factory = factory
        self._description = description
        self._fallback = fallback
        self._lock = threading.Lock()
        self.consumed = False

    def __call__(self):
        with self._lock:
            consumed = self.consumed
            self.consumed = True

        if not consumed:
            return self._factory()
        if self._fallback is None:
            raise DecodeFailure(f"Stream for {self._description or 'member'} was already consumed")

        logger.debug(f"Reopening {self._description or 'member'} from its base")
        return self._fallback()
