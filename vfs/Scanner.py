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
Concurrent recursive scanner.

Walks a root (local directory, file, or any Entry) and hands every terminal
entry to a consumer callback. The traversal strategy depends on the container:

- directories, native .zip and native .rar: members are dispatched to the
  worker pool as independent units
- non-native .zip, .tar and spooled .rar: members are processed in-line, in
  archive order, because they share one forward-only cursor
- .gz / .bz2 / .zst: delivered as-is (no inner name to descend into)
"""

import functools
import gzip
import os
import shutil
import tarfile
import tempfile
import threading
import time
import zipfile

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

import rarfile

from vfs.Address import LocalFile
from vfs.Entry import Entry
from vfs.Errors import Cancelled
from vfs.Kernel import getLogger
from vfs.Resolver import decodeErrors
from vfs.SequentialZip import SequentialZipReader
from vfs.Settings import DEFAULT_SETTINGS, VfsSettings
from vfs.Streams import BoundMemberStream, GuardedCloseStream, LazyStream
from vfs.Utils import formatSize

logger = getLogger(__name__)

ZIP_SUFFIX = '.zip'
RAR_SUFFIX = '.rar'
TAR_SUFFIXES = ('.tar', '.tgz', '.tar.gz')
SINGLE_STREAM_SUFFIXES = ('.gz', '.bz2', '.zst')


class ScannerState(Enum):
    RUNNING = 1
    CANCELLING = 2
    STOPPED = 3


class CancellationToken:
    """
    Set-once cancellation flag shared by every unit of one scan session.

    The first cause passed to set() is kept; later calls change nothing.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._cause = None

    @property
    def isSet(self) -> bool:
        return self._event.is_set()

    @property
    def cause(self):
        return self._cause

    def set(self, cause=None) -> bool:
        """Returns True if this call set the token."""
        with self._lock:
            if self._event.is_set():
                return False
            self._cause = cause
            self._event.set()
            return True

    def wait(self, timeout=None) -> bool:
        return self._event.wait(timeout)

    def raiseIfSet(self):
        if self._event.is_set():
            raise Cancelled(cause=self._cause)


class _ContainerScope:
    """
    Reference count for a random-access container shared by dispatched members.

    The creating call holds one reference; each dispatched member holds one
    more. The container is closed when the last reference is released.
    """

    def __init__(self, close: Callable, description: str):
        self._close = close
        self._description = description
        self._count = 1
        self._lock = threading.Lock()

    def acquire(self):
        with self._lock:
            self._count += 1

    def release(self):
        with self._lock:
            self._count -= 1
            last = self._count == 0

        if last:
            try:
                self._close()
                logger.debug(f"Closed container {self._description}")
            except Exception as e:
                logger.warning(f"Error closing container {self._description}: {e}")


def _openSharedMember(archive: zipfile.ZipFile, lock, info: zipfile.ZipInfo):
    """
    Open a member of a ZipFile shared across workers.

    ZipFile keeps an unlocked count of open member handles, so opening and
    closing handles (and the archive) go through one lock per archive.
    """
    with lock:
        stream = archive.open(info)
    return GuardedCloseStream(stream, lock)


def _closeShared(archive, lock):
    with lock:
        archive.close()


def _dateTimeToTimestamp(dateTime) -> Optional[float]:
    try:
        return time.mktime(tuple(dateTime) + (0, 0, -1))
    except (TypeError, ValueError, OverflowError):
        return None


def _rarTime(info) -> Optional[float]:
    mtime = getattr(info, 'mtime', None)
    if mtime is not None:
        return mtime.timestamp()
    return _dateTimeToTimestamp(info.date_time)


class Scanner:
    """
    Deliver every terminal entry reachable from a root to consumer(entry).

    Failures in one branch are logged and do not stop its siblings;
    cancellation (stop(), stopFromConsumer()) ends the whole session and is
    reported by join() and close().

    Usage:
        with Scanner(consumer) as scanner:
            scanner.scanPath('/data')
    """

    def __init__(self, consumer: Callable, settings: VfsSettings = None, executor: ThreadPoolExecutor = None):
        self.consumer = consumer
        self.settings = settings or DEFAULT_SETTINGS
        self.token = CancellationToken()

        self._ownsExecutor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.workers, thread_name_prefix='vfs-scan'
        )

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self._futures = set()
        self._closed = False

        self.scanned = 0
        self.failures = 0

    @property
    def state(self) -> ScannerState:
        if self._closed:
            return ScannerState.STOPPED
        if self.token.isSet:
            return ScannerState.CANCELLING
        return ScannerState.RUNNING

    # Public API

    def scan(self, entry: Entry):
        """
        Scan entry on the calling thread, dispatching independent members to the pool.

        Returns once this entry's own traversal is done; dispatched work may
        still be running (see join()).

        Raises:
            Cancelled: If the session is, or becomes, cancelled
        """
        self.token.raiseIfSet()
        self._guarded(entry, functools.partial(self._scanEntry, entry))

    def scanPath(self, path: str):
        """Scan a local file or directory."""
        self.scan(Entry(LocalFile(os.fspath(path)), settings=self.settings))

    def stop(self, cause=None):
        """
        Cancel the session: no new branch starts, queued units are abandoned.

        Work already running finishes its current step.
        """
        if self.token.set(cause):
            logger.debug("Scan stop requested")

        with self._lock:
            futures = list(self._futures)

        for future in futures:
            future.cancel()

    def stopFromConsumer(self, cause=None):
        """Cancel the session from inside the consumer and unwind the current traversal."""
        self.stop(cause)
        raise Cancelled(cause=self.token.cause)

    def join(self, timeout: float = None) -> bool:
        """
        Wait until every dispatched unit has finished.

        Returns:
            False if the timeout expired first

        Raises:
            Cancelled: If the session was cancelled
        """
        with self._idle:
            done = self._idle.wait_for(lambda: self._pending == 0, timeout)

        if done:
            self.token.raiseIfSet()
        return done

    def close(self, wait: bool = None):
        """
        Shut the worker pool down.

        Args:
            wait: Wait for dispatched work (including work it dispatches) to
                finish; settings.shutdownWait if omitted.

        Raises:
            Cancelled: If the session was cancelled
        """
        if wait is None:
            wait = self.settings.shutdownWait

        if self._closed:
            return

        if wait:
            with self._idle:
                self._idle.wait_for(lambda: self._pending == 0)

        with self._lock:
            self._closed = True

        if self._ownsExecutor:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)

        logger.debug(f"Scanner closed: {self.scanned} delivered, {self.failures} failed")
        self.token.raiseIfSet()

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        try:
            self.close()
        except Cancelled:
            if excType is None:
                raise

    # Dispatch

    def _dispatch(self, task: Callable, description: str, onDone: Callable = None) -> bool:
        with self._lock:
            if self._closed or self.token.isSet:
                logger.debug(f"Scanner closed or cancelled, not dispatching {description}")
                accepted = False
            else:
                self._pending += 1
                accepted = True

        if not accepted:
            if onDone:
                onDone()
            return False

        try:
            future = self._executor.submit(self._runUnit, task, description)
        except RuntimeError as e:
            logger.debug(f"Cannot dispatch {description}: {e}")
            self._unitFinished(onDone)
            return False

        with self._lock:
            if not future.done():
                self._futures.add(future)

        # Runs for finished and for cancelled units alike
        future.add_done_callback(functools.partial(self._onFutureDone, onDone=onDone))
        return True

    def _onFutureDone(self, future, onDone=None):
        with self._lock:
            self._futures.discard(future)
        self._unitFinished(onDone)

    def _unitFinished(self, onDone):
        try:
            if onDone:
                onDone()
        finally:
            with self._idle:
                self._pending -= 1
                if self._pending == 0:
                    self._idle.notify_all()

    def _runUnit(self, task: Callable, description: str):
        if self.token.isSet:
            return
        try:
            task()
        except Cancelled:
            logger.debug(f"Unit cancelled: {description}")

    def _guarded(self, entry: Entry, action: Callable):
        """Run one branch; failures are logged and counted, cancellation propagates."""
        try:
            action()
        except Cancelled as e:
            self.token.set(e.cause if e.cause is not None else e)
            raise
        except Exception:
            with self._lock:
                self.failures += 1
            logger.error(f"Error scanning {entry}", exc_info=True)

    def _scanChild(self, child: Entry):
        try:
            self._guarded(child, functools.partial(self._scanEntry, child))
        finally:
            child.detachOpener()

    def _dispatchChild(self, child: Entry, scope: _ContainerScope = None):
        if scope is None:
            self._dispatch(functools.partial(self._scanChild, child), str(child))
            return

        scope.acquire()
        self._dispatch(functools.partial(self._scanChild, child), str(child), onDone=scope.release)

    # Traversal

    def _scanEntry(self, entry: Entry):
        self.token.raiseIfSet()

        if entry.isNative and os.path.isdir(entry.base.path):
            self._scanDirectory(entry)
            return

        path = entry.lastPath.lower()

        if path.endswith(ZIP_SUFFIX):
            if entry.isNative:
                self._scanNativeZip(entry)
            else:
                self._scanSequentialZip(entry)
            return

        if path.endswith(RAR_SUFFIX):
            self._scanRar(entry)
            return

        if path.endswith(TAR_SUFFIXES):
            self._scanTar(entry)
            return

        if path.endswith(SINGLE_STREAM_SUFFIXES):
            logger.warning(f"Scanning through single-stream compressed files is not implemented, delivering {entry} as-is")

        self._deliver(entry)

    def _deliver(self, entry: Entry):
        self.consumer(entry)
        with self._lock:
            self.scanned += 1

    def _scanDirectory(self, entry: Entry):
        path = entry.base.path
        for name in sorted(os.listdir(path)):
            self.token.raiseIfSet()
            self._dispatchChild(Entry(LocalFile(os.path.join(path, name)), settings=self.settings))

    def _scanNativeZip(self, entry: Entry):
        archive = zipfile.ZipFile(entry.base.path)
        lock = threading.Lock()
        scope = _ContainerScope(functools.partial(_closeShared, archive, lock), str(entry))

        try:
            for info in archive.infolist():
                if self.token.isSet:
                    break
                if info.is_dir():
                    continue

                child = entry.child(info.filename, modified=_dateTimeToTimestamp(info.date_time))
                child.bindOpener(functools.partial(_openSharedMember, archive, lock, info))
                self._dispatchChild(child, scope)
        finally:
            scope.release()

        self.token.raiseIfSet()

    def _scanSequentialZip(self, entry: Entry):
        with decodeErrors(str(entry)), SequentialZipReader(LazyStream(entry.open, str(entry))) as reader:
            for member in reader:
                self.token.raiseIfSet()
                if member.isDir:
                    continue

                child = entry.child(member.name, modified=member.mtime)
                child.bindOpener(functools.partial(BoundMemberStream, reader.cursor, member.name), singleUse=True)
                self._scanChild(child)

    def _scanTar(self, entry: Entry):
        with LazyStream(entry.open, str(entry)) as raw:
            source = raw if entry.lastPath.lower().endswith('.tar') else gzip.GzipFile(fileobj=raw, mode='rb')
            try:
                with decodeErrors(str(entry)):
                    self._scanTarStream(entry, source)
            finally:
                if source is not raw:
                    source.close()

    def _scanTarStream(self, entry: Entry, source):
        with tarfile.open(fileobj=source, mode='r|') as tar:
            for info in tar:
                self.token.raiseIfSet()
                if not info.isfile():
                    continue

                child = entry.child(info.name, modified=float(info.mtime))
                child.bindOpener(functools.partial(tar.extractfile, info), singleUse=True)
                self._scanChild(child)

    def _spool(self, entry: Entry, suffix: str) -> str:
        """Copy entry content into a temporary file, returning its path."""
        fd, tempPath = tempfile.mkstemp(prefix='vfs-', suffix=suffix, dir=self.settings.tempDir)
        try:
            with os.fdopen(fd, 'wb') as out:
                with entry.open() as source, decodeErrors(str(entry)):
                    shutil.copyfileobj(source, out, self.settings.chunkSize)
                size = out.tell()
        except BaseException:
            os.unlink(tempPath)
            raise

        logger.debug(f"Spooled {entry} to {tempPath} ({formatSize(size)})")
        return tempPath

    def _scanRar(self, entry: Entry):
        tempPath = None if entry.isNative else self._spool(entry, RAR_SUFFIX)

        try:
            archive = rarfile.RarFile(tempPath or entry.base.path)
            scope = _ContainerScope(archive.close, str(entry)) if tempPath is None else None

            try:
                for info in archive.infolist():
                    self.token.raiseIfSet()
                    if info.is_dir():
                        continue

                    child = entry.child(info.filename, modified=_rarTime(info))
                    child.bindOpener(functools.partial(archive.open, info))

                    if scope is not None:
                        self._dispatchChild(child, scope)
                    else:
                        # Members of a spooled archive must finish before the temp file goes away
                        self._scanChild(child)
            finally:
                if scope is not None:
                    scope.release()
                else:
                    archive.close()

        finally:
            if tempPath is not None:
                try:
                    os.unlink(tempPath)
                except OSError as e:
                    logger.warning(f"Cannot delete temp file {tempPath}: {e}")
