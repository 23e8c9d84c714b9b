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

import io
import threading
import unittest

from tests.VfsTestBase import TrackedStream
from vfs.Errors import DecodeFailure, NotFound
from vfs.Streams import BoundMemberStream, ChainedCloseStream, GuardedCloseStream, LazyStream, OneShotOpener


class FailingCloseStream(io.BytesIO):
    """Raises once from close()"""

    def __init__(self, data=b''):
        super().__init__(data)
        self.failed = False

    def close(self):
        super().close()
        if not self.failed:
            self.failed = True
            raise OSError("close failed")


class LazyStreamTest(unittest.TestCase):

    def testCloseWithoutUseNeverOpens(self):
        calls = []
        stream = LazyStream(lambda: calls.append(1) or io.BytesIO(b"x"))
        self.assertFalse(stream.opened)
        stream.close()
        self.assertEqual(calls, [])
        self.assertTrue(stream.closed)

    def testFactoryCalledOnce(self):
        calls = []
        inner = TrackedStream(b"hello world")

        def factory():
            calls.append(1)
            return inner

        with LazyStream(factory, "greeting") as stream:
            self.assertEqual(stream.read(5), b"hello")
            self.assertEqual(stream.read(), b" world")
            self.assertTrue(stream.opened)

        self.assertEqual(len(calls), 1)
        self.assertEqual(inner.closeCount, 1)

    def testReadinto(self):
        stream = LazyStream(lambda: io.BytesIO(b"abc"))
        buffer = bytearray(8)
        self.assertEqual(stream.readinto(buffer), 3)
        self.assertEqual(bytes(buffer[:3]), b"abc")
        stream.close()

    def testFactoryFailureIsWrapped(self):

        def factory():
            raise RuntimeError("boom")

        stream = LazyStream(factory, "broken")
        with self.assertRaises(DecodeFailure) as context:
            stream.read()
        self.assertIsInstance(context.exception.__cause__, RuntimeError)
        self.assertIsInstance(context.exception, OSError)

    def testNotFoundPassesThrough(self):

        def factory():
            raise NotFound("member.txt")

        stream = LazyStream(factory)
        with self.assertRaises(NotFound):
            stream.read()


class ChainedCloseStreamTest(unittest.TestCase):

    def testCleanupRunsAfterClose(self):
        events = []
        inner = TrackedStream(b"data")

        def cleanup():
            events.append(('cleanup', inner.closed))

        stream = ChainedCloseStream(inner, cleanup)
        self.assertEqual(stream.read(), b"data")
        stream.close()
        stream.close()

        self.assertEqual(events, [('cleanup', True)])
        self.assertEqual(inner.closeCount, 1)

    def testCleanupRunsWhenCloseFails(self):
        events = []
        stream = ChainedCloseStream(FailingCloseStream(b"x"), lambda: events.append('cleanup'))

        with self.assertRaises(OSError) as context:
            stream.close()

        self.assertEqual(str(context.exception), "close failed")
        self.assertEqual(events, ['cleanup'])
        self.assertTrue(stream.closed)

    def testCleanupFailureIsReportedAsIOError(self):

        def cleanup():
            raise RuntimeError("cleanup failed")

        stream = ChainedCloseStream(FailingCloseStream(b"x"), cleanup)

        with self.assertRaises(DecodeFailure) as context:
            stream.close()

        # The stream's own close failure stays attached to the cleanup failure
        self.assertIsInstance(context.exception.__cause__, RuntimeError)
        self.assertIsInstance(context.exception.__cause__.__context__, OSError)

    def testRequiresStream(self):
        with self.assertRaises(ValueError):
            ChainedCloseStream(None, lambda: None)


class GuardedCloseStreamTest(unittest.TestCase):

    def testCloseHoldsLock(self):
        lock = threading.Lock()
        observed = []

        class Member(io.BytesIO):
            def close(self):
                observed.append(lock.locked())
                super().close()

        stream = GuardedCloseStream(Member(b'member data'), lock)
        self.assertFalse(lock.locked())
        self.assertEqual(stream.read(6), b'member')
        self.assertEqual(stream.tell(), 6)

        stream.close()
        stream.close()
        self.assertEqual(observed, [True])
        self.assertFalse(lock.locked())
        self.assertTrue(stream.closed)


class BoundMemberStreamTest(unittest.TestCase):

    def testCloseDoesNotCloseParent(self):
        parent = TrackedStream(b"member data")
        view = BoundMemberStream(parent, "member.txt")

        self.assertEqual(view.read(6), b"member")
        view.close()

        self.assertTrue(view.closed)
        self.assertEqual(parent.closeCount, 0)
        self.assertEqual(parent.read(), b" data")

        with self.assertRaises(ValueError):
            view.read()


class OneShotOpenerTest(unittest.TestCase):

    def testSecondCallFails(self):
        opener = OneShotOpener(lambda: io.BytesIO(b"x"), "member.txt")
        self.assertFalse(opener.consumed)
        self.assertEqual(opener().read(), b"x")
        self.assertTrue(opener.consumed)

        with self.assertRaises(DecodeFailure):
            opener()

    def testLaterCallsUseFallback(self):
        calls = []
        opener = OneShotOpener(lambda: io.BytesIO(b"cursor"), "member.txt", fallback=lambda: calls.append(1) or io.BytesIO(b"fresh"))

        self.assertEqual(opener().read(), b"cursor")
        self.assertEqual(opener().read(), b"fresh")
        self.assertEqual(opener().read(), b"fresh")
        self.assertEqual(len(calls), 2)

    def testConcurrentFirstCallsReachFactoryOnce(self):
        calls = []
        barrier = threading.Barrier(8)
        opener = OneShotOpener(lambda: calls.append("factory") or io.BytesIO(b"a"), fallback=lambda: calls.append("fallback") or io.BytesIO(b"b"))

        def worker():
            barrier.wait()
            opener().close()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(calls.count("factory"), 1)
        self.assertEqual(calls.count("fallback"), 7)


if __name__ == '__main__':
    unittest.main()
