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
import os
import unittest
import zlib

from tests.VfsTestBase import TrackedStream, VfsTestBase, gzipBytes, makeZip
from vfs.Address import DataURI, InlineBytes, LocalFile, RemoteURL
from vfs.Entry import Entry
from vfs.Errors import DecodeFailure, MalformedAddress, NotFound
from vfs.Settings import VfsSettings


class EntryIdentityTest(unittest.TestCase):

    def testLastNameStripsDirectories(self):
        for segment in ('dir/sub/file.txt', 'dir\\sub\\file.txt', 'dir/sub\\file.txt', 'dir\\sub/file.txt'):
            with self.subTest(segment=segment):
                entry = Entry(LocalFile('/data/a.zip'), segment)
                self.assertEqual(entry.lastName, 'file.txt')
                self.assertEqual(entry.lastPath, segment)

    def testUnsegmentedNames(self):
        local = Entry(LocalFile('/data/archive.zip'))
        self.assertEqual(local.lastPath, '/data/archive.zip')
        self.assertEqual(local.lastName, 'archive.zip')

        remote = Entry(RemoteURL('http://h/a.zip'))
        self.assertEqual(remote.lastPath, 'http://h/a.zip')
        self.assertEqual(remote.lastName, 'http://h/a.zip')

        inline = Entry(b'abc')
        self.assertEqual(inline.base, InlineBytes(b'abc'))
        self.assertEqual(inline.lastPath, 'bytes[3]')
        self.assertEqual(inline.lastName, 'bytes[3]')
        self.assertEqual(inline.lastPath, str(inline))

    def testIsNative(self):
        self.assertTrue(Entry(LocalFile('/data/a.zip')).isNative)
        self.assertFalse(Entry(LocalFile('/data/a.zip'), 'b.txt').isNative)
        self.assertFalse(Entry(RemoteURL('http://h/a.txt')).isNative)
        self.assertFalse(Entry(b'x').isNative)

    def testChildDoesNotMutateParent(self):
        parent = Entry(LocalFile('/data/a.zip'), 'b.zip')
        child = parent.child('c.txt', modified=123.0)

        self.assertEqual(parent.segments, ('b.zip',))
        self.assertEqual(child.segments, ('b.zip', 'c.txt'))
        self.assertEqual(child.base, parent.base)
        self.assertEqual(child.modified, 123.0)
        self.assertIs(child.settings, parent.settings)

    def testStringForm(self):
        self.assertEqual(str(Entry(LocalFile('/data/a.zip'), 'b.zip', 'c.txt')), '/data/a.zip/b.zip/c.txt')
        self.assertEqual(str(Entry(RemoteURL('http://h/a.zip'))), 'http://h/a.zip')

    def testEquality(self):
        a = Entry(LocalFile('/data/a.zip'), 'b.txt')
        b = Entry.resolve('zip:file:///data/a.zip!b.txt')
        self.assertEqual(a, b)
        self.assertEqual(len({a, b}), 1)
        self.assertNotEqual(a, Entry(LocalFile('/data/a.zip')))

    def testInvalidSegments(self):
        with self.assertRaises(ValueError):
            Entry(LocalFile('/data/a.zip'), '')
        with self.assertRaises(TypeError):
            Entry(42)

    def testMalformedAddress(self):
        with self.assertRaises(MalformedAddress):
            Entry.resolve('')


class EntryModifiedTest(VfsTestBase):

    def testNativeUsesFileTime(self):
        path = self.writeFile('a.txt', b'a')
        os.utime(path, (1600000000, 1600000000))
        self.assertEqual(Entry(LocalFile(path)).modified, os.path.getmtime(path))
        self.assertEqual(Entry(LocalFile(path)).modified, 1600000000)

    def testNonNativeIsUnknown(self):
        path = self.writeFile('a.zip', makeZip({'a.txt': b'a'}))
        self.assertIsNone(Entry(LocalFile(path), 'a.txt').modified)
        self.assertIsNone(Entry(RemoteURL('http://h/a.txt')).modified)
        self.assertIsNone(Entry(LocalFile(os.path.join(self.tempDir, 'absent'))).modified)

    def testOverride(self):
        path = self.writeFile('a.txt', b'a')
        self.assertEqual(Entry(LocalFile(path), modified=5.0).modified, 5.0)


class EntryContentTest(VfsTestBase):

    def setUp(self):
        super().setUp()
        self.payload = os.urandom(150 * 1024)
        self.zipPath = self.writeFile('a.zip', makeZip({'dir/big.bin': self.payload, 'text.txt': 'héllo'.encode('utf-8')}))

    def testForEachChunk(self):
        chunks = []
        Entry(LocalFile(self.zipPath), 'dir/big.bin').forEachChunk(
            lambda buffer, offset, length: chunks.append(buffer[offset:offset + length])
        )

        print(f"[Test] Chunk sizes: {[len(c) for c in chunks]}")
        self.assertEqual(b''.join(chunks), self.payload)
        self.assertTrue(all(len(c) <= 64 * 1024 for c in chunks))
        self.assertGreaterEqual(len(chunks), 3)

    def testForEachChunkUsesSettings(self):
        entry = Entry(b'0123456789', settings=VfsSettings(chunkSize=4))
        lengths = []
        entry.forEachChunk(lambda buffer, offset, length: lengths.append(length))
        self.assertEqual(lengths, [4, 4, 2])

    def testIterChunks(self):
        entry = Entry(LocalFile(self.zipPath), 'dir/big.bin')
        self.assertEqual(b''.join(entry.iterChunks(1000)), self.payload)

    def testReadText(self):
        entry = Entry(LocalFile(self.zipPath), 'text.txt')
        self.assertEqual(entry.readText(), 'héllo')
        self.assertEqual(entry.readText('latin-1'), 'hÃ©llo')

    def testAddressRoundTrip(self):
        entries = [
            Entry(LocalFile(self.zipPath), 'dir/big.bin'),
            Entry(DataURI('application/gzip', gzipBytes(b'gz')), 'file'),
            Entry(b'inline bytes'),
        ]
        for entry in entries:
            with self.subTest(entry=repr(entry)[:60]):
                address = entry.address
                print(f"[Test] Address: {address[:80]}")
                self.assertEqual(Entry.resolve(address).readAll(), entry.readAll())

        self.assertTrue(entries[0].address.startswith('zip:file://'))
        self.assertTrue(entries[1].address.startswith('gz:data:application/gzip;base64,'))

    def testMissingMember(self):
        with self.assertRaises(NotFound):
            Entry(LocalFile(self.zipPath), 'absent.txt').readAll()


class EntryOpenerTest(unittest.TestCase):

    def testBoundOpenerIsUsed(self):
        entry = Entry(LocalFile('/nonexistent/a.zip'), 'b.txt')
        entry.bindOpener(lambda: io.BytesIO(b'bound'))
        self.assertTrue(entry.isBound)
        self.assertEqual(entry.readAll(), b'bound')
        self.assertEqual(entry.readAll(), b'bound')

    def testSingleUseOpener(self):
        entry = Entry(b'default')
        entry.bindOpener(lambda: io.BytesIO(b'bound'), singleUse=True)

        with entry.open() as stream:
            self.assertEqual(stream.read(), b'bound')

        # Second open re-resolves from the base.
        with entry.open() as stream:
            self.assertEqual(stream.read(), b'default')
        self.assertTrue(entry.isBound)

        entry.detachOpener()
        self.assertFalse(entry.isBound)
        with entry.open() as stream:
            self.assertEqual(stream.read(), b'default')

    def testOpenerFailureIsIOError(self):

        def opener():
            raise KeyError('boom')

        entry = Entry(b'x')
        entry.bindOpener(opener)
        with self.assertRaises(OSError):
            entry.open()

    def testStreamClosedOnReadFailure(self):
        streams = []

        def failingRead(size=-1):
            raise zlib.error("corrupt")

        def opener():
            stream = TrackedStream(b'')
            stream.read = failingRead
            streams.append(stream)
            return stream

        entry = Entry(LocalFile('/nonexistent/a.zip'), 'b.txt')
        entry.bindOpener(opener)

        with self.assertRaises(DecodeFailure):
            entry.readAll()

        with self.assertRaises(DecodeFailure):
            entry.forEachChunk(lambda buffer, offset, length: None)

        self.assertEqual(len(streams), 2)
        self.assertTrue(all(stream.closed for stream in streams))


if __name__ == '__main__':
    unittest.main()
