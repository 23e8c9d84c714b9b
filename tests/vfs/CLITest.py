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

from unittest.mock import patch

from tests.VfsTestBase import VfsTestBase, makeZip
from vfs.CLI import configureCLIParser, main, makeSettings


class CLIParserTest(unittest.TestCase):

    def testGlobalOptionsAfterCommand(self):
        args = configureCLIParser().parse_args(['scan', '/data', '--timeout', '5', '--workers', '3'])
        settings = makeSettings(args)

        self.assertEqual(args.command, 'scan')
        self.assertEqual(settings.httpTimeout, 5.0)
        self.assertEqual(settings.workers, 3)

    def testGlobalOptionsBeforeCommand(self):
        args = configureCLIParser().parse_args(['--user-agent', 'Agent/1', 'cat', 'a.txt'])
        self.assertEqual(makeSettings(args).userAgent, 'Agent/1')

    def testInvalidWorkers(self):
        with patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                configureCLIParser().parse_args(['scan', '/data', '--workers', '0'])


class CLICommandTest(VfsTestBase):

    def setUp(self):
        super().setUp()
        self.stdout = io.TextIOWrapper(io.BytesIO(), encoding='utf-8')
        self.stderr = io.StringIO()
        self.patchers = [patch('sys.stdout', self.stdout), patch('sys.stderr', self.stderr)]
        for patcher in self.patchers:
            patcher.start()

    def tearDown(self):
        for patcher in self.patchers:
            patcher.stop()
        super().tearDown()

    def output(self):
        self.stdout.flush()
        return self.stdout.buffer.getvalue()

    def testCat(self):
        path = self.writeFile('a.zip', makeZip({'dir/b.txt': b'nested content'}))
        self.assertEqual(main(['cat', f'zip:file://{path}!dir/b.txt']), 0)
        self.assertEqual(self.output(), b'nested content')

    def testCatDataUri(self):
        self.assertEqual(main(['cat', 'data:text/plain;base64,dGVzdA==']), 0)
        self.assertEqual(self.output(), b'test')

    def testScan(self):
        self.writeFile('a.txt', b'four')
        self.writeFile('b.zip', makeZip({'c.txt': b'cc'}))

        self.assertEqual(main(['scan', self.tempDir, '--print-size', '--workers', '2']), 0)

        lines = sorted(self.output().decode('utf-8').splitlines())
        print(f"[Test] Scan output: {lines}")
        self.assertEqual(lines, [
            f"{os.path.join(self.tempDir, 'a.txt')}\t4 Bytes",
            f"{os.path.join(self.tempDir, 'b.zip')}/c.txt\t2 Bytes",
        ])
        self.assertIn('2 entries, 0 failures', self.stderr.getvalue())

    def testScanReportsFailures(self):
        self.writeFile('broken.zip', b'not a zip')
        with self.assertLogs('vfs.Scanner', 'ERROR'):
            self.assertEqual(main(['scan', self.tempDir]), 1)
        self.assertIn('0 entries, 1 failures', self.stderr.getvalue())

    def testScanAddressRoot(self):
        self.writeFile('z.zip', makeZip({'inner.zip': makeZip({'x.txt': b'x'})}))
        self.assertEqual(main(['scan', f"zip:file://{os.path.join(self.tempDir, 'z.zip')}!inner.zip"]), 0)
        self.assertEqual(self.output().decode('utf-8').strip(), f"{os.path.join(self.tempDir, 'z.zip')}/inner.zip/x.txt")

    def testNoCommand(self):
        self.assertEqual(main([]), 2)

    def testMissingFile(self):
        self.assertEqual(main(['cat', os.path.join(self.tempDir, 'absent.txt')]), 1)
        self.assertIn('Error', self.stderr.getvalue())

    def testMalformedAddress(self):
        self.assertEqual(main(['cat', '']), 2)


if __name__ == '__main__':
    unittest.main()
