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

import argparse
import json
import logging
import logging.config
import os
import sys
import threading

from vfs.Address import LocalFile
from vfs.Entry import Entry
from vfs.Errors import Cancelled, MalformedAddress
from vfs.Kernel import PUBLIC_VERSION, LOG_LEVEL_MAPPING, configureGlobalLogLevel, getLogger
from vfs.Scanner import Scanner
from vfs.Settings import VfsSettings
from vfs.Utils import flushPrint, formatSize, getEnv

logger = getLogger(__name__)


def configureLogging(logLevel):
    """Configure logging level from --log-level or VFS_LOGGING_LEVEL

    Both can be:
    - A logging level name (DEBUG, INFO, WARNING, ERROR)
    - A path to a logging configuration JSON file
    """

    def suppressNoisyLogger():
        logging.getLogger('urllib3').setLevel(logging.INFO)
        logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    # Priority: CLI argument > environment variable > None (no change)
    if logLevel is None:
        logLevel = getEnv('VFS_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, FileNotFoundError, KeyError, ValueError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}", sys.stderr)
            flushPrint("Falling back to default logging level configuration", sys.stderr)

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    # Even in DEBUG mode
    suppressNoisyLogger()

    return logLevel


def configureCLIParser():
    """Build the argument parser with global options shared by every command"""

    def validateLogLevel(logLevel):
        """Validate log level for argparse"""
        # Allow file paths (they'll be validated later)
        if os.path.exists(logLevel):
            return logLevel

        if logLevel.upper() not in LOG_LEVEL_MAPPING:
            raise argparse.ArgumentTypeError(
                f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(LOG_LEVEL_MAPPING)}"
            )
        return logLevel.upper()

    def validatePositive(valueStr, fieldName, cast=int):
        try:
            value = cast(valueStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid {fieldName.lower()} value: {valueStr}")
        if value <= 0:
            raise argparse.ArgumentTypeError(f"{fieldName} {value} must be positive")
        return value

    # Global options, accepted both before and after the command name
    globalsParent = argparse.ArgumentParser(add_help=False)
    globalsParent.add_argument(
        "--log-level",
        type=validateLogLevel,
        help="Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file",
        metavar="LEVEL_OR_FILE",
        dest="logLevel",
        default=argparse.SUPPRESS
    )
    globalsParent.add_argument(
        "--user-agent", help="User-Agent sent with HTTP(S) requests", metavar="AGENT", dest="userAgent",
        default=argparse.SUPPRESS
    )
    globalsParent.add_argument(
        "--timeout",
        type=lambda value: validatePositive(value, "Timeout", float),
        help="Connect/read timeout for remote resources in seconds",
        metavar="SECONDS",
        dest="timeout",
        default=argparse.SUPPRESS
    )

    parser = argparse.ArgumentParser(
        prog="vfs",
        description="Read and scan files nested inside archives, compressed files and URLs.",
        parents=[globalsParent],
    )
    parser.add_argument("--version", action="version", version=f"NestedVFS v{PUBLIC_VERSION}")

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    catSubparser = subparsers.add_parser(
        'cat', help='Write the content of an entry to stdout', parents=[globalsParent]
    )
    catSubparser.add_argument(
        "address", metavar="ADDRESS", help="Entry address, e.g. zip:file:///data/a.zip!dir/b.txt"
    )

    scanSubparser = subparsers.add_parser(
        'scan', help='List every file reachable from a directory, archive or address', parents=[globalsParent]
    )
    scanSubparser.add_argument("root", metavar="ROOT", help="Local path or entry address to scan")
    scanSubparser.add_argument(
        "--workers",
        type=lambda value: validatePositive(value, "Workers"),
        help="Number of scanner worker threads",
        metavar="N",
        dest="workers"
    )
    scanSubparser.add_argument(
        "--print-size", action="store_true", help="Read each entry and print its size", dest="printSize"
    )

    return parser


def makeSettings(args) -> VfsSettings:
    return VfsSettings.fromEnvironment().withOverrides(
        userAgent=getattr(args, 'userAgent', None),
        httpTimeout=getattr(args, 'timeout', None),
        workers=getattr(args, 'workers', None),
    )


def runCat(args, settings: VfsSettings) -> int:
    entry = Entry.resolve(args.address, settings=settings)
    output = sys.stdout.buffer

    def write(buffer, offset, length):
        output.write(buffer[offset:offset + length])

    entry.forEachChunk(write)
    output.flush()
    return 0


def runScan(args, settings: VfsSettings) -> int:
    printLock = threading.Lock()

    def consumer(entry):
        line = str(entry)

        if args.printSize:
            size = 0

            def count(buffer, offset, length):
                nonlocal size
                size += length

            entry.forEachChunk(count)
            line = f"{line}\t{formatSize(size)}"

        with printLock:
            flushPrint(line)

    if os.path.exists(args.root):
        root = Entry(LocalFile(args.root), settings=settings)
    else:
        root = Entry.resolve(args.root, settings=settings)

    scanner = Scanner(consumer, settings=settings)
    try:
        with scanner:
            scanner.scan(root)
    except Cancelled:
        flushPrint("Scan cancelled", sys.stderr)
        return 130

    flushPrint(f"{scanner.scanned} entries, {scanner.failures} failures", sys.stderr)
    return 1 if scanner.failures else 0


COMMANDS = {
    'cat': runCat,
    'scan': runScan,
}


def main(argv=None) -> int:
    parser = configureCLIParser()
    args = parser.parse_args(argv)

    configureLogging(getattr(args, "logLevel", None))

    if not args.command:
        parser.print_help()
        return 2

    try:
        settings = makeSettings(args)
        return COMMANDS[args.command](args, settings)
    except MalformedAddress as e:
        flushPrint(f"Error: {e}", sys.stderr)
        return 2
    except OSError as e:
        logger.debug("Command failed", exc_info=True)
        flushPrint(f"Error: {e}", sys.stderr)
        return 1
