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

import dataclasses
import os

from dataclasses import dataclass
from typing import Callable, Optional

from vfs.Kernel import PUBLIC_VERSION
from vfs.Utils import getEnv

DEFAULT_USER_AGENT = getEnv('VFS_USER_AGENT', f'NestedVFS/{PUBLIC_VERSION} (Python; +https://github.com/nested-vfs)')

# Connect/read timeout for remote resources, in seconds (0 disables)
DEFAULT_HTTP_TIMEOUT = getEnv('VFS_HTTP_TIMEOUT', 60.0)

# Redirect budget for HTTP(S) fetches (301/302/303)
DEFAULT_MAX_REDIRECTS = getEnv('VFS_MAX_REDIRECTS', 10)

# Read buffer used by Entry.forEachChunk() and when spooling to temp files (64 KiB)
DEFAULT_CHUNK_SIZE = getEnv('VFS_CHUNK_SIZE', 64 * 1024)

# Scanner worker pool size
DEFAULT_SCANNER_WORKERS = getEnv('VFS_SCANNER_WORKERS', min(32, (os.cpu_count() or 1) + 4))

# Whether Scanner.close() waits for in-flight work by default
DEFAULT_SHUTDOWN_WAIT = getEnv('VFS_SHUTDOWN_WAIT', True)

# Directory for spooled archives (None = system temp dir)
DEFAULT_TEMP_DIR = getEnv('VFS_TEMP_DIR', None)


@dataclass(frozen=True)
class VfsSettings:
    """
    Configuration value threaded through Entry, resolver, scanner and URL opener.

    Instances are immutable; derive variants with withOverrides().
    """
    userAgent: Optional[str] = DEFAULT_USER_AGENT
    httpTimeout: float = DEFAULT_HTTP_TIMEOUT
    maxRedirects: int = DEFAULT_MAX_REDIRECTS
    chunkSize: int = DEFAULT_CHUNK_SIZE
    workers: int = DEFAULT_SCANNER_WORKERS
    shutdownWait: bool = DEFAULT_SHUTDOWN_WAIT
    tempDir: Optional[str] = DEFAULT_TEMP_DIR
    # Callable (url, settings) -> binary stream; None selects vfs.Openers.openUrl
    urlOpener: Optional[Callable] = None

    def __post_init__(self):
        if self.chunkSize <= 0:
            raise ValueError(f"chunkSize must be positive: {self.chunkSize}")
        if self.workers <= 0:
            raise ValueError(f"workers must be positive: {self.workers}")
        if self.maxRedirects < 0:
            raise ValueError(f"maxRedirects must not be negative: {self.maxRedirects}")

    @classmethod
    def fromEnvironment(cls) -> 'VfsSettings':
        """Re-read VFS_* environment variables (module defaults are read once at import)."""
        return cls(
            userAgent=getEnv('VFS_USER_AGENT', DEFAULT_USER_AGENT),
            httpTimeout=getEnv('VFS_HTTP_TIMEOUT', DEFAULT_HTTP_TIMEOUT),
            maxRedirects=getEnv('VFS_MAX_REDIRECTS', DEFAULT_MAX_REDIRECTS),
            chunkSize=getEnv('VFS_CHUNK_SIZE', DEFAULT_CHUNK_SIZE),
            workers=getEnv('VFS_SCANNER_WORKERS', DEFAULT_SCANNER_WORKERS),
            shutdownWait=getEnv('VFS_SHUTDOWN_WAIT', DEFAULT_SHUTDOWN_WAIT),
            tempDir=getEnv('VFS_TEMP_DIR', DEFAULT_TEMP_DIR),
        )

    def withOverrides(self, **overrides) -> 'VfsSettings':
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)


DEFAULT_SETTINGS = VfsSettings()
