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


class VfsError(Exception):
    """Base exception for addressing, decoding and scanning errors"""
    pass


class NotFound(VfsError, FileNotFoundError):
    """Raised when a named member is absent from its container"""

    def __init__(self, member, container=None):
        message = f"Member not found: {member}" if container is None else f"Member not found: {member} in {container}"
        super().__init__(message)
        self.member = member
        self.container = container


class Unsupported(NotFound):
    """
    Raised when segments remain below a single-stream compressed file whose
    name does not declare the inner name (e.g. 'data.gz' with segment 'other').
    """

    def __init__(self, member, container=None):
        super().__init__(member, container)
        self.args = (f"Cannot descend into single-stream compressed {container} for {member}",)


class MalformedAddress(VfsError, ValueError):
    """Raised when an address string violates the address grammar"""

    def __init__(self, message, address=None):
        super().__init__(message)
        self.address = address


class Cancelled(VfsError):
    """Raised when a scan session has been stopped"""

    def __init__(self, message="Scan was cancelled", cause=None):
        super().__init__(message)
        self.cause = cause


class DecodeFailure(VfsError, OSError):
    """Raised on transport, decompression or archive-parsing errors"""

    def __init__(self, message, entry=None):
        super().__init__(message)
        self.entry = entry
