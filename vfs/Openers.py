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
URL openers for remote base resources.

The default opener fetches http(s) URLs with requests, following at most
settings.maxRedirects redirects (301/302/303) itself so the budget and the
Location resolution stay explicit. Other schemes go through urllib.
"""

import io
import socket
import threading
import urllib.request

from urllib.parse import urljoin, urlparse

import requests

from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.exceptions import HTTPError as TransportError
from urllib3.util.retry import Retry

from vfs.Errors import DecodeFailure
from vfs.Kernel import getLogger
from vfs.Settings import DEFAULT_SETTINGS, VfsSettings

logger = getLogger(__name__)

HTTP_SCHEMES = ('http', 'https')

REDIRECT_STATUSES = (301, 302, 303)


class KeepAliveAdapter(HTTPAdapter):
    """
    HTTP adapter with TCP keepalive so dead connections are detected while a
    slow consumer holds a response body open.

    urllib3 internal retries are disabled; a failed fetch surfaces as a
    DecodeFailure for the entry being resolved.
    """

    DEFAULT_SOCKET_OPTIONS = HTTPConnection.default_socket_options

    def __init__(self, *args, **kwargs):
        kwargs['max_retries'] = Retry(total=0, redirect=0, raise_on_redirect=False)
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **kwargs):
        socketOptions = list(self.DEFAULT_SOCKET_OPTIONS)

        socketOptions.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

        # Aggressive keepalive parameters (available on most platforms)
        if hasattr(socket, "TCP_KEEPIDLE"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 30))
        if hasattr(socket, "TCP_KEEPINTVL"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))
        if hasattr(socket, "TCP_KEEPCNT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3))

        kwargs["socket_options"] = socketOptions
        super().init_poolmanager(connections, maxsize, block=block, **kwargs)


class HttpResponseStream(io.RawIOBase):
    """
    Read-only stream over a requests response body.

    Bytes are returned exactly as served (no Content-Encoding decoding), and
    closing the stream releases the connection.
    """

    def __init__(self, response: requests.Response, url: str):
        super().__init__()
        self._response = response
        self.url = url

    def readable(self) -> bool:
        return True

    def read(self, size=-1):
        if self.closed:
            raise ValueError("I/O operation on closed stream")

        amount = None if size is None or size < 0 else size
        try:
            return self._response.raw.read(amount, decode_content=False)
        except (requests.RequestException, TransportError) as e:
            raise DecodeFailure(f"Error reading {self.url}: {e}") from e

    def readinto(self, b) -> int:
        data = self.read(len(b))
        n = len(data)
        b[:n] = data
        return n

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._response.close()
        finally:
            super().close()


class _ThreadLocalSession(threading.local):
    """
    Thread-local storage for requests.Session.

    requests sessions are not guaranteed to be thread-safe, and scanner
    workers fetch concurrently.
    """

    def __init__(self):
        super().__init__()
        self.session = None


class HttpUrlOpener:
    """Fetch http(s) URLs, following 301/302/303 redirects up to the configured budget."""

    def __init__(self):
        self._tls = _ThreadLocalSession()

    @property
    def _session(self) -> requests.Session:
        if self._tls.session is None:
            session = requests.Session()
            adapter = KeepAliveAdapter()
            session.mount('http://', adapter)
            session.mount('https://', adapter)
            self._tls.session = session
            logger.debug(f"Created requests session for thread {threading.current_thread().name}")
        return self._tls.session

    def _makeHeaders(self, settings: VfsSettings) -> dict:
        headers = {'Accept-Encoding': 'identity'}
        if settings.userAgent:
            headers['User-Agent'] = settings.userAgent
        return headers

    def __call__(self, url: str, settings: VfsSettings = DEFAULT_SETTINGS):
        headers = self._makeHeaders(settings)
        timeout = (settings.httpTimeout, settings.httpTimeout) if settings.httpTimeout > 0 else None

        requestUrl = url
        for _ in range(settings.maxRedirects + 1):
            try:
                response = self._session.get(
                    requestUrl, headers=headers, timeout=timeout, stream=True, allow_redirects=False
                )
            except requests.RequestException as e:
                raise DecodeFailure(f"Failed to fetch {requestUrl}: {e}") from e

            status = response.status_code

            if status == 200:
                logger.debug(f"Fetched {requestUrl}")
                return HttpResponseStream(response, requestUrl)

            location = response.headers.get('Location')
            response.close()

            if status in REDIRECT_STATUSES and location:
                nextUrl = urljoin(requestUrl, location)
                logger.debug(f"HTTP {status} redirect: {requestUrl} -> {nextUrl}")
                requestUrl = nextUrl
                continue

            raise DecodeFailure(f"Invalid response code {status} received for {requestUrl}")

        raise DecodeFailure(f"Too many redirects (>{settings.maxRedirects}) for {url}")


DEFAULT_HTTP_OPENER = HttpUrlOpener()


def openUrl(url: str, settings: VfsSettings = DEFAULT_SETTINGS):
    """
    Default URL opener: requests for http(s), urllib for any other scheme.

    Returns:
        Binary stream positioned at the start of the resource body

    Raises:
        DecodeFailure: On transport errors or unexpected HTTP status
    """
    scheme = urlparse(url).scheme.lower()

    if scheme in HTTP_SCHEMES:
        return DEFAULT_HTTP_OPENER(url, settings)

    try:
        if settings.httpTimeout > 0:
            return urllib.request.urlopen(url, timeout=settings.httpTimeout)
        return urllib.request.urlopen(url)
    except OSError:
        raise
    except ValueError as e:
        raise DecodeFailure(f"Cannot open {url}: {e}") from e
