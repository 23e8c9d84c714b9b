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

import os
import logging

# Error reporting is disabled unless SENTRY_DSN is explicitly provided.
import sentry_sdk

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration

PUBLIC_VERSION = '1.0.0'

# Map string levels to logging constants for standard level names
LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configureGlobalLogLevel(logLevel):
    """
    Configure the global logging level for the application.
    This affects all loggers created via getLogger().

    Args:
        logLevel: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter(LOG_FORMAT)

    # Add console handler if none exists
    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        # Update existing handlers
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


def parseLogLevel(value):
    """Translate a level name (case-insensitive) to a logging constant, None if unknown."""
    if not value:
        return None
    return LOG_LEVEL_MAPPING.get(str(value).upper())


if os.getenv('VFS_LOGGING_LEVEL'):
    envLogLevel = parseLogLevel(os.getenv('VFS_LOGGING_LEVEL'))
    if envLogLevel is not None:
        configureGlobalLogLevel(envLogLevel)


def _sentryEnabled():
    client = sentry_sdk.get_client()
    return client is not None and client.is_active()


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger, with Sentry integration when SENTRY_DSN is configured.

    Sentry stays uninitialized (and no events leave the process) unless the
    SENTRY_DSN environment variable is set.

    Args:
        name: Logger name
        version: Version string attached to Sentry records
    """
    logger = logging.getLogger(name)

    try:
        sentryDsn = os.getenv('SENTRY_DSN')
        if not sentryDsn:
            return logger

        if not _sentryEnabled():
            sentry_sdk.init(
                dsn=sentryDsn,
                release=f'nested-vfs@{version}',
                default_integrations=False,
                integrations=[LoggingIntegration(level=None, event_level=None)],
            )
            logger.debug('Sentry initialized')

        # Add Sentry handler if not already present
        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            handler = SentryHandler(level=logging.ERROR)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)

        return logger

    except Exception as e:
        # If Sentry setup fails, log the error and continue with standard logging
        logger.warning(f"Failed to initialize Sentry: {e}")
        return logger
