# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""File logging for cryptow.

Modules log through ``logging.getLogger(__name__)``; this module wires the
``cryptow`` package logger to an append-only file under the data directory.
"""

from __future__ import annotations

import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

PACKAGE_LOGGER = "cryptow"


def setup_logging(settings: Settings, verbose: bool = False) -> logging.Logger:
    """Attach the log file handler (and optionally a stderr handler).

    Calling this more than once replaces the handlers installed by a
    previous call, so tests can point logging at a fresh directory.

    A log directory that cannot be created disables file logging with a
    warning on stderr; it never aborts the command.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_cryptow", False):
            logger.removeHandler(handler)
            handler.close()

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    log_file = settings.log_file
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"warning: file logging disabled: {e}", file=sys.stderr)
    else:
        file_handler = logging.FileHandler(log_file, encoding="utf-8", delay=True)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        file_handler.setLevel(logging.INFO)
        file_handler._cryptow = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    if verbose:
        console_handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
        console_handler.setLevel(logging.DEBUG)
        console_handler._cryptow = True  # type: ignore[attr-defined]
        logger.addHandler(console_handler)

    return logger
