# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Progress reporting interface shared by the engine and the runner.

The CLI passes its rich output helper; library callers and tests may pass
anything with the same methods, or nothing at all.
"""

from __future__ import annotations

from typing import Protocol


class Reporter(Protocol):
    def info(self, msg: str) -> None: ...

    def dim(self, msg: str) -> None: ...

    def warning(self, msg: str) -> None: ...

    def error(self, msg: str) -> None: ...


class Reporting:
    """Mixin forwarding to an optional :class:`Reporter`."""

    reporter: Reporter | None = None

    def info(self, msg: str) -> None:
        if self.reporter:
            self.reporter.info(msg)

    def dim(self, msg: str) -> None:
        if self.reporter:
            self.reporter.dim(msg)

    def warning(self, msg: str) -> None:
        if self.reporter:
            self.reporter.warning(msg)

    def error(self, msg: str) -> None:
        if self.reporter:
            self.reporter.error(msg)
