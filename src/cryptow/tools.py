# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Invocation of external tools (gocryptfs, umount, pass, mountpoint)."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """One-line summary suitable for an error message."""
        detail = " ".join(self.stderr.split())
        msg = f"{self.argv[0]} exited with code {self.returncode}"
        return f"{msg}: {detail}" if detail else msg


async def run_tool(
    argv: Sequence[str],
    *,
    input: str | None = None,
    capture: bool = False,
) -> ToolResult:
    """Run *argv* and wait for it to exit.

    Args:
        argv: Command and arguments.
        input: Text written to the tool's stdin.  When ``None`` stdin is
            inherited.
        capture: Capture stdout/stderr instead of inheriting them.

    Returns:
        ToolResult; a nonzero exit status is not an error at this level.

    Raises:
        ExternalToolError: If the executable cannot be started.
    """
    cmd = list(argv)
    logger.debug("Running %s", " ".join(cmd))
    pipe = asyncio.subprocess.PIPE if capture else None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if input is not None else None,
            stdout=pipe,
            stderr=pipe,
        )
    except OSError as e:
        raise ExternalToolError(f"Cannot run {cmd[0]}: {e.strerror or e}", tool=cmd[0])

    stdout, stderr = await proc.communicate(
        input.encode() if input is not None else None
    )
    assert proc.returncode is not None
    return ToolResult(
        argv=cmd,
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
    )


def missing_tools(*commands: Sequence[str]) -> list[str]:
    """Return the executables among *commands* that are not on ``PATH``."""
    return [cmd[0] for cmd in commands if shutil.which(cmd[0]) is None]
