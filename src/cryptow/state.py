# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""On-disk mount session state and live mount probing.

Two marker files per profile make up the only persisted state:

``mount.lock``
    Zero-byte file created with ``O_CREAT | O_EXCL``.  Its existence means a
    session owns the profile's mounts.  This is the one mutual-exclusion
    primitive in cryptow.

``mount.pid``
    JSON record ``{"pid": ..., "started_at": ...}`` written after the lock
    is taken.  Diagnostics only.

Whether a directory is actually mounted is never recorded; it is read from
the kernel mount table every time it is asked.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .config import Settings
from .errors import AlreadyLockedError, ExternalToolError
from .tools import run_tool

logger = logging.getLogger(__name__)

# The kernel escapes space, tab, newline and backslash as \ooo.
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


@dataclass(frozen=True)
class ProcessMarker:
    pid: int
    started_at: str


def decode_mount_field(field: str) -> str:
    """Undo the kernel's octal escaping of a mount table field."""
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def parse_mount_table(content: str) -> set[str]:
    """Return the set of mount targets listed in a ``/proc/mounts`` snapshot."""
    targets: set[str] = set()
    for line in content.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            targets.add(os.path.normpath(decode_mount_field(parts[1])))
    return targets


def _normalize(path: str | os.PathLike[str]) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(path)))


class MountStateTracker:
    """Lock/process markers for profiles, plus mount table probes."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # -------------------------------------------------------------------------
    # Lock marker
    # -------------------------------------------------------------------------

    def is_active(self, profile: str) -> bool:
        return self._settings.lock_file(profile).exists()

    def check_lock(self, profile: str, force: bool = False) -> None:
        """Read-only version of :meth:`acquire` used for dry runs."""
        if self.is_active(profile) and not force:
            raise AlreadyLockedError(profile)

    def acquire(self, profile: str, force: bool = False) -> None:
        """Atomically create the lock marker for *profile*.

        With *force*, an existing marker is removed first.  That bypasses
        mutual exclusion and is only safe when the other session is dead.

        Raises:
            AlreadyLockedError: If the marker exists and *force* is false,
                or if another process recreated it between our unlink and
                create.
        """
        lock_path = self._settings.lock_file(profile)
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        if force:
            try:
                lock_path.unlink()
                logger.warning("Removed existing lock for '%s' (forced)", profile)
            except FileNotFoundError:
                pass

        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            raise AlreadyLockedError(profile)
        os.close(fd)
        logger.debug("Acquired lock %s", lock_path)

    # -------------------------------------------------------------------------
    # Process marker
    # -------------------------------------------------------------------------

    def write_process_marker(self, profile: str) -> ProcessMarker:
        marker = ProcessMarker(
            pid=os.getpid(),
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        pid_path = self._settings.pid_file(profile)
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"pid": marker.pid, "started_at": marker.started_at}
        pid_path.write_text(json.dumps(payload) + "\n", encoding="utf-8")
        return marker

    def read_process_marker(self, profile: str) -> ProcessMarker | None:
        """Return the recorded session owner, or ``None`` if absent/corrupt."""
        try:
            data = json.loads(self._settings.pid_file(profile).read_text(encoding="utf-8"))
            return ProcessMarker(pid=int(data["pid"]), started_at=str(data["started_at"]))
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def release(self, profile: str) -> None:
        """Remove both markers.  Never raises; failures are logged."""
        for path in (self._settings.pid_file(profile), self._settings.lock_file(profile)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to remove %s: %s", path, e)

    # -------------------------------------------------------------------------
    # Mount table
    # -------------------------------------------------------------------------

    def _read_mount_table(self) -> set[str]:
        # Mount targets are raw bytes; undecodable ones survive as surrogates.
        return parse_mount_table(os.fsdecode(Path(self._settings.mount_table).read_bytes()))

    async def probe_mount_point(self, path: str | os.PathLike[str]) -> bool:
        """Whether *path* is currently a mount point.

        Consults the mount table; when that cannot be read, falls back to
        ``mountpoint -q``.
        """
        target = _normalize(path)
        try:
            mounted = await asyncio.to_thread(self._read_mount_table)
        except (OSError, ValueError) as e:
            logger.debug("Mount table unreadable (%s); probing %s with mountpoint", e, target)
            return await self._probe_with_tool(target)

        if target in mounted:
            return True
        real = os.path.realpath(target)
        return real != target and real in mounted

    async def _probe_with_tool(self, target: str) -> bool:
        try:
            result = await run_tool([*self._settings.mountpoint_tool, "-q", target], capture=True)
        except ExternalToolError as e:
            logger.warning("Cannot probe %s: %s", target, e)
            return False
        return result.ok

    async def all_active(self, paths: Iterable[str | os.PathLike[str]]) -> bool:
        """True only if *paths* is non-empty and every path is mounted.

        A partially mounted set counts as inactive.
        """
        targets = list(paths)
        if not targets:
            return False
        results = await asyncio.gather(*(self.probe_mount_point(p) for p in targets))
        return all(results)
