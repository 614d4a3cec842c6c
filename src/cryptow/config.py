# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Runtime settings: where cryptow keeps its files and which tools it calls.

Settings are resolved once per invocation from the environment:

==========================  ==========================================
Variable                    Meaning
==========================  ==========================================
``CRYPTOW_CONFIG_DIR``      directory holding ``profiles.yaml``
``CRYPTOW_DATA_DIR``        lock markers, default cipher dirs, logs
``CRYPTOW_GOCRYPTFS``       encrypted-mount tool (default ``gocryptfs``)
``CRYPTOW_UMOUNT``          unmount tool (default ``umount``)
``CRYPTOW_PASS``            secret store tool (default ``pass``)
``CRYPTOW_MOUNTPOINT``      mount probe fallback (default ``mountpoint``)
``CRYPTOW_MOUNT_TABLE``     mount table (default ``/proc/self/mounts``)
==========================  ==========================================

Tool variables are split with :func:`shlex.split`, so a wrapper such as
``CRYPTOW_UMOUNT="fusermount -u"`` works.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

PROFILES_FILENAME = "profiles.yaml"
LOCK_FILENAME = "mount.lock"
PID_FILENAME = "mount.pid"
LOG_FILENAME = "cryptow.log"

DEFAULT_MOUNT_TABLE = "/proc/self/mounts"


def expand_path(value: str, home: str) -> str:
    """Replace a leading ``~`` with *home*; other values pass through."""
    if value == "~":
        return home
    if value.startswith("~/") or value.startswith("~\\"):
        segments = [s for s in value[2:].replace("\\", "/").split("/") if s]
        return os.path.join(home, *segments) if segments else home
    return value


@dataclass(frozen=True)
class Settings:
    """Resolved paths and external tool commands for one invocation."""

    home: str
    config_dir: Path
    data_dir: Path
    mount_tool: tuple[str, ...] = ("gocryptfs",)
    unmount_tool: tuple[str, ...] = ("umount",)
    pass_tool: tuple[str, ...] = ("pass",)
    mountpoint_tool: tuple[str, ...] = ("mountpoint",)
    mount_table: Path = Path(DEFAULT_MOUNT_TABLE)

    @property
    def profiles_file(self) -> Path:
        return self.config_dir / PROFILES_FILENAME

    @property
    def profiles_data_dir(self) -> Path:
        return self.data_dir / "profiles"

    @property
    def mounts_dir(self) -> Path:
        return self.data_dir / "mounts"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "log" / LOG_FILENAME

    def profile_data_dir(self, profile: str) -> Path:
        return self.profiles_data_dir / profile

    def lock_file(self, profile: str) -> Path:
        return self.profile_data_dir(profile) / LOCK_FILENAME

    def pid_file(self, profile: str) -> Path:
        return self.profile_data_dir(profile) / PID_FILENAME

    def default_cipher_dir(self, profile: str) -> Path:
        return self.profile_data_dir(profile) / "cipher"

    def default_mount_dir(self, profile: str) -> Path:
        return self.mounts_dir / profile

    def expand(self, value: str) -> str:
        return expand_path(value, self.home)


def _tool(environ: Mapping[str, str], key: str, default: str) -> tuple[str, ...]:
    raw = environ.get(key, "").strip()
    if not raw:
        return (default,)
    parts = tuple(shlex.split(raw))
    if not parts:
        raise ConfigError(f"{key} is set but empty")
    return parts


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from *environ* (defaults to ``os.environ``).

    Raises:
        ConfigError: If ``HOME`` is not set.
    """
    env = os.environ if environ is None else environ

    home = env.get("HOME")
    if not home:
        raise ConfigError("HOME environment variable is not set.")

    xdg_config = env.get("XDG_CONFIG_HOME") or os.path.join(home, ".config")
    xdg_data = env.get("XDG_DATA_HOME") or os.path.join(home, ".local", "share")

    config_dir = env.get("CRYPTOW_CONFIG_DIR") or os.path.join(xdg_config, "cryptow")
    data_dir = env.get("CRYPTOW_DATA_DIR") or os.path.join(xdg_data, "cryptow")

    return Settings(
        home=home,
        config_dir=Path(expand_path(config_dir, home)),
        data_dir=Path(expand_path(data_dir, home)),
        mount_tool=_tool(env, "CRYPTOW_GOCRYPTFS", "gocryptfs"),
        unmount_tool=_tool(env, "CRYPTOW_UMOUNT", "umount"),
        pass_tool=_tool(env, "CRYPTOW_PASS", "pass"),
        mountpoint_tool=_tool(env, "CRYPTOW_MOUNTPOINT", "mountpoint"),
        mount_table=Path(env.get("CRYPTOW_MOUNT_TABLE") or DEFAULT_MOUNT_TABLE),
    )
