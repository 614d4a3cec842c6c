# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest configuration and fake external tools for cryptow tests.

The fakes are tiny Python executables written into ``tmp_path``.  They share
a state directory holding:

``mounts``          fake mount table in ``/proc/mounts`` format
``pass.json``       fake password store
``calls.jsonl``     one JSON record per tool invocation
``fail_mount``      mount dirs the fake gocryptfs refuses to mount
``fail_umount``     mount dirs the fake umount refuses to unmount
``fail_umount_lazy``  ... even with ``-l``
"""

from __future__ import annotations

import json
import logging
import os
import stat
import sys
from pathlib import Path
from typing import Any

import pytest

from cryptow.config import Settings
from cryptow.state import parse_mount_table

_PRELUDE = '''\
#!{python}
import json
import os
import sys

STATE = {state!r}


def log(entry):
    with open(os.path.join(STATE, "calls.jsonl"), "a") as f:
        f.write(json.dumps(entry) + "\\n")


def lines(name):
    try:
        with open(os.path.join(STATE, name)) as f:
            return [line.strip() for line in f if line.strip()]
    except FileNotFoundError:
        return []


def encode(path):
    return path.replace("\\\\", "\\\\134").replace(" ", "\\\\040")


args = sys.argv[1:]
'''

_GOCRYPTFS = '''
passfile = args[args.index("--passfile") + 1]
with open(passfile) as f:
    secret = f.read().strip()
mode = oct(os.stat(passfile).st_mode & 0o777)
positional = [a for a in args if not a.startswith("-") and a != passfile]

if "-init" in args:
    cipher = positional[-1]
    log({"tool": "gocryptfs", "op": "init", "cipher": cipher, "secret": secret, "mode": mode})
    with open(os.path.join(cipher, "gocryptfs.conf"), "w") as f:
        f.write(secret)
    sys.exit(0)

cipher, mount = positional[-2], positional[-1]
log({"tool": "gocryptfs", "op": "mount", "cipher": cipher, "mount": mount,
     "secret": secret, "mode": mode, "passfile": passfile})
if mount in lines("fail_mount"):
    print("fake gocryptfs: mount failed", file=sys.stderr)
    sys.exit(1)
with open(os.path.join(cipher, "gocryptfs.conf")) as f:
    if f.read() != secret:
        print("fake gocryptfs: password incorrect", file=sys.stderr)
        sys.exit(12)
with open(os.path.join(STATE, "mounts"), "a", encoding="utf-8", errors="surrogateescape") as f:
    f.write("cryptow %s fuse.gocryptfs rw,nosuid,nodev 0 0\\n" % encode(mount))
'''

_UMOUNT = '''
lazy = "-l" in args
target = [a for a in args if a != "-l"][-1]
log({"tool": "umount", "target": target, "lazy": lazy})
if target in lines("fail_umount") and (not lazy or target in lines("fail_umount_lazy")):
    print("fake umount: target is busy", file=sys.stderr)
    sys.exit(32)
table = os.path.join(STATE, "mounts")
with open(table, encoding="utf-8", errors="surrogateescape") as f:
    entries = f.readlines()
keep = [e for e in entries if e.split()[1] != encode(target)]
if len(keep) == len(entries):
    print("fake umount: %s: not mounted" % target, file=sys.stderr)
    sys.exit(32)
with open(table, "w", encoding="utf-8", errors="surrogateescape") as f:
    f.writelines(keep)
'''

_PASS = '''
store_path = os.path.join(STATE, "pass.json")
with open(store_path) as f:
    store = json.load(f)
op, entry = args[0], args[-1]
log({"tool": "pass", "op": op, "entry": entry})
if op == "show":
    if entry not in store:
        print("Error: %s is not in the password store." % entry, file=sys.stderr)
        sys.exit(1)
    print(store[entry])
elif op == "insert":
    if entry in store and "--force" not in args:
        print("An entry already exists for %s." % entry, file=sys.stderr)
        sys.exit(1)
    store[entry] = sys.stdin.read().rstrip("\\n")
    with open(store_path, "w") as f:
        json.dump(store, f)
else:
    sys.exit(2)
'''

_MOUNTPOINT = '''
target = args[-1]
log({"tool": "mountpoint", "target": target})
with open(os.path.join(STATE, "mounts"), encoding="utf-8", errors="surrogateescape") as f:
    targets = [line.split()[1] for line in f if line.strip()]
sys.exit(0 if encode(target) in targets else 1)
'''


class FakeHost:
    """Handle on the fake tools, their state, and matching Settings."""

    def __init__(self, root: Path):
        self.root = root
        self.state = root / "fake-state"
        self.bin = root / "bin"
        self.home = root / "home"
        for d in (self.state, self.bin, self.home):
            d.mkdir(parents=True)
        (self.state / "mounts").write_text("")
        (self.state / "pass.json").write_text("{}")

        tools = {
            "gocryptfs": _GOCRYPTFS,
            "umount": _UMOUNT,
            "pass": _PASS,
            "mountpoint": _MOUNTPOINT,
        }
        for name, body in tools.items():
            path = self.bin / name
            path.write_text(_PRELUDE.format(python=sys.executable, state=str(self.state)) + body)
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        self.settings = Settings(
            home=str(self.home),
            config_dir=root / "config",
            data_dir=root / "data",
            mount_tool=(str(self.bin / "gocryptfs"),),
            unmount_tool=(str(self.bin / "umount"),),
            pass_tool=(str(self.bin / "pass"),),
            mountpoint_tool=(str(self.bin / "mountpoint"),),
            mount_table=self.state / "mounts",
        )

    @property
    def environ(self) -> dict[str, str]:
        """Environment variables that make ``load_settings`` match :attr:`settings`."""
        return {
            "HOME": str(self.home),
            "CRYPTOW_CONFIG_DIR": str(self.settings.config_dir),
            "CRYPTOW_DATA_DIR": str(self.settings.data_dir),
            "CRYPTOW_GOCRYPTFS": str(self.bin / "gocryptfs"),
            "CRYPTOW_UMOUNT": str(self.bin / "umount"),
            "CRYPTOW_PASS": str(self.bin / "pass"),
            "CRYPTOW_MOUNTPOINT": str(self.bin / "mountpoint"),
            "CRYPTOW_MOUNT_TABLE": str(self.settings.mount_table),
        }

    def write_profiles(self, text: str) -> Path:
        self.settings.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.settings.profiles_file
        path.write_text(text)
        return path

    def set_secret(self, entry: str, value: str) -> None:
        path = self.state / "pass.json"
        store = json.loads(path.read_text())
        store[entry] = value
        path.write_text(json.dumps(store))

    def secret(self, entry: str) -> str | None:
        return json.loads((self.state / "pass.json").read_text()).get(entry)

    def init_store(self, cipher_dir: str | Path, entry: str, value: str) -> None:
        """Make *cipher_dir* look like an initialised gocryptfs store."""
        Path(cipher_dir).mkdir(parents=True, exist_ok=True)
        (Path(cipher_dir) / "gocryptfs.conf").write_text(value)
        self.set_secret(entry, value)

    def fail(self, kind: str, path: str | Path) -> None:
        with open(self.state / kind, "a") as f:
            f.write(f"{path}\n")

    def mounted(self) -> set[str]:
        return parse_mount_table(os.fsdecode((self.state / "mounts").read_bytes()))

    def add_mount(self, path: str | Path) -> None:
        with open(self.state / "mounts", "a") as f:
            f.write(f"other {path} fuse.gocryptfs rw 0 0\n")

    def add_raw_mount_line(self, line: bytes) -> None:
        """Append a mount table line verbatim, e.g. one that is not UTF-8."""
        with open(self.state / "mounts", "ab") as f:
            f.write(line)

    def calls(self, tool: str | None = None) -> list[dict[str, Any]]:
        path = self.state / "calls.jsonl"
        if not path.exists():
            return []
        records = [json.loads(line) for line in path.read_text().splitlines() if line]
        return [r for r in records if tool is None or r["tool"] == tool]


@pytest.fixture
def host(tmp_path: Path) -> FakeHost:
    return FakeHost(tmp_path)


@pytest.fixture
def settings(host: FakeHost) -> Settings:
    return host.settings


class RecordingReporter:
    """Reporter that keeps every message for assertions."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, msg: str) -> None:
        self.messages.append(("info", msg))

    def dim(self, msg: str) -> None:
        self.messages.append(("dim", msg))

    def warning(self, msg: str) -> None:
        self.messages.append(("warning", msg))

    def error(self, msg: str) -> None:
        self.messages.append(("error", msg))

    def text(self) -> str:
        return "\n".join(msg for _level, msg in self.messages)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo ``setup_logging`` from CLI tests so caplog keeps working."""
    yield
    logger = logging.getLogger("cryptow")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
