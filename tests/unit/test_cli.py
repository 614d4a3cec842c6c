"""Tests for the cryptow command line interface."""

from __future__ import annotations

import json
import sys

import pytest
from typer.testing import CliRunner

from cryptow import __version__
from cryptow.cli.main import app

runner = CliRunner()


def profiles_yaml(tmp_path, code: str = "pass") -> str:
    return f"""\
profiles:
  work:
    command: [{json.dumps(sys.executable)}, "-c", {json.dumps(code)}]
    injectors:
      - type: gocryptfs
        password_entry: gocryptfs/work
        cipher_dir: {tmp_path / "cipher"}
        mount_dir: {tmp_path / "mount"}
  broken:
    command: x
"""


@pytest.fixture
def invoke(host):
    def _invoke(*args: str, env: dict[str, str] | None = None):
        return runner.invoke(app, list(args), env={**host.environ, **(env or {})})
    return _invoke


def test_version(invoke):
    result = invoke("--version")
    assert result.exit_code == 0
    assert f"cryptow version {__version__}" in result.output


def test_list_without_profiles(invoke, settings):
    result = invoke("list")
    assert result.exit_code == 0
    assert "No profiles found" in result.output

    result = invoke("list", "--json")
    assert result.exit_code == 0
    assert json.loads(result.output) == []


def test_list_json_reports_status_and_errors(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))

    rows = {row["name"]: row for row in json.loads(invoke("list", "--json").output)}

    assert rows["work"] == {
        "name": "work",
        "mounted": False,
        "locked": False,
        "mountDir": str(tmp_path / "mount"),
        "error": None,
    }
    assert "missing 'injectors'" in rows["broken"]["error"]


def test_mount_list_unmount(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))
    host.init_store(tmp_path / "cipher", "gocryptfs/work", "pw")

    result = invoke("mount", "work")
    assert result.exit_code == 0, result.output
    assert "Mounted profile 'work'" in result.output
    assert host.mounted() == {str(tmp_path / "mount")}

    listing = invoke("list")
    assert "work" in listing.output
    assert "mounted" in listing.output

    again = invoke("mount", "work")
    assert again.exit_code == 1
    assert "Use --force to override" in again.output

    result = invoke("unmount", "work")
    assert result.exit_code == 0, result.output
    assert host.mounted() == set()


def test_log_file_records_lifecycle(invoke, host, settings, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))
    host.init_store(tmp_path / "cipher", "gocryptfs/work", "pw")

    invoke("mount", "work")
    invoke("unmount", "work")

    log = settings.log_file.read_text()
    assert f"[INFO] Mounted 'work' to {tmp_path / 'mount'}" in log
    assert f"[INFO] Unmounted 'work' from {tmp_path / 'mount'}" in log


def test_run_propagates_exit_code(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path, "import sys; sys.exit(int(sys.argv[1]))"))
    host.init_store(tmp_path / "cipher", "gocryptfs/work", "pw")

    result = invoke("run", "work", "--", "5")

    assert result.exit_code == 5
    assert "Command exited with code 5" in result.output
    assert host.mounted() == set()


def test_run_dry_run(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))

    result = invoke("run", "work", "--dry-run")

    assert result.exit_code == 0, result.output
    assert "[dry-run] Would run command:" in result.output
    assert host.calls() == []


def test_init_gen_pass(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))

    result = invoke("init", "work", "--gen-pass")

    assert result.exit_code == 0, result.output
    assert (tmp_path / "cipher" / "gocryptfs.conf").exists()
    assert host.secret("gocryptfs/work")

    again = invoke("init", "work", "--gen-pass")
    assert again.exit_code == 1
    assert "already initialized" in again.output


def test_unknown_profile(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))
    result = invoke("mount", "nope")
    assert result.exit_code == 1
    assert "Profile 'nope' not found" in result.output


def test_invalid_profile(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))
    result = invoke("mount", "broken")
    assert result.exit_code == 1
    assert "missing 'injectors'" in result.output


def test_missing_tool(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))
    result = invoke("mount", "work", env={"CRYPTOW_GOCRYPTFS": str(tmp_path / "no-gocryptfs")})
    assert result.exit_code == 1
    assert "Required tool(s) not found" in result.output
    assert host.calls() == []


def test_missing_tool_ignored_for_dry_run(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path))
    result = invoke(
        "mount", "work", "--dry-run", env={"CRYPTOW_GOCRYPTFS": str(tmp_path / "no-gocryptfs")}
    )
    assert result.exit_code == 0, result.output
    assert "[dry-run] No commands executed" in result.output


def test_list_shows_bracketed_and_scalar_profiles_verbatim(invoke, host, tmp_path):
    host.write_profiles(profiles_yaml(tmp_path) + '  "[bold]odd": 5\n')

    result = invoke("list")

    assert result.exit_code == 0, result.output
    assert "[bold]odd" in result.output
    assert "error" in result.output

    rows = {row["name"]: row for row in json.loads(invoke("list", "--json").output)}
    assert rows["work"]["error"] is None
    assert "must be an object-like mapping" in rows["[bold]odd"]["error"]
