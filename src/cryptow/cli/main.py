#!/usr/bin/env python3
"""
Cryptow CLI - Main entry point.

Usage:
    cryptow [OPTIONS] COMMAND [ARGS]...

Run commands against gocryptfs-mounted storage with secrets from pass.
"""

import json
import os
from dataclasses import asdict, dataclass
from typing import List, Optional

import typer
from rich.table import Table
from rich.text import Text

from .. import __version__
from ..config import Settings, load_settings
from ..engine import MountEngine
from ..errors import ConfigError, CryptowError
from ..logs import setup_logging
from ..profile import Profile, list_profile_names, resolve_profile, volume_injectors
from ..runner import ProfileRunner
from ..state import MountStateTracker
from .async_typer import AsyncTyper
from .decorators import handle_errors, require_tools
from .output import out


# Create the main Typer app
app = AsyncTyper(
    name="cryptow",
    help="Secure wrapper around CLI tools using gocryptfs-mounted storage.",
    add_completion=False,
    no_args_is_help=True,
)


@dataclass
class CliState:
    """Per-invocation state stored on ``ctx.obj``."""

    settings: Settings
    verbose: bool = False


@dataclass
class ProfileRow:
    """One row of ``cryptow list`` output."""

    name: str
    status: str = "unmounted"
    mounted: bool = False
    locked: bool = False
    mountDir: Optional[str] = None
    error: Optional[str] = None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        out.info(f"cryptow version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Also print debug logging to stderr.",
    ),
) -> None:
    """
    Cryptow - run commands with encrypted storage and injected secrets.

    Profiles are read from ~/.config/cryptow/profiles.yaml.
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        out.error(f"Error: {e}")
        raise typer.Exit(1)

    setup_logging(settings, verbose=verbose)
    ctx.obj = CliState(settings=settings, verbose=verbose)


def _engine(ctx: typer.Context) -> MountEngine:
    return MountEngine(ctx.obj.settings, reporter=out)


async def _profile_row(profile: Profile, tracker: MountStateTracker) -> ProfileRow:
    mount_dirs = [injector.mount_dir for injector in volume_injectors(profile)]
    locked = tracker.is_active(profile.name)
    mounted = await tracker.all_active(mount_dirs) if mount_dirs else locked

    if mounted:
        status = "mounted"
    elif locked:
        status = "stale"
    else:
        status = "unmounted"

    return ProfileRow(
        name=profile.name,
        status=status,
        mounted=mounted,
        locked=locked,
        mountDir=", ".join(mount_dirs) if mount_dirs else None,
    )


@app.command(name="list")
@handle_errors
async def list_profiles(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output JSON",
    ),
) -> None:
    """List configured profiles and mount status."""
    settings: Settings = ctx.obj.settings
    tracker = MountStateTracker(settings)

    rows: List[ProfileRow] = []
    for name in list_profile_names(settings):
        try:
            profile = resolve_profile(name, settings)
        except CryptowError as e:
            rows.append(ProfileRow(name=name, status="error", error=str(e)))
            continue
        rows.append(await _profile_row(profile, tracker))

    if json_output:
        payload = [
            {k: v for k, v in asdict(row).items() if k != "status"}
            for row in rows
        ]
        out.raw(json.dumps(payload, indent=2))
        return

    if not rows:
        out.dim(f"No profiles found. Define profiles in {settings.profiles_file}.")
        return

    table = Table(show_header=True)
    table.add_column("PROFILE", style="cyan", no_wrap=True)
    table.add_column("STATUS")
    table.add_column("MOUNT", overflow="fold")

    styles = {"mounted": "green", "unmounted": "dim", "stale": "yellow", "error": "red"}
    for row in rows:
        table.add_row(
            Text(row.name),
            Text(row.status, style=styles[row.status]),
            Text(row.error or row.mountDir or "-"),
        )

    out.console.print(table)


@app.command()
@require_tools("mount_tool", "pass_tool")
@handle_errors
async def mount(
    ctx: typer.Context,
    profile: str = typer.Argument(..., help="Name of the profile to mount"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Describe actions without executing.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Ignore stale locks.",
    ),
) -> None:
    """Mount the encrypted store for a profile without executing its command."""
    resolved = resolve_profile(profile, ctx.obj.settings)
    await _engine(ctx).mount(resolved, dry_run=dry_run, force=force)
    if not dry_run:
        out.success(f"Mounted profile '{profile}'")


@app.command()
@require_tools("unmount_tool")
@handle_errors
async def unmount(
    ctx: typer.Context,
    profile: str = typer.Argument(..., help="Name of the profile to unmount"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Describe actions without executing.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Lazily unmount on failure and remove stale state.",
    ),
) -> None:
    """Unmount the encrypted store for a profile."""
    resolved = resolve_profile(profile, ctx.obj.settings)
    await _engine(ctx).unmount(resolved, dry_run=dry_run, force=force)


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True}
)
@require_tools("mount_tool", "unmount_tool", "pass_tool")
@handle_errors
async def run(
    ctx: typer.Context,
    profile: str = typer.Argument(..., help="Name of the profile to run"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Describe actions without executing.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Ignore stale locks when mounting.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        min=0,
        help="Terminate the command after this many seconds.",
    ),
) -> None:
    """Mount, execute the profile's command, and unmount afterwards.

    Arguments after the profile name (or after ``--``) are appended to the
    profile's command:

        cryptow run work -- s3 ls
    """
    resolved = resolve_profile(profile, ctx.obj.settings)
    runner = ProfileRunner(_engine(ctx))
    code = await runner.run(
        resolved,
        extra_args=list(ctx.args),
        dry_run=dry_run,
        timeout=timeout,
        force=force,
    )
    raise typer.Exit(code)


@app.command()
@require_tools("mount_tool", "pass_tool")
@handle_errors
async def init(
    ctx: typer.Context,
    profile: str = typer.Argument(..., help="Name of the profile to initialize"),
    gen_pass: bool = typer.Option(
        False,
        "--gen-pass",
        help="Generate a new passphrase and store it in pass.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Describe actions without executing.",
    ),
) -> None:
    """Initialize the gocryptfs store(s) of a profile.

    Without --gen-pass the passphrase is read from the profile's existing
    pass entry.
    """
    resolved = resolve_profile(profile, ctx.obj.settings)
    await _engine(ctx).initialize(resolved, generate=gen_pass, dry_run=dry_run)
    if not dry_run:
        out.success(f"Initialized profile '{profile}'")


def cli() -> None:
    """CLI entry point for setuptools."""
    prog_name = os.environ.get("CRYPTOW_PROG_NAME", "cryptow")
    app(prog_name=prog_name)


if __name__ == "__main__":
    cli()
