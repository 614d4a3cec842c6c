# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Run a profile's command with its volumes mounted and secrets injected.

Exit code policy
----------------
- The child's exit code is returned verbatim (a child killed by signal
  ``N`` reports ``128 + N``).
- A child that outlives ``timeout`` is terminated and reports
  :data:`TIMEOUT_EXIT_CODE`.
- An error that stops the child from running at all reports ``1``.
- If this run mounted the volumes and unmounting them afterwards fails, a
  zero exit code becomes ``1``; a nonzero one is left alone.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from .engine import MountEngine
from .errors import CommandTimeoutError, CryptowError, ExternalToolError
from .profile import Profile, env_injectors, volume_injectors
from .reporter import Reporter, Reporting

logger = logging.getLogger(__name__)

# Same convention as coreutils timeout(1).
TIMEOUT_EXIT_CODE = 124

# Seconds between SIGTERM and SIGKILL for a timed-out child.
TERMINATE_GRACE_SECONDS = 5.0

PROFILE_ENV_VAR = "CRYPTOW_PROFILE"
MOUNT_ENV_VAR = "CRYPTOW_MOUNT"
CIPHER_ENV_VAR = "CRYPTOW_CIPHER"


@dataclass
class MountLease:
    """Outcome of :meth:`ProfileRunner.managed_mount`."""

    profile: Profile
    reused: bool
    unmount_error: CryptowError | None = None


class ProfileRunner(Reporting):
    """Mounts a profile, runs its command, and always unwinds the mount."""

    def __init__(self, engine: MountEngine, reporter: Reporter | None = None):
        self.engine = engine
        self.reporter = reporter if reporter is not None else engine.reporter

    @asynccontextmanager
    async def managed_mount(self, profile: Profile, force: bool = False) -> AsyncIterator[MountLease]:
        """Mount *profile* for the duration of the ``async with`` block.

        If every volume is already mounted the existing mount is reused and
        left in place afterwards.  Otherwise the volumes are mounted here and
        unmounted on exit, whatever way the block exits.  An unmount failure
        is stored on the lease rather than raised, so it cannot mask the
        block's own outcome.
        """
        mount_dirs = [injector.mount_dir for injector in volume_injectors(profile)]
        if await self.engine.tracker.all_active(mount_dirs):
            logger.info("Reusing existing mount for '%s'", profile.name)
            self.info(f"Profile '{profile.name}' is already mounted; reusing existing mount.")
            yield MountLease(profile=profile, reused=True)
            return

        await self.engine.mount(profile, force=force)
        lease = MountLease(profile=profile, reused=False)
        try:
            yield lease
        finally:
            try:
                await self.engine.unmount(profile, force=True)
            except CryptowError as e:
                lease.unmount_error = e
                logger.error("Failed to unmount profile '%s': %s", profile.name, e)
                self.error(f"Failed to unmount profile '{profile.name}': {e}")

    def static_overrides(self, profile: Profile, fresh_mount: bool) -> dict[str, str]:
        """Environment additions that need no secret lookup."""
        overrides = dict(profile.env)
        overrides[PROFILE_ENV_VAR] = profile.name
        volumes = volume_injectors(profile)
        if fresh_mount and volumes:
            primary = volumes[0]
            overrides[MOUNT_ENV_VAR] = primary.mount_dir
            overrides[CIPHER_ENV_VAR] = primary.cipher_dir
        return overrides

    async def build_environment(self, profile: Profile, fresh_mount: bool) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.static_overrides(profile, fresh_mount))
        for injector in env_injectors(profile):
            env[injector.env_var] = await self.engine.secrets.fetch(injector.password_entry)
        return env

    async def run(
        self,
        profile: Profile,
        extra_args: Sequence[str] = (),
        dry_run: bool = False,
        timeout: float | None = None,
        force: bool = False,
    ) -> int:
        """Run *profile*'s command and return the exit code to report."""
        argv = [*profile.command, *extra_args]

        if dry_run:
            try:
                await self._dry_run(profile, argv, force)
            except CryptowError as e:
                self.error(str(e))
                return 1
            return 0

        exit_code = 0
        lease: MountLease | None = None
        try:
            async with self.managed_mount(profile, force=force) as lease:
                env = await self.build_environment(profile, fresh_mount=not lease.reused)
                exit_code = await self.execute(argv, env, profile.working_dir, timeout)
        except CommandTimeoutError as e:
            logger.warning("Profile '%s': %s", profile.name, e)
            self.error(str(e))
            exit_code = TIMEOUT_EXIT_CODE
        except CryptowError as e:
            logger.error("Run of '%s' failed: %s", profile.name, e)
            self.error(f"Error: {e}")
            exit_code = 1
        else:
            if exit_code != 0:
                self.error(f"Command exited with code {exit_code}")

        if lease is not None and lease.unmount_error is not None and exit_code == 0:
            exit_code = 1
        logger.info("Run of '%s' finished with exit code %d", profile.name, exit_code)
        return exit_code

    async def execute(
        self,
        argv: Sequence[str],
        env: dict[str, str],
        cwd: str | None,
        timeout: float | None,
    ) -> int:
        """Run the child with inherited stdio and wait for it.

        Raises:
            ExternalToolError: If the command cannot be started.
            CommandTimeoutError: If it ran past *timeout* and was terminated.
        """
        if not argv:
            raise ExternalToolError("No command specified after resolving profile and arguments.")

        logger.info("Executing %s", shlex.join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(*argv, env=env, cwd=cwd)
        except OSError as e:
            raise ExternalToolError(f"Failed to start {argv[0]}: {e.strerror or e}", tool=argv[0])

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout)
        except asyncio.TimeoutError:
            await self._terminate(proc)
            raise CommandTimeoutError(timeout or 0)
        except BaseException:
            await self._terminate(proc)
            raise

        return returncode if returncode >= 0 else 128 - returncode

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()

    async def _dry_run(self, profile: Profile, argv: list[str], force: bool) -> None:
        mount_dirs = [injector.mount_dir for injector in volume_injectors(profile)]
        reuse = await self.engine.tracker.all_active(mount_dirs)
        if reuse:
            self.info(f"Profile '{profile.name}' is already mounted; reusing existing mount.")
        else:
            await self.engine.mount(profile, dry_run=True, force=force)

        self.info(f"[dry-run] Would run command: {shlex.join(argv)}")

        overrides = self.static_overrides(profile, fresh_mount=not reuse)
        for injector in env_injectors(profile):
            overrides[injector.env_var] = f"<pass:{injector.password_entry}>"
        self.info("[dry-run] Environment overrides:")
        for key, value in overrides.items():
            self.info(f"  {key}={value}")

        if profile.working_dir:
            self.info(f"[dry-run] Working directory: {profile.working_dir}")
