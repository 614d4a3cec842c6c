# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Mounting and unmounting a profile's encrypted volumes.

Volumes are mounted in declared order and unmounted in reverse order.  A
failed mount unwinds only the volumes that were mounted successfully, last
mounted first, and then drops the profile lock, so a failed ``mount`` never
leaves anything behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .config import Settings
from .errors import (
    CryptowError,
    ExternalToolError,
    MountError,
    PreconditionError,
    UnmountError,
)
from .profile import Profile, VolumeInjector, volume_injectors
from .reporter import Reporter, Reporting
from .secret_store import SecretStore, generate_secret
from .state import MountStateTracker
from .tools import ToolResult, run_tool

logger = logging.getLogger(__name__)

# Written by ``gocryptfs -init``; its presence means the store is usable.
GOCRYPTFS_CONFIG = "gocryptfs.conf"


@contextmanager
def passfile(secret: str) -> Iterator[str]:
    """Write *secret* to an owner-only temp file, removed on exit."""
    fd, path = tempfile.mkstemp(prefix="cryptow-pass-")
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(secret + "\n")
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove passfile %s: %s", path, e)


class MountEngine(Reporting):
    """Mounts, unmounts and initialises a profile's gocryptfs volumes."""

    def __init__(
        self,
        settings: Settings,
        tracker: MountStateTracker | None = None,
        secrets: SecretStore | None = None,
        reporter: Reporter | None = None,
    ):
        self.settings = settings
        self.tracker = tracker or MountStateTracker(settings)
        self.secrets = secrets or SecretStore(settings)
        self.reporter = reporter

    # -------------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------------

    @staticmethod
    def is_initialized(injector: VolumeInjector) -> bool:
        return (Path(injector.cipher_dir) / GOCRYPTFS_CONFIG).is_file()

    def check_initialized(self, profile: Profile) -> None:
        """Fail fast if any volume's cipher store was never initialised."""
        for index, injector in enumerate(volume_injectors(profile), start=1):
            if not self.is_initialized(injector):
                raise PreconditionError(
                    f"Profile '{profile.name}' volume #{index} is not initialized "
                    f"({GOCRYPTFS_CONFIG} missing in {injector.cipher_dir}). "
                    f"Run: cryptow init {profile.name}"
                )

    # -------------------------------------------------------------------------
    # Mount
    # -------------------------------------------------------------------------

    async def mount(self, profile: Profile, dry_run: bool = False, force: bool = False) -> None:
        """Mount every volume of *profile*, or none of them.

        Raises:
            AlreadyLockedError: If another session holds the profile.
            PreconditionError: If a cipher store is not initialised.
            MountError, SecretNotFoundError: After rolling back.
        """
        volumes = volume_injectors(profile)

        if dry_run:
            self.tracker.check_lock(profile.name, force)
            self.report_mount_plan(profile)
            return

        self.check_initialized(profile)
        self.tracker.acquire(profile.name, force)

        mounted: list[VolumeInjector] = []
        try:
            self.tracker.write_process_marker(profile.name)
            for injector in volumes:
                await self._mount_volume(profile, injector)
                mounted.append(injector)
        except BaseException as e:
            logger.error("Failed to mount '%s': %s", profile.name, e)
            await self._rollback(profile, mounted)
            self.tracker.release(profile.name)
            raise

    def report_mount_plan(self, profile: Profile) -> None:
        self.info(f"Mounting profile '{profile.name}'")
        for injector in volume_injectors(profile):
            self.info(f" cipherDir: {injector.cipher_dir}")
            self.info(f" mountDir: {injector.mount_dir}")
            self.info(f" passwordEntry: {injector.password_entry}")
            if not self.is_initialized(injector):
                self.warning(f" not initialized; run: cryptow init {profile.name}")
        self.dim(" [dry-run] No commands executed")

    async def _mount_volume(self, profile: Profile, injector: VolumeInjector) -> None:
        Path(injector.cipher_dir).mkdir(parents=True, exist_ok=True)
        Path(injector.mount_dir).mkdir(parents=True, exist_ok=True)

        secret = await self.secrets.fetch(injector.password_entry)

        tool = self.settings.mount_tool
        with passfile(secret) as path:
            try:
                result = await run_tool(
                    [*tool, "-q", "--passfile", path, injector.cipher_dir, injector.mount_dir]
                )
            except ExternalToolError as e:
                raise MountError(
                    f"Failed to mount '{profile.name}' at {injector.mount_dir}: {e}", tool=tool[0]
                )

        if not result.ok:
            raise MountError(
                f"Failed to mount '{profile.name}' at {injector.mount_dir}: {result.describe()}",
                tool=tool[0],
                returncode=result.returncode,
            )

        logger.info(
            "Mounted '%s' to %s (cipher: %s)", profile.name, injector.mount_dir, injector.cipher_dir
        )
        self.info(f"Mounted {injector.mount_dir}")

    async def _rollback(self, profile: Profile, mounted: list[VolumeInjector]) -> None:
        for injector in reversed(mounted):
            try:
                await self._unmount_volume(profile, injector, force=True)
            except CryptowError as e:
                logger.warning("Rollback of %s failed: %s", injector.mount_dir, e)
                self.warning(f"Rollback of {injector.mount_dir} failed: {e}")

    # -------------------------------------------------------------------------
    # Unmount
    # -------------------------------------------------------------------------

    async def unmount(self, profile: Profile, dry_run: bool = False, force: bool = False) -> None:
        """Unmount every volume of *profile* in reverse declared order.

        Unmounting a profile that holds no lock is a successful no-op.

        Without *force* the first failure is raised and the lock is kept.
        With *force* a failed unmount is retried lazily, every volume is
        processed, the lock is dropped, and then the first failure (if any)
        is raised.

        Raises:
            UnmountError: See above.
        """
        if not self.tracker.is_active(profile.name):
            if force and not dry_run:
                self.tracker.release(profile.name)
                logger.warning("Cleared stale state for '%s' (force unmount).", profile.name)
            self.info(f"Profile '{profile.name}' is not mounted.")
            return

        volumes = list(reversed(volume_injectors(profile)))

        if dry_run:
            for injector in volumes:
                self.info(f"Would unmount '{profile.name}' from {injector.mount_dir}")
            return

        failures: list[UnmountError] = []
        for injector in volumes:
            try:
                await self._unmount_volume(profile, injector, force=force)
            except UnmountError as e:
                logger.error("Failed to unmount '%s': %s", profile.name, e)
                if not force:
                    raise
                failures.append(e)

        self.tracker.release(profile.name)
        if failures:
            raise failures[0]

    async def _unmount_volume(self, profile: Profile, injector: VolumeInjector, force: bool) -> None:
        tool = self.settings.unmount_tool
        mount_dir = injector.mount_dir

        result = await self._run_unmount([*tool, mount_dir])
        if not result.ok:
            if not force:
                raise UnmountError(
                    f"Failed to unmount '{profile.name}' from {mount_dir}: {result.describe()}",
                    tool=tool[0],
                    returncode=result.returncode,
                )
            lazy = await self._run_unmount([*tool, "-l", mount_dir])
            if not lazy.ok:
                raise UnmountError(
                    f"Failed to unmount '{profile.name}' from {mount_dir} (lazy): {lazy.describe()}",
                    tool=tool[0],
                    returncode=lazy.returncode,
                )
            logger.warning(
                "Unmounted '%s' from %s using lazy umount due to previous failure.",
                profile.name, mount_dir,
            )

        logger.info("Unmounted '%s' from %s", profile.name, mount_dir)
        self.info(f"Unmounted {mount_dir}")

        try:
            os.rmdir(mount_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "Failed to remove mount directory '%s' after umount: %s", mount_dir, e
            )

    async def _run_unmount(self, argv: list[str]) -> ToolResult:
        try:
            return await run_tool(argv, capture=True)
        except ExternalToolError as e:
            raise UnmountError(str(e), tool=argv[0])

    # -------------------------------------------------------------------------
    # Initialise
    # -------------------------------------------------------------------------

    async def initialize(self, profile: Profile, generate: bool = False, dry_run: bool = False) -> None:
        """Create the gocryptfs store behind each volume of *profile*.

        Args:
            generate: Create a random passphrase and store it in ``pass``
                instead of reading an existing entry.

        Raises:
            PreconditionError: If the profile has no volumes, a store is
                already initialised, or (with *generate*) the pass entry
                already exists.
        """
        volumes = volume_injectors(profile)
        if not volumes:
            raise PreconditionError(f"Profile '{profile.name}' has no gocryptfs injectors to initialize.")

        for injector in volumes:
            if self.is_initialized(injector):
                raise PreconditionError(
                    f"Profile '{profile.name}' is already initialized "
                    f"({Path(injector.cipher_dir) / GOCRYPTFS_CONFIG} exists)."
                )

        if dry_run:
            for injector in volumes:
                source = "new generated secret" if generate else "existing secret"
                self.info(
                    f"Would initialize {injector.cipher_dir} using {source} "
                    f"in pass entry '{injector.password_entry}'"
                )
            return

        generated: dict[str, str] = {}
        tool = self.settings.mount_tool
        for injector in volumes:
            entry = injector.password_entry
            if not generate:
                secret = await self.secrets.fetch(entry)
            elif entry in generated:
                secret = generated[entry]
            else:
                secret = generate_secret()
                await self.secrets.insert(entry, secret)
                generated[entry] = secret

            Path(injector.cipher_dir).mkdir(parents=True, exist_ok=True)
            with passfile(secret) as path:
                result = await run_tool(
                    [*tool, "-init", "-q", "--passfile", path, injector.cipher_dir],
                    capture=True,
                )
            if not result.ok:
                raise ExternalToolError(
                    f"Failed to initialize '{profile.name}' at {injector.cipher_dir}: {result.describe()}",
                    tool=tool[0],
                    returncode=result.returncode,
                )

            logger.info("Initialized profile '%s' (cipher: %s)", profile.name, injector.cipher_dir)
            self.info(f"Initialized {injector.cipher_dir}")
