# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Exception types raised by cryptow.

Every error carries a single-line, human-readable message; the CLI prints
``str(error)`` verbatim and exits with status 1.
"""

from __future__ import annotations


class CryptowError(Exception):
    """Base class for all cryptow failures."""


class ConfigError(CryptowError):
    """The environment or the profiles file is unusable."""


class ProfileNotFoundError(CryptowError):
    """No profile with the requested name is configured."""


class ProfileValidationError(CryptowError):
    """A profile or one of its injectors is malformed."""


class AlreadyLockedError(CryptowError):
    """Another session holds the profile's lock marker."""

    def __init__(self, profile: str):
        super().__init__(
            f"Profile '{profile}' appears mounted (lock exists). Use --force to override."
        )
        self.profile = profile


class PreconditionError(CryptowError):
    """A static precondition does not hold (e.g. uninitialised cipher store)."""


class CommandTimeoutError(CryptowError):
    """The child command outlived its ``--timeout``."""

    def __init__(self, timeout: float):
        super().__init__(f"Command timed out after {timeout:g}s")
        self.timeout = timeout


class ExternalToolError(CryptowError):
    """An external tool could not be run or exited nonzero."""

    def __init__(self, message: str, tool: str | None = None, returncode: int | None = None):
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode


class MountError(ExternalToolError):
    """The encrypted-mount tool failed."""


class UnmountError(ExternalToolError):
    """The unmount tool failed."""


class SecretNotFoundError(ExternalToolError):
    """The secret store has no usable value for an entry."""
