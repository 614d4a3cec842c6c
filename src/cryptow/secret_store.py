# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Secret retrieval from the ``pass`` password store.

Every lookup shells out to ``pass``; nothing is cached, so a rotated secret
is picked up by the next invocation.
"""

from __future__ import annotations

import logging
import secrets

from .config import Settings
from .errors import ExternalToolError, PreconditionError, SecretNotFoundError
from .tools import run_tool

logger = logging.getLogger(__name__)

GENERATED_SECRET_BYTES = 32


def generate_secret() -> str:
    """Return a fresh random passphrase."""
    return secrets.token_urlsafe(GENERATED_SECRET_BYTES)


class SecretStore:
    """Thin async wrapper around the ``pass`` CLI."""

    def __init__(self, settings: Settings):
        self._tool = settings.pass_tool

    async def fetch(self, entry: str) -> str:
        """Return the value of *entry* without trailing whitespace.

        Raises:
            SecretNotFoundError: If ``pass`` fails or returns nothing.
        """
        try:
            result = await run_tool([*self._tool, "show", entry], capture=True)
        except ExternalToolError as e:
            raise SecretNotFoundError(
                f"No secret retrieved from pass for '{entry}': {e}", tool=e.tool
            )

        secret = result.stdout.rstrip()
        if not result.ok or not secret:
            logger.debug("pass show %s failed: %s", entry, result.describe())
            raise SecretNotFoundError(
                f"No secret retrieved from pass for '{entry}'.",
                tool=self._tool[0],
                returncode=result.returncode,
            )
        return secret

    async def exists(self, entry: str) -> bool:
        result = await run_tool([*self._tool, "show", entry], capture=True)
        return result.ok

    async def insert(self, entry: str, secret: str, overwrite: bool = False) -> None:
        """Store *secret* under *entry*.

        Raises:
            PreconditionError: If the entry exists and *overwrite* is false.
            ExternalToolError: If ``pass insert`` fails.
        """
        if not overwrite and await self.exists(entry):
            raise PreconditionError(f"Refusing to overwrite existing pass entry '{entry}'.")

        argv = [*self._tool, "insert", "--multiline"]
        if overwrite:
            argv.append("--force")
        argv.append(entry)

        result = await run_tool(argv, input=secret + "\n", capture=True)
        if not result.ok:
            raise ExternalToolError(
                f"Failed to store pass entry '{entry}': {result.describe()}",
                tool=self._tool[0],
                returncode=result.returncode,
            )
        logger.info("Stored new secret in pass entry '%s'", entry)
