"""Decorators for CLI commands."""

from functools import wraps
from typing import Callable, Coroutine, TypeVar

import typer

from ..errors import CryptowError
from ..tools import missing_tools
from .output import out

R = TypeVar("R")


def handle_errors(func: Callable[..., Coroutine[None, None, R]]) -> Callable[..., Coroutine[None, None, R]]:
    """Decorator that reports :class:`CryptowError` as a one-line failure."""
    @wraps(func)
    async def wrapper(*args: object, **kwargs: object) -> R:
        try:
            return await func(*args, **kwargs)
        except CryptowError as e:
            out.error(f"Error: {e}")
            raise typer.Exit(1)
    return wrapper


def require_tools(*fields: str) -> Callable[
    [Callable[..., Coroutine[None, None, R]]], Callable[..., Coroutine[None, None, R]]
]:
    """Decorator that checks the named Settings tools are on PATH.

    The check is skipped for ``--dry-run`` invocations, which never call
    external tools.
    """
    def decorator(func: Callable[..., Coroutine[None, None, R]]) -> Callable[..., Coroutine[None, None, R]]:
        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> R:
            ctx = kwargs.get("ctx")
            if not kwargs.get("dry_run") and isinstance(ctx, typer.Context):
                settings = ctx.obj.settings
                missing = missing_tools(*(getattr(settings, f) for f in fields))
                if missing:
                    out.error(f"Required tool(s) not found: {', '.join(missing)}")
                    out.hint("Install them or point [bold]CRYPTOW_GOCRYPTFS[/bold], "
                             "[bold]CRYPTOW_UMOUNT[/bold] or [bold]CRYPTOW_PASS[/bold] at them.")
                    raise typer.Exit(1)
            return await func(*args, **kwargs)
        return wrapper
    return decorator
