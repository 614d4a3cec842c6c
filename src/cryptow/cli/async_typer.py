"""Typer application that accepts ``async def`` commands."""

from __future__ import annotations

import asyncio
import inspect
from functools import wraps
from typing import Any, Callable

import typer


class AsyncTyper(typer.Typer):
    """A :class:`typer.Typer` whose commands may be coroutines.

    Coroutine commands are driven with :func:`asyncio.run`; plain
    functions are registered unchanged.
    """

    def command(self, *args: Any, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        decorator = super().command(*args, **kwargs)

        def register(fn: Callable[..., Any]) -> Callable[..., Any]:
            if inspect.iscoroutinefunction(fn):
                @wraps(fn)
                def sync_fn(*fn_args: Any, **fn_kwargs: Any) -> Any:
                    return asyncio.run(fn(*fn_args, **fn_kwargs))

                decorator(sync_fn)
            else:
                decorator(fn)
            return fn

        return register
