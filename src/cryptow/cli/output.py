"""Console output helpers for the CLI.

Messages are rendered as plain text so that paths and profile names
containing ``[brackets]`` are never mistaken for rich markup; only
:meth:`Output.hint` interprets markup.
"""

from __future__ import annotations

from rich.console import Console
from rich.text import Text


class Output:
    """Styled stdout/stderr writer; satisfies :class:`cryptow.reporter.Reporter`."""

    def __init__(self) -> None:
        self.console = Console(highlight=False, soft_wrap=True)
        self.err_console = Console(stderr=True, highlight=False, soft_wrap=True)

    def info(self, msg: str) -> None:
        self.console.print(Text(msg))

    def dim(self, msg: str) -> None:
        self.console.print(Text(msg, style="dim"))

    def success(self, msg: str) -> None:
        self.console.print(Text(msg, style="green"))

    def warning(self, msg: str) -> None:
        self.err_console.print(Text(msg, style="yellow"))

    def error(self, msg: str) -> None:
        self.err_console.print(Text(msg, style="bold red"))

    def hint(self, msg: str) -> None:
        self.err_console.print(msg, style="dim")

    def raw(self, msg: str) -> None:
        """Print *msg* untouched (machine-readable output)."""
        self.console.print(msg, markup=False, highlight=False, soft_wrap=True)


out = Output()
