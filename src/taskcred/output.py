"""Terminal output for the ``taskcred`` CLI.

Data and diagnostics never share a stream:

* **stdout** carries the result of a command (a status record or a table)
  so it can be piped and parsed.
* **stderr** carries everything said *to the user*: progress, warnings,
  errors, next-step hints and authorization URLs.

Rich styling is used when stdout is an interactive terminal and colour has
not been turned off by ``--no-color``, ``NO_COLOR`` or ``TERM=dumb``.

:class:`OutputManager` is built once by :func:`~taskcred.app.main_callback`
and installed with :func:`set_output`; commands reach it through
:func:`get_output` or the module-level :func:`info`, :func:`warning` and
friends. Library modules (stores, discovery, flow) log through
:mod:`logging` instead and never write here.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormat(str, Enum):
    """How command results are rendered on stdout.

    ``AUTO`` becomes ``RICH`` on a colour-capable TTY and ``PLAIN`` anywhere
    else.
    """

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Route command results to stdout and user-facing messages to stderr.

    Args:
        format: Rendering for stdout. ``AUTO`` is resolved at construction.
        no_color: Disable colour and Rich markup on both streams.
        quiet: Drop informational messages (info, success, suggestions).
            Warnings, errors and URLs are always shown.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def stderr_console(self) -> Console:
        """The Rich console bound to stderr, shared with the logging handler."""
        return self._stderr

    # -- stdout ---------------------------------------------------------

    def _emit(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def format_record(self, data: dict[str, Any]) -> None:
        """Print a flat record such as an auth status.

        JSON mode prints the dict, plain mode prints ``key<TAB>value``
        lines, and Rich mode prints a borderless two-column table. ``None``
        values render as empty cells.
        """
        if self._format == OutputFormat.JSON:
            self._emit(json.dumps(data, indent=2, ensure_ascii=False, default=str))
            return
        cells = [(key, "" if value is None else str(value)) for key, value in data.items()]
        if self._format == OutputFormat.PLAIN:
            for key, value in cells:
                self._emit(f"{key}\t{value}")
            return
        table = Table(show_header=False, box=None)
        table.add_column(style="bold cyan")
        table.add_column()
        for key, value in cells:
            table.add_row(key, value)
        self._stdout.print(table)

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print diagnostic rows.

        JSON mode prints a list of objects keyed by *headers*; plain mode
        prints a tab-separated header line followed by one line per row.
        *title* is only shown in Rich mode.
        """
        if self._format == OutputFormat.JSON:
            records = [dict(zip(headers, row)) for row in rows]
            self._emit(json.dumps(records, indent=2, ensure_ascii=False))
        elif self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self._emit("\t".join(line))
        else:
            table = Table(title=title, show_header=True, header_style="bold cyan")
            for header in headers:
                table.add_column(header)
            for row in rows:
                table.add_row(*row)
            self._stdout.print(table)

    # -- stderr ---------------------------------------------------------

    def _say(self, message: str, markup: str, optional: bool = True) -> None:
        if optional and self._quiet:
            return
        if self._no_color:
            print(message, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)

    def info(self, message: str) -> None:
        self._say(message, message)

    def success(self, message: str) -> None:
        self._say(message, f"[green]{message}[/green]")

    def suggest(self, message: str) -> None:
        """Print a next-step hint, prefixed with an arrow."""
        hint = f"→ {message}"
        self._say(hint, f"[dim]{hint}[/dim]")

    def warning(self, message: str) -> None:
        self._say(
            f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}", optional=False
        )

    def error(self, message: str) -> None:
        self._say(f"Error: {message}", f"[bold red]Error:[/bold red] {message}", optional=False)

    def url(self, link: str) -> None:
        """Print *link* on a line of its own, unwrapped and never suppressed.

        The user cannot finish authorization without the URL, so ``--quiet``
        does not apply.
        """
        if self._no_color:
            print(link, file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[link={link}]{link}[/link]", soft_wrap=True)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set to anything or ``TERM`` is ``dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Process-wide instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating an ``AUTO`` one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager so the next :func:`get_output` builds a fresh one."""
    global _output
    _output = None


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)
