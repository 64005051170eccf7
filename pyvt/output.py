"""Output formatting for the CLI."""

import json
import sys
from typing import Any, Optional

import click
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table


def is_terminal(stream: Any = None) -> bool:
    """Return True when ``stream`` (stdout by default) is a TTY."""
    stream = stream if stream is not None else sys.stdout
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


class OutputFormatter:
    """Renders command results for a terminal or a pipe.

    On a terminal, tables are drawn with rich and code/JSON is syntax
    highlighted. When stdout is redirected, tables become tab-separated
    lines and JSON is printed compactly so output can be piped into other
    tools.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        terminal: Optional[bool] = None,
    ):
        """Initialize the formatter.

        Args:
            json_output: Print machine-readable JSON instead of tables
            quiet: Suppress informational messages
            terminal: Force TTY rendering on or off (detected when None)
        """
        self.json_output = json_output
        self.quiet = quiet
        self._terminal = terminal

    @property
    def terminal(self) -> bool:
        if self._terminal is not None:
            return self._terminal
        return is_terminal()

    def _console(self) -> Console:
        # Created per call so that redirected streams (CliRunner) are honoured
        return Console(file=sys.stdout, soft_wrap=True)

    def print(self, message: str = "") -> None:
        """Print a plain line to stdout."""
        click.echo(message)

    def info(self, message: str) -> None:
        """Print an informational message unless quiet."""
        if not self.quiet:
            click.echo(message)

    def success(self, message: str) -> None:
        """Print a success message unless quiet."""
        if not self.quiet:
            click.secho(message, fg="green")

    def warning(self, message: str) -> None:
        click.secho(message, fg="yellow", err=True)

    def error(self, message: str) -> None:
        click.secho(f"Error: {message}", fg="red", err=True)

    def output_json(self, data: Any) -> None:
        """Print data as JSON, pretty and highlighted on a terminal."""
        if self.terminal:
            text = json.dumps(data, indent=2, ensure_ascii=False)
            self._console().print(Syntax(text, "json", background_color="default"))
        else:
            click.echo(json.dumps(data, ensure_ascii=False))

    def print_code(self, code: str, language: str = "tsx") -> None:
        """Print source code, highlighted on a terminal."""
        if self.terminal:
            self._console().print(
                Syntax(code, language, background_color="default")
            )
        else:
            click.echo(code, nl=not code.endswith("\n"))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Print rows as a table on a terminal, tab-separated otherwise.

        Args:
            rows: One dict per row
            columns: Keys to display, in order
            headers: Optional display names for the columns
        """
        if not self.terminal:
            for row in rows:
                click.echo("\t".join(_cell(row.get(col)) for col in columns))
            return

        headers = headers or {}
        table = Table(show_header=True, header_style="bold")
        for col in columns:
            table.add_column(headers.get(col, col))
        for row in rows:
            table.add_row(*(_cell(row.get(col)) for col in columns))
        self._console().print(table)

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a titled list of key/value pairs."""
        if self.quiet:
            return
        click.secho(title, bold=True)
        width = max((len(key) for key, _ in items), default=0)
        for key, value in items:
            click.echo(f"  {key + ':':<{width + 1}} {value}")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
