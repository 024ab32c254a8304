"""Terminal output helpers.

All engine output goes through here so every line carries the same prefix and
colour conventions: green for lifecycle, yellow for scripts and warnings,
cyan for writes and red for errors.
"""

from __future__ import annotations

import click

PREFIX = "@ "


def log(message: str, fg: str | None = None, bold: bool = False) -> None:
    """Print a message to stdout.

    Args:
        message: Text to print.
        fg: Optional click colour name.
        bold: Render the message in bold.
    """
    click.echo(PREFIX + click.style(message, fg=fg, bold=bold))


def log_error(message: str, fg: str | None = "red", bold: bool = False) -> None:
    """Print a message to stderr, red by default."""
    click.echo(PREFIX + click.style(message, fg=fg, bold=bold), err=True)


def warn(message: str) -> None:
    log(message, fg="yellow")


def script_log(name: str, *args: object) -> None:
    """Print output from a generate script, tagged with its template name."""
    text = " ".join(str(arg) for arg in args)
    click.echo(PREFIX + click.style(f"[{name}]", fg="yellow") + " " + text)
