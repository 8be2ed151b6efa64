"""Rich output helpers for the covers CLI.

The CLI callback installs one Console; commands print through the helpers
here so cover URLs, proxy statuses and sweep progress render the same way
everywhere.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.status import Status
from rich.table import Table

from album_covers.resolver import DEFAULT_COVER

_console: Console | None = None

_STATUS_STYLES = {
    200: ("green", "200 OK"),
    304: ("cyan", "304 Not Modified"),
    404: ("red", "404 Not Found"),
}


def get_console() -> Console:
    """Return the console installed by the CLI callback.

    Raises:
        RuntimeError: If no console was installed
    """
    if _console is None:
        raise RuntimeError("Console not initialized. Call set_console() first.")
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console


@contextmanager
def sweep_progress(description: str = "Resolving covers...") -> Iterator[Any]:
    """Progress bar driven by a sweep's (done, total) callback.

    Yields the callback to hand to ``resolve_missing_covers``; the total is
    unknown until the store has been queried.
    """
    columns = [
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
    ]
    with Progress(*columns, transient=True, console=get_console()) as progress:
        task = progress.add_task(description, total=None)

        def advance(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        yield advance


@contextmanager
def status(message: str) -> Iterator[Status]:
    with get_console().status(message, spinner="dots") as st:
        yield st


def make_table(title: str | None, columns: list[str]) -> Table:
    table = Table(title=title, header_style="bold")
    for column in columns:
        table.add_column(column)
    return table


def cover_label(url: str | None) -> str:
    """Short display form of a stored cover URL."""
    if not url:
        return "(none)"
    if url == DEFAULT_COVER:
        return "(default)"
    return url


def status_label(code: int) -> str:
    """Rich markup for a proxy status code."""
    style, text = _STATUS_STYLES.get(code, ("yellow", str(code)))
    return f"[{style}]{text}[/{style}]"


def print(*args: Any, **kwargs: Any) -> None:
    """Print to the global console."""
    get_console().print(*args, **kwargs)


def print_error(message: str) -> None:
    get_console().print(f"[red]Error: {message}[/red]")


def print_warning(message: str) -> None:
    get_console().print(f"[yellow]Warning: {message}[/yellow]")


def print_success(message: str) -> None:
    get_console().print(f"[green]{message}[/green]")


## Tests


def test_cover_label():
    assert cover_label(None) == "(none)"
    assert cover_label("") == "(none)"
    assert cover_label(DEFAULT_COVER) == "(default)"
    assert cover_label("https://img.example/a.jpg") == "https://img.example/a.jpg"


def test_status_label():
    assert status_label(304) == "[cyan]304 Not Modified[/cyan]"
    assert status_label(418) == "[yellow]418[/yellow]"
