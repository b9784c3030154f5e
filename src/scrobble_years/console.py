"""Rich output for scrobble-years commands.

The CLI callback installs one console; commands print through it so JSON
output and log lines stay on separate streams.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

_console: Console | None = None


def get_console() -> Console:
    """Return the console installed by the CLI.

    Raises:
        RuntimeError: If no console was installed yet
    """
    if _console is None:
        raise RuntimeError("Console not initialized. Call set_console() first.")
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console


@contextmanager
def resolution_progress(
    description: str = "Resolving release years...",
) -> Iterator[Callable[[int, int], None]]:
    """Show a progress bar for a resolution batch.

    The total is unknown until the resolver has read the batch, so the bar
    starts as a spinner and takes the total from the first update.

    Yields:
        Callback taking ``(done, total)``, shaped like the resolver's
        progress callback
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        transient=True,
        console=get_console(),
    ) as progress:
        task = progress.add_task(description, total=None)

        def _update(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        yield _update


def year_histogram_table(rows: Sequence[dict[str, Any]]) -> Table:
    """Table of plays per release year, in the order given."""
    table = Table(title="Plays by release year")
    table.add_column("Release year", justify="right")
    table.add_column("Plays", justify="right")
    for row in rows:
        table.add_row(str(row["release_year"]), str(row["plays"]))
    return table


def print(*args: Any, **kwargs: Any) -> None:
    get_console().print(*args, **kwargs)


def print_error(message: str) -> None:
    get_console().print(f"[red]Error: {message}[/red]")


def print_warning(message: str) -> None:
    get_console().print(f"[yellow]Warning: {message}[/yellow]")


def print_success(message: str) -> None:
    get_console().print(f"[green]{message}[/green]")


## Tests


@contextmanager
def _recording_console() -> Iterator[Console]:
    global _console
    saved = _console
    console = Console(record=True, width=80, color_system=None)
    set_console(console)
    try:
        yield console
    finally:
        _console = saved


def test_get_console_requires_set():
    global _console
    saved = _console
    _console = None
    try:
        get_console()
        raise AssertionError("Should have raised RuntimeError")
    except RuntimeError as e:
        assert "set_console" in str(e)
    finally:
        _console = saved


def test_print_helpers_write_to_console():
    with _recording_console() as console:
        print_error("catalog unreachable")
        print_warning("no scrobbles")
        print_success("done")
        text = console.export_text()

    assert "Error: catalog unreachable" in text
    assert "Warning: no scrobbles" in text
    assert "done" in text


def test_year_histogram_table_keeps_row_order():
    table = year_histogram_table(
        [{"release_year": 2014, "plays": 3}, {"release_year": 1969, "plays": 2}]
    )

    with _recording_console() as console:
        console.print(table)
        text = console.export_text()

    assert "Plays by release year" in text
    assert text.index("2014") < text.index("1969")


def test_resolution_progress_accepts_updates():
    with _recording_console():
        with resolution_progress() as update:
            update(0, 3)
            update(3, 3)
