"""Output rendering for the alpack CLI.

File: src/alpack/ui/render.py

Purpose
- Provide a thin rendering layer for CLI output on top of ``rich``.
- Respect the ``NO_COLOR`` environment variable and the ``--no-color`` flag.
- Show download/extraction progress bars on stderr when it is a terminal.

Functional requirements
- Stdout carries only command results; progress and diagnostics go to stderr.
- Output is plain, uncoloured text whenever stdout is not a terminal.
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    MofNCompleteColumn,
    Progress,
    Task,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.text import Text


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class SetupProgress:
    """Progress callbacks for the download and extraction phases of setup."""

    def __init__(self, progress: Progress | None) -> None:
        self._progress = progress
        self._download: TaskID | None = None
        self._extract: TaskID | None = None

    def download(self, done: int, total: int | None) -> None:
        if self._progress is None:
            return
        if self._download is None:
            self._download = self._progress.add_task("download", total=total, kind="bytes")
        self._progress.update(self._download, completed=done, total=total)

    def extract(self, done: int, total: int) -> None:
        if self._progress is None:
            return
        if self._extract is None:
            self._extract = self._progress.add_task("extract", total=total, kind="members")
        self._progress.update(self._extract, completed=done, total=total)


class CLIRenderer:
    """CLI output renderer.

    Produces clean, deterministic plain-text output when piped.
    """

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        color = _color_allowed(no_color)
        self._out = Console(no_color=not color, highlight=False, soft_wrap=True)
        self._err = Console(stderr=True, no_color=not color, highlight=False, soft_wrap=True)

    def heading(self, text: str) -> None:
        self._out.print(Text(text, style="bold"))

    def kv(self, key: str, value: object) -> None:
        self._out.print(Text.assemble((f"{key}: ", "bold"), str(value)))

    def text(self, line: str) -> None:
        self._out.print(Text(line))

    def section(self, title: str) -> None:
        self._out.print()
        self._out.print(Text(title, style="bold"))

    def warning(self, text: str) -> None:
        self._err.print(Text.assemble(("warning: ", "yellow"), text))

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._out.print(Text(f"  {prefix}{entry}"))

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        """Print a padded column table; nothing is printed for no rows."""

        if not rows:
            return

        widths = [len(header) for header in headers]
        for row in rows:
            for index, cell in enumerate(row[: len(headers)]):
                widths[index] = max(widths[index], len(str(cell)))

        def pad(cells: Sequence[str]) -> str:
            return "  ".join(
                str(cells[i] if i < len(cells) else "").ljust(widths[i])
                for i in range(len(headers))
            ).rstrip()

        self._out.print(Text(pad(headers), style="bold"))
        for row in rows:
            self._out.print(Text(pad(row)))

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            self._out.print(Text(f"  $ {step}"))

    def ok(self, label: str) -> None:
        self._out.print(Text.assemble(("  OK    ", "green"), label))

    def fail(self, label: str) -> None:
        self._out.print(Text.assemble(("  FAIL  ", "red"), label))

    @contextmanager
    def setup_progress(self) -> Iterator[SetupProgress]:
        """Progress bars on stderr; callbacks are no-ops off a terminal."""

        if not self._err.is_terminal:
            yield SetupProgress(None)
            return

        progress = Progress(
            TextColumn("{task.description:>8}"),
            BarColumn(),
            _AmountColumn(),
            TimeRemainingColumn(),
            console=self._err,
            transient=True,
        )
        with progress:
            yield SetupProgress(progress)


class _AmountColumn(MofNCompleteColumn):
    """Byte sizes for download tasks, member counts for extraction tasks."""

    def __init__(self) -> None:
        super().__init__()
        self._bytes = DownloadColumn()
        self._speed = TransferSpeedColumn()

    def render(self, task: Task) -> Text:
        if task.fields.get("kind") == "bytes":
            return Text.assemble(self._bytes.render(task), " ", self._speed.render(task))
        return super().render(task)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "SetupProgress", "create_renderer"]
