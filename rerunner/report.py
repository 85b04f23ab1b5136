"""Run reports: timing block printed after each completed run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from rerunner.job import Outcome

logger = logging.getLogger(__name__)

DELIMITER = "-" * 40
TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S %z"


@dataclass(frozen=True, slots=True)
class RunReport:
    """Timing and metadata for one finished run. Consumed once, then dropped."""

    started_at: datetime
    elapsed: timedelta
    directory: Path | None
    command_label: str
    status: Outcome = Outcome.SUCCESS
    returncode: int | None = 0

    @property
    def elapsed_ms(self) -> int:
        return round(self.elapsed.total_seconds() * 1000)


def _same_directory(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b


def format_report(report: RunReport, *, start_directory: Path) -> list[str]:
    """Render *report* as plain lines.

    The directory line only appears when the run happened somewhere other
    than the directory the supervisor was started in.
    """
    started = report.started_at
    if started.tzinfo is None:
        started = started.astimezone()
    lines = [DELIMITER, f"Started: {started.strftime(TIMESTAMP_FMT)}"]
    if report.directory is not None and not _same_directory(report.directory, start_directory):
        lines.append(f"Directory: {report.directory}")
    lines.append(f"Command: {report.command_label}")
    if report.status is Outcome.FAILURE:
        lines.append(f"Status: failed (exit code {report.returncode})")
    lines.append(f"Elapsed: {report.elapsed_ms} ms")
    lines.append(DELIMITER)
    return lines


class ReportEmitter:
    """Writes the watching banner, run reports and run failures to the console.

    Quiet mode suppresses everything this class prints; there is no partial
    output. Diagnostics still go through logging.
    """

    def __init__(
        self,
        console: Console,
        *,
        start_directory: Path,
        quiet: bool = False,
        clear_screen: bool = False,
    ) -> None:
        self._console = console
        self._start_directory = start_directory
        self._quiet = quiet
        self._clear_screen = clear_screen

    @property
    def quiet(self) -> bool:
        return self._quiet

    def watching(self, path: Path) -> None:
        if self._quiet:
            return
        self._console.print(f"Watching: [bold]{escape(str(path))}[/bold]")

    def run_starting(self) -> None:
        """Clear the screen before a run when configured."""
        if self._quiet or not self._clear_screen:
            return
        self._console.clear()

    def emit(self, report: RunReport) -> None:
        if self._quiet:
            return
        style = "red" if report.status is Outcome.FAILURE else "green"
        lines = format_report(report, start_directory=self._start_directory)
        for line in lines:
            if line == DELIMITER:
                self._console.print(f"[dim]{line}[/dim]")
            elif line.startswith(("Status:", "Elapsed:")):
                self._console.print(f"[{style}]{escape(line)}[/{style}]")
            else:
                self._console.print(escape(line))

    def spawn_failed(self, label: str, error: Exception) -> None:
        if self._quiet:
            return
        self._console.print(
            f"[bold red]Run failed:[/bold red] {escape(label)}: {escape(str(error))}"
        )
