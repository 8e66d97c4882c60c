"""Plain-text rendering for nexus-verify reports, results and unit listings.

File: src/nexus_verify/ui/render.py
Last updated: 2026-10-19

Purpose
- Turn reports, single-unit results and the unit catalog into terminal text.

Notes
- Status words are colored only when stdout is a TTY, ``NO_COLOR`` is unset and
  ``--no-color`` was not given. Column widths are computed on the uncolored text.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final, TextIO

from nexus_verify.domain.models import ReportStatus, UnitStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from nexus_verify.domain.models import (
        AutoFixSummary,
        RunResult,
        UnitSpec,
        VerificationReport,
    )

_RESET: Final[str] = "\033[0m"
_GREEN: Final[str] = "\033[32m"
_YELLOW: Final[str] = "\033[33m"
_RED: Final[str] = "\033[31m"
_DIM: Final[str] = "\033[2m"
_PALETTE: Final[dict[str, str]] = {
    ReportStatus.PASS: _GREEN,
    ReportStatus.WARNING: _YELLOW,
    ReportStatus.FAIL: _RED,
    UnitStatus.SUCCESS: _GREEN,
    UnitStatus.WARNING: _YELLOW,
    UnitStatus.FAILED: _RED,
    UnitStatus.TIMED_OUT: _RED,
    UnitStatus.SKIPPED: _DIM,
}
_INDENT: Final[str] = "  "


def _wants_color(disabled: bool, stream: TextIO) -> bool:
    if disabled or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class CLIRenderer:
    """Writes plain lines to stdout; ``verbose`` unlocks the per-issue detail sections."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _wants_color(no_color, sys.stdout)

    def _emit(self, line: str = "") -> None:
        print(line)

    def heading(self, text: str) -> None:
        self._emit(text)

    def text(self, line: str) -> None:
        self._emit(line)

    def kv(self, key: str, value: object) -> None:
        self._emit(f"{key}: {value}")

    def section(self, title: str) -> None:
        self._emit()
        self._emit(title)

    def items(self, entries: Iterable[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._emit(f"{_INDENT}{prefix}{entry}")

    def status(self, value: str) -> str:
        code = _PALETTE.get(value) if self._color else None
        return value if code is None else f"{code}{value}{_RESET}"

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
        status_column: int | None = None,
    ) -> None:
        """Aligned columns; ``status_column`` cells are colored after padding."""
        if not rows:
            return
        grid = [list(headers), *([str(cell) for cell in row] for row in rows)]
        widths = [
            max(len(line[index]) if index < len(line) else 0 for line in grid)
            for index in range(len(headers))
        ]

        def line_for(cells: Sequence[str], *, colored: bool) -> str:
            out = []
            for index, width in enumerate(widths):
                cell = cells[index] if index < len(cells) else ""
                padded = cell.ljust(width)
                if colored and index == status_column:
                    padded = self.status(cell) + " " * (width - len(cell))
                out.append(padded)
            return _INDENT + "  ".join(out).rstrip()

        if title:
            self.section(title)
        self._emit(line_for(grid[0], colored=False))
        self._emit(_INDENT + "  ".join("-" * width for width in widths))
        for cells in grid[1:]:
            self._emit(line_for(cells, colored=True))

    def next_steps(self, commands: Sequence[str]) -> None:
        if commands:
            self.section("Next steps:")
            for command in commands:
                self._emit(f"{_INDENT}$ {command}")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


def render_report(renderer: CLIRenderer, report: VerificationReport) -> None:
    summary = report.summary
    renderer.heading(f"Verification report {report.report_id}")
    renderer.kv("Status", renderer.status(report.status.value))
    renderer.kv("Overall score", f"{report.overall_score}/100")
    renderer.kv(
        "Units",
        f"total={summary.total_units} executed={summary.executed_units} "
        f"skipped={summary.skipped_units} failed={summary.failed_units} "
        f"timed_out={summary.timed_out_units}",
    )
    renderer.kv(
        "Issues",
        f"critical={summary.critical} high={summary.high} medium={summary.medium} "
        f"low={summary.low} info={summary.info} auto_fixable={summary.auto_fixable}",
    )
    renderer.kv("Duration", f"{report.total_duration_ms}ms")
    if report.cancelled:
        renderer.kv("Cancelled", "true")

    renderer.table(
        ("Unit", "Status", "Score", "Attempts", "Wave", "Duration", "Issues"),
        [_result_row(item) for item in report.results],
        title="Results:",
        status_column=1,
    )

    skipped = [item for item in report.results if item.skip_reason is not None]
    if skipped and renderer.verbose:
        renderer.section("Skipped:")
        renderer.items([f"{item.unit_id}: {item.skip_reason}" for item in skipped])

    if renderer.verbose and summary.total_issues:
        renderer.section("Issues:")
        renderer.items(
            [
                f"[{issue.severity.value}] {item.unit_id}: {issue.message}"
                for item in report.results
                for issue in item.issues
            ]
        )

    if report.recommendations:
        renderer.section("Recommendations:")
        renderer.items(list(report.recommendations))


def render_result(renderer: CLIRenderer, result: RunResult) -> None:
    renderer.heading(f"Unit {result.unit_id} ({result.name})")
    renderer.kv("Status", renderer.status(result.status.value))
    renderer.kv("Score", f"{result.score}/100")
    renderer.kv("Attempts", result.attempts)
    renderer.kv("Duration", f"{result.duration_ms}ms")
    if result.error:
        renderer.kv("Error", result.error)
    if result.issues:
        renderer.section("Issues:")
        renderer.items(
            [f"[{issue.severity.value}] {issue.message}" for issue in result.issues]
        )
    if result.recommendations:
        renderer.section("Recommendations:")
        renderer.items(list(result.recommendations))


def render_units(
    renderer: CLIRenderer,
    specs: Sequence[UnitSpec],
    waves: Sequence[Sequence[UnitSpec]] | None = None,
) -> None:
    renderer.table(
        ("Unit", "Priority", "Timeout", "Retries", "Depends on", "Enabled"),
        [
            (
                spec.unit_id,
                str(spec.priority),
                f"{spec.timeout_seconds:g}s",
                str(spec.max_retries),
                ", ".join(spec.depends_on) or "-",
                "yes" if spec.enabled else "no",
            )
            for spec in specs
        ],
        title=f"Units ({len(specs)}):",
    )
    if waves is not None:
        renderer.section("Waves:")
        for index, wave in enumerate(waves):
            renderer.text(f"  {index}: {', '.join(spec.unit_id for spec in wave)}")


def render_auto_fix(renderer: CLIRenderer, summary: AutoFixSummary) -> None:
    renderer.section("Auto-fix:")
    renderer.kv(
        "  Issues",
        f"attempted={summary.attempted} fixed={summary.fixed} failed={summary.failed} "
        f"unsupported={summary.unsupported}",
    )
    if summary.errors:
        renderer.items(list(summary.errors))


def _result_row(item: RunResult) -> tuple[str, ...]:
    return (
        item.unit_id,
        item.status.value,
        str(item.score) if item.is_scored else "-",
        str(item.attempts),
        str(item.wave_index),
        f"{item.duration_ms}ms",
        str(len(item.issues)),
    )


__all__ = [
    "CLIRenderer",
    "create_renderer",
    "render_auto_fix",
    "render_report",
    "render_result",
    "render_units",
]
