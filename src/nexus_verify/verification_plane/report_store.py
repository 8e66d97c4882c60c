"""
nexus-verify — on-disk report persistence

File: src/nexus_verify/verification_plane/report_store.py
Last updated: 2026-10-19

Purpose
- Keep the latest report across processes so ``nexus-verify status`` can show it.

Functional requirements
- ``<state_dir>/latest-report.json`` always holds the most recently saved report.
- ``<state_dir>/reports/<report_id>.json`` keeps one file per report.
- All writes are atomic (temp file + replace).
"""

from __future__ import annotations

from pathlib import Path
from typing import Final

from nexus_verify.domain.ids import validate_report_id
from nexus_verify.domain.models import VerificationReport
from nexus_verify.utils.fs import atomic_write, ensure_parent_dir

LATEST_REPORT_FILENAME: Final[str] = "latest-report.json"
REPORTS_DIRNAME: Final[str] = "reports"


class ReportStoreError(RuntimeError):
    """Raised when a persisted report exists but cannot be read back."""


class ReportStore:
    def __init__(self, state_dir: str | Path) -> None:
        self._state_dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def latest_path(self) -> Path:
        return self._state_dir / LATEST_REPORT_FILENAME

    @property
    def reports_dir(self) -> Path:
        return self._state_dir / REPORTS_DIRNAME

    def save(self, report: VerificationReport) -> Path:
        """Persist ``report`` and point ``latest-report.json`` at it; returns the archive path."""
        archive_path = write_report(report, self.reports_dir / f"{report.report_id}.json")
        write_report(report, self.latest_path)
        return archive_path

    def load_latest(self) -> VerificationReport | None:
        if not self.latest_path.exists():
            return None
        return _read_report(self.latest_path)

    def load(self, report_id: str) -> VerificationReport:
        validate_report_id(report_id)
        path = self.reports_dir / f"{report_id}.json"
        if not path.exists():
            raise ReportStoreError(f"report {report_id!r} not found under {self.reports_dir}")
        return _read_report(path)

    def report_ids(self) -> tuple[str, ...]:
        if not self.reports_dir.is_dir():
            return ()
        return tuple(sorted(path.stem for path in self.reports_dir.glob("*.json")))


def write_report(report: VerificationReport, path: str | Path) -> Path:
    """Atomically write ``report`` as indented JSON, creating parent directories."""
    target = ensure_parent_dir(path)
    atomic_write(target, report.to_json(indent=2) + "\n")
    return target


def _read_report(path: Path) -> VerificationReport:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ReportStoreError(f"unable to read report {path}: {exc}") from exc
    try:
        return VerificationReport.from_json(raw)
    except ValueError as exc:
        raise ReportStoreError(f"corrupt report {path}: {exc}") from exc


__all__ = [
    "LATEST_REPORT_FILENAME",
    "REPORTS_DIRNAME",
    "ReportStore",
    "ReportStoreError",
    "write_report",
]
