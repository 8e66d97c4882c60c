"""
nexus-verify — unit tests for report persistence

File: tests/unit/verification_plane/test_report_store.py
Last updated: 2026-10-19

Purpose
- Validate that saved reports round-trip and that corrupt files fail loudly.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from nexus_verify.domain.ids import generate_report_id
from nexus_verify.domain.models import (
    Issue,
    RunResult,
    Severity,
    UnitStatus,
    VerificationReport,
)
from nexus_verify.verification_plane.aggregator import aggregate
from nexus_verify.verification_plane.report_store import (
    LATEST_REPORT_FILENAME,
    ReportStore,
    ReportStoreError,
    write_report,
)


def _report(score: int = 88) -> VerificationReport:
    return aggregate(
        [
            RunResult(
                unit_id="lint",
                name="Lint",
                status=UnitStatus.SUCCESS,
                score=score,
                issues=(Issue(severity=Severity.LOW, message="long line", auto_fixable=True),),
                attempts=1,
            ),
            RunResult(
                unit_id="types",
                name="Types",
                status=UnitStatus.SKIPPED,
                score=0,
                skip_reason="dependency not satisfied: lint",
            ),
        ]
    )


def test_load_latest_without_reports_returns_none(tmp_path: Path) -> None:
    store = ReportStore(tmp_path / "state")

    assert store.load_latest() is None
    assert store.report_ids() == ()


def test_save_writes_archive_and_latest(tmp_path: Path) -> None:
    store = ReportStore(tmp_path / "state")
    report = _report()

    archive = store.save(report)

    assert archive == tmp_path / "state" / "reports" / f"{report.report_id}.json"
    assert (tmp_path / "state" / LATEST_REPORT_FILENAME).is_file()
    assert store.load_latest() == report
    assert store.load(report.report_id) == report
    assert store.report_ids() == (report.report_id,)


def test_latest_tracks_most_recent_save(tmp_path: Path) -> None:
    store = ReportStore(tmp_path)
    first = _report(90)
    second = _report(70)

    store.save(first)
    store.save(second)

    latest = store.load_latest()
    assert latest is not None
    assert latest.report_id == second.report_id
    assert set(store.report_ids()) == {first.report_id, second.report_id}


def test_load_unknown_or_malformed_id(tmp_path: Path) -> None:
    store = ReportStore(tmp_path)

    with pytest.raises(ReportStoreError, match="not found"):
        store.load(generate_report_id())
    with pytest.raises(ValueError):
        store.load("../etc/passwd")


def test_corrupt_latest_report_raises(tmp_path: Path) -> None:
    (tmp_path / LATEST_REPORT_FILENAME).write_text("{not json", encoding="utf-8")

    with pytest.raises(ReportStoreError, match="corrupt report"):
        ReportStore(tmp_path).load_latest()


def test_write_report_creates_parents_and_is_readable(tmp_path: Path) -> None:
    report = _report()
    target = tmp_path / "out" / "nested" / "report.json"

    written = write_report(report, target)

    assert written == target
    text = target.read_text(encoding="utf-8")
    assert text.endswith("}\n")
    assert VerificationReport.from_json(text) == report
