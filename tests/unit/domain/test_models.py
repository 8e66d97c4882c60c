"""
nexus-verify — unit tests for domain models

File: tests/unit/domain/test_models.py
Last updated: 2026-10-19

Purpose
- Validate model invariants, score normalization, and canonical JSON serialization.

What this test file should cover
- Score range checks and half-up rounding.
- UnitSpec defaults and dependency normalization.
- RunResult skip invariants and status helpers.
- VerificationReport round-trip through JSON and rejection of malformed payloads.

Functional requirements
- Offline and deterministic.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from nexus_verify.domain import ids
from nexus_verify.domain.models import (
    AutoFixSummary,
    Issue,
    IssueLocator,
    Outcome,
    ReportStatus,
    ReportSummary,
    RunResult,
    Severity,
    UnitSpec,
    UnitStatus,
    VerificationReport,
    round_half_up,
)


def _report_id(seed: int = 1) -> str:
    return ids.generate_report_id(
        timestamp_ms=1_760_000_000_000 + seed, randbytes=lambda size: bytes([seed]) * size
    )


def _report(results: tuple[RunResult, ...] = ()) -> VerificationReport:
    return VerificationReport(
        report_id=_report_id(),
        started_at=datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
        finished_at=datetime(2026, 1, 1, 12, 0, 2, tzinfo=UTC),
        overall_score=45,
        status=ReportStatus.WARNING,
        summary=ReportSummary(total_units=len(results)),
        results=results,
        recommendations=("Fix unit b implementation",),
        total_duration_ms=2000,
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(0, 0), (100, 100), (79.5, 80), (79.49, 79), (0.5, 1), (45.5, 46)],
)
def test_outcome_score_rounds_half_up(raw: float, expected: int) -> None:
    assert Outcome(score=raw).score == expected  # type: ignore[arg-type]


@pytest.mark.parametrize("raw", [-1, 100.5, 101, float("nan"), True, "90"])
def test_outcome_rejects_out_of_range_or_non_numeric_scores(raw: object) -> None:
    with pytest.raises(ValueError):
        Outcome(score=raw)  # type: ignore[arg-type]


def test_round_half_up_is_not_bankers_rounding() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(44.5) == 45


def test_issue_normalizes_severity_and_assigns_id() -> None:
    issue = Issue(severity="HIGH", message="  bad schema  ")  # type: ignore[arg-type]

    assert issue.severity is Severity.HIGH
    assert issue.message == "bad schema"
    assert issue.issue_id.startswith("iss-")
    assert issue.auto_fixable is False


def test_issue_rejects_unknown_severity() -> None:
    with pytest.raises(ValueError, match="Issue.severity"):
        Issue(severity="fatal", message="x")  # type: ignore[arg-type]


def test_outcome_from_dict_accepts_nested_issue_mappings() -> None:
    outcome = Outcome.from_dict(
        {
            "score": 72.5,
            "issues": [
                {
                    "severity": "medium",
                    "message": "trailing whitespace",
                    "locator": {"resource": "src/app.py", "line": 3},
                    "auto_fixable": True,
                }
            ],
            "recommendations": ["Run the formatter"],
        }
    )

    assert outcome.score == 73
    assert outcome.issues[0].locator == IssueLocator(resource="src/app.py", line=3)
    assert outcome.issues[0].auto_fixable is True
    assert outcome.recommendations == ("Run the formatter",)


def test_outcome_from_dict_rejects_unknown_fields() -> None:
    with pytest.raises(ValueError, match="unexpected fields"):
        Outcome.from_dict({"score": 10, "grade": "B"})


def test_unit_spec_defaults_and_dependency_normalization() -> None:
    spec = UnitSpec(unit_id="schema-validator", depends_on=("lint", "build", "lint"))

    assert spec.name == "schema-validator"
    assert spec.depends_on == ("build", "lint")
    assert spec.timeout_seconds == 30.0
    assert spec.max_retries == 2
    assert spec.enabled is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"unit_id": ""},
        {"unit_id": "has space"},
        {"unit_id": "ok", "timeout_seconds": 0},
        {"unit_id": "ok", "max_retries": -1},
        {"unit_id": "ok", "weight": 0},
        {"unit_id": "ok", "priority": 1.5},
    ],
)
def test_unit_spec_rejects_invalid_fields(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        UnitSpec(**kwargs)  # type: ignore[arg-type]


def test_skipped_result_must_have_zero_attempts() -> None:
    with pytest.raises(ValueError, match="0 attempts"):
        RunResult(unit_id="a", name="a", status=UnitStatus.SKIPPED, score=0, attempts=1)


def test_run_result_status_helpers() -> None:
    warning = RunResult(unit_id="a", name="a", status=UnitStatus.WARNING, score=65, attempts=1)
    timed_out = RunResult(unit_id="b", name="b", status=UnitStatus.TIMED_OUT, score=0, attempts=3)
    skipped = RunResult(unit_id="c", name="c", status=UnitStatus.SKIPPED, score=0)

    assert warning.is_scored and warning.is_satisfied
    assert not timed_out.is_scored and not timed_out.is_satisfied
    assert not skipped.is_scored and not skipped.is_satisfied


def test_report_round_trips_through_json() -> None:
    issue = Issue(severity=Severity.CRITICAL, message="boom", auto_fixable=True)
    results = (
        RunResult(unit_id="a", name="A", status=UnitStatus.SUCCESS, score=90, attempts=1),
        RunResult(
            unit_id="b",
            name="b",
            status=UnitStatus.FAILED,
            score=0,
            issues=(issue,),
            attempts=2,
            wave_index=1,
            error="RuntimeError: boom",
        ),
        RunResult(
            unit_id="c",
            name="c",
            status=UnitStatus.SKIPPED,
            score=0,
            wave_index=2,
            skip_reason="dependency not satisfied: b",
        ),
    )
    report = _report(results)

    restored = VerificationReport.from_json(report.to_json(indent=2))

    assert restored == report
    assert restored.result_for("b").error == "RuntimeError: boom"
    assert restored.auto_fixable_issues == ((results[1], issue),)
    payload = json.loads(report.to_json())
    assert payload["started_at"] == "2026-01-01T12:00:00.000000Z"
    assert payload["status"] == "warning"


def test_report_rejects_duplicate_results_and_bad_ids() -> None:
    item = RunResult(unit_id="a", name="a", status=UnitStatus.SUCCESS, score=90, attempts=1)

    with pytest.raises(ValueError, match="unique"):
        _report((item, item))
    with pytest.raises(ValueError, match="report_id"):
        VerificationReport.from_dict({**_report().to_dict(), "report_id": "run-123"})


def test_report_requires_timezone_aware_datetimes() -> None:
    payload = _report().to_dict()
    payload["started_at"] = "2026-01-01T12:00:00"

    with pytest.raises(ValueError, match="timezone-aware"):
        VerificationReport.from_dict(payload)


def test_result_for_unknown_unit_raises_key_error() -> None:
    with pytest.raises(KeyError):
        _report().result_for("missing")


def test_auto_fix_summary_counts_must_balance() -> None:
    summary = AutoFixSummary(attempted=3, fixed=1, failed=1, unsupported=1)

    assert summary.to_dict()["attempted"] == 3
    with pytest.raises(ValueError):
        AutoFixSummary(attempted=2, fixed=1)
