"""Fold per-unit ``RunResult`` records into one ``VerificationReport``."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime

from nexus_verify.constants import PASSING_SCORE
from nexus_verify.domain.ids import generate_report_id
from nexus_verify.domain.models import (
    ReportStatus,
    ReportSummary,
    RunResult,
    Severity,
    UnitStatus,
    VerificationReport,
    round_half_up,
    utc_now,
)


def overall_score(results: Sequence[RunResult]) -> int:
    """Weighted mean over scored units (success, warning, failed); 0 when none qualify."""
    scored = [item for item in results if item.is_scored]
    total_weight = sum(item.weight for item in scored)
    if not scored or total_weight <= 0:
        return 0
    weighted = sum(item.score * item.weight for item in scored)
    return min(round_half_up(weighted / total_weight), 100)


def summarize(results: Sequence[RunResult]) -> ReportSummary:
    statuses = Counter(item.status for item in results)
    severities: Counter[Severity] = Counter()
    auto_fixable = 0
    total_issues = 0
    for item in results:
        for issue in item.issues:
            severities[issue.severity] += 1
            total_issues += 1
            if issue.auto_fixable:
                auto_fixable += 1

    skipped = statuses[UnitStatus.SKIPPED]
    return ReportSummary(
        total_units=len(results),
        executed_units=len(results) - skipped,
        skipped_units=skipped,
        timed_out_units=statuses[UnitStatus.TIMED_OUT],
        failed_units=statuses[UnitStatus.FAILED],
        total_issues=total_issues,
        critical=severities[Severity.CRITICAL],
        high=severities[Severity.HIGH],
        medium=severities[Severity.MEDIUM],
        low=severities[Severity.LOW],
        info=severities[Severity.INFO],
        auto_fixable=auto_fixable,
    )


def report_status(
    summary: ReportSummary,
    score: int,
    *,
    passing_score: int = PASSING_SCORE,
) -> ReportStatus:
    if summary.critical > 0:
        return ReportStatus.FAIL
    if summary.high > 0 or score < passing_score:
        return ReportStatus.WARNING
    return ReportStatus.PASS


def global_recommendations(
    results: Sequence[RunResult],
    summary: ReportSummary,
    score: int,
    *,
    passing_score: int = PASSING_SCORE,
) -> list[str]:
    derived: list[str] = []
    if any(item.is_scored for item in results) and score < passing_score:
        derived.append(
            f"Overall verification score {score} is below the passing threshold "
            f"{passing_score}; review failing units before release"
        )
    if summary.critical > 0:
        derived.append(f"Address {summary.critical} critical issues")
    if summary.auto_fixable > 0:
        derived.append(f"{summary.auto_fixable} auto-fixable issues available")
    return derived


def aggregate(
    results: Sequence[RunResult],
    *,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
    passing_score: int = PASSING_SCORE,
    report_id: str | None = None,
    cancelled: bool = False,
) -> VerificationReport:
    """Build the immutable report for one run."""
    ordered = tuple(results)
    finished = finished_at if finished_at is not None else utc_now()
    started = started_at if started_at is not None else finished

    score = overall_score(ordered)
    summary = summarize(ordered)
    recommendations = _dedupe(
        [text for item in ordered for text in item.recommendations]
        + global_recommendations(ordered, summary, score, passing_score=passing_score)
    )
    elapsed_ms = max(int(round((finished - started).total_seconds() * 1000)), 0)

    return VerificationReport(
        report_id=report_id if report_id is not None else generate_report_id(),
        started_at=started,
        finished_at=finished,
        overall_score=score,
        status=report_status(summary, score, passing_score=passing_score),
        summary=summary,
        results=ordered,
        recommendations=tuple(recommendations),
        total_duration_ms=elapsed_ms,
        cancelled=cancelled,
    )


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        text = value.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        ordered.append(text)
    return ordered


__all__ = [
    "aggregate",
    "global_recommendations",
    "overall_score",
    "report_status",
    "summarize",
]
