"""
nexus-verify — domain layer

File: src/nexus_verify/domain/__init__.py
Last updated: 2026-10-19

Purpose
- Domain types shared across planes: UnitSpec, Outcome, Issue, RunResult, VerificationReport.

Functional requirements
- Domain objects must be serializable and versioned.
- Keep the domain layer free of IO side effects.
"""

from nexus_verify.domain.models import (
    SATISFIED_STATUSES,
    SCORED_STATUSES,
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
)

__all__ = [
    "AutoFixSummary",
    "Issue",
    "IssueLocator",
    "Outcome",
    "ReportStatus",
    "ReportSummary",
    "RunResult",
    "SATISFIED_STATUSES",
    "SCORED_STATUSES",
    "Severity",
    "UnitSpec",
    "UnitStatus",
    "VerificationReport",
]
