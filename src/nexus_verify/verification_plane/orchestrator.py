"""
nexus-verify — orchestrator facade

File: src/nexus_verify/verification_plane/orchestrator.py
Last updated: 2026-10-19

Purpose
- Public entry point wiring registry, resolver, executor and aggregator together.

Functional requirements
- ``run_all`` is single-flight per instance; a concurrent call raises ``AlreadyRunningError``.
- Structural errors (duplicate/unknown dependency/cycle) propagate before any unit runs and
  leave the latest report untouched.
- Unit-level failures are encoded in the returned report, which becomes the latest report.
- A report that cannot be saved is logged as ``report_persist_failed``; the run still returns it.
- ``verify_one`` runs a single unit with its own timeout/retry policy, ignoring dependencies.
- ``auto_fix_issues`` applies fix hooks to every auto-fixable issue of a report.

Non-functional requirements
- No module-level instance; callers construct and own orchestrators.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from nexus_verify.constants import PASSING_SCORE
from nexus_verify.domain.ids import generate_report_id
from nexus_verify.domain.models import (
    AutoFixSummary,
    Issue,
    RunResult,
    UnitSpec,
    VerificationReport,
    utc_now,
)
from nexus_verify.observability.logging import correlation_scope
from nexus_verify.planning.resolver import Waves, resolve
from nexus_verify.utils.concurrency import CancellationToken, run_with_timeout
from nexus_verify.verification_plane.aggregator import aggregate
from nexus_verify.verification_plane.executor import (
    ProgressCallbacks,
    SchedulerPolicy,
    WaveExecutor,
)
from nexus_verify.verification_plane.report_store import ReportStore
from nexus_verify.verification_plane.units import (
    UnitContext,
    UnitRegistry,
    UnknownUnitError,
    invoke_fix,
)

Fixer = Callable[[RunResult, Issue], bool | None | Awaitable[bool | None]]


class AlreadyRunningError(RuntimeError):
    """Raised when ``run_all`` is called while another run is in progress."""

    def __init__(self) -> None:
        super().__init__("a verification run is already in progress")


class NoReportError(LookupError):
    """Raised when an operation needs a report and none is available."""


def policy_from_config(
    config: Mapping[str, Any],
    *,
    parallel: bool | None = None,
) -> SchedulerPolicy:
    """Build a ``SchedulerPolicy`` from validated ``scheduler``/``scoring`` sections."""
    scheduler = config.get("scheduler", {})
    scoring = config.get("scoring", {})
    run_parallel = bool(scheduler.get("parallel", False)) if parallel is None else parallel

    configured_limit = int(scheduler.get("max_concurrency", 0))
    max_concurrency = (configured_limit or None) if run_parallel else 1
    run_timeout = float(scheduler.get("run_timeout_seconds", 0.0))

    defaults = SchedulerPolicy()
    return SchedulerPolicy(
        max_concurrency=max_concurrency,
        success_score=int(scoring.get("success_score", defaults.success_score)),
        warning_score=int(scoring.get("warning_score", defaults.warning_score)),
        run_timeout_seconds=run_timeout if run_timeout > 0 else None,
    )


class VerificationOrchestrator:
    """Dependency-aware, bounded-concurrency runner for a fixed set of units."""

    def __init__(
        self,
        registry: UnitRegistry,
        *,
        policy: SchedulerPolicy | None = None,
        passing_score: int = PASSING_SCORE,
        report_store: ReportStore | None = None,
        logger: Any | None = None,
    ) -> None:
        if not 0 <= passing_score <= 100:
            raise ValueError("passing_score must be within 0..100")
        self._registry = registry
        self._policy = policy if policy is not None else SchedulerPolicy()
        self._passing_score = passing_score
        self._report_store = report_store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._run_lock = threading.Lock()
        self._latest: VerificationReport | None = None

    @classmethod
    def from_config(
        cls,
        registry: UnitRegistry,
        config: Mapping[str, Any],
        *,
        parallel: bool | None = None,
        persist: bool = True,
        logger: Any | None = None,
    ) -> VerificationOrchestrator:
        scoring = config.get("scoring", {})
        state_dir = config.get("paths", {}).get("state_dir")
        return cls(
            registry,
            policy=policy_from_config(config, parallel=parallel),
            passing_score=int(scoring.get("passing_score", PASSING_SCORE)),
            report_store=ReportStore(state_dir) if persist and state_dir else None,
            logger=logger,
        )

    @property
    def policy(self) -> SchedulerPolicy:
        return self._policy

    @property
    def report_store(self) -> ReportStore | None:
        return self._report_store

    def is_running(self) -> bool:
        return self._run_lock.locked()

    def latest_report(self) -> VerificationReport | None:
        return self._latest

    def list_units(self) -> tuple[UnitSpec, ...]:
        return tuple(sorted(self._registry.specs(), key=lambda spec: (spec.priority, spec.unit_id)))

    def plan(self) -> Waves:
        return resolve(self._registry.specs())

    async def run_all(
        self,
        options: Mapping[str, object] | None = None,
        *,
        progress: ProgressCallbacks | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> VerificationReport:
        if not self._run_lock.acquire(blocking=False):
            raise AlreadyRunningError()
        try:
            return await self._run_all_locked(options, progress, cancel_token)
        finally:
            self._run_lock.release()

    async def _run_all_locked(
        self,
        options: Mapping[str, object] | None,
        progress: ProgressCallbacks | None,
        cancel_token: CancellationToken | None,
    ) -> VerificationReport:
        snapshot = self._registry.snapshot()
        waves = resolve(snapshot.specs())
        token = cancel_token if cancel_token is not None else CancellationToken()
        report_id = generate_report_id()
        started_at = utc_now()

        with correlation_scope(report_id=report_id):
            self._logger.info(
                "run_started",
                report_id=report_id,
                unit_count=len(snapshot),
                wave_count=len(waves),
                max_concurrency=self._policy.max_concurrency,
            )
            executor = WaveExecutor(snapshot, policy=self._policy, logger=self._logger)
            results = await executor.run(
                waves, options, progress=progress, cancel_token=token
            )
            report = aggregate(
                results,
                started_at=started_at,
                finished_at=utc_now(),
                passing_score=self._passing_score,
                report_id=report_id,
                cancelled=token.is_cancelled,
            )
            if self._report_store is not None:
                try:
                    self._report_store.save(report)
                except OSError as exc:
                    # The run itself succeeded; only the on-disk copy is missing.
                    self._logger.warning(
                        "report_persist_failed",
                        report_id=report.report_id,
                        state_dir=self._report_store.state_dir.as_posix(),
                        error=f"{type(exc).__name__}: {exc}",
                    )
            self._latest = report

            self._logger.info(
                "run_finished",
                report_id=report.report_id,
                status=report.status.value,
                overall_score=report.overall_score,
                skipped_units=report.summary.skipped_units,
                failed_units=report.summary.failed_units,
                timed_out_units=report.summary.timed_out_units,
                cancelled=report.cancelled,
                duration_ms=report.total_duration_ms,
                peak_concurrency=executor.peak_concurrency,
            )
        return report

    async def verify_one(
        self,
        unit_id: str,
        options: Mapping[str, object] | None = None,
    ) -> RunResult:
        registration = self._registry.get(unit_id)
        executor = WaveExecutor(
            self._registry,
            policy=SchedulerPolicy(
                max_concurrency=1,
                success_score=self._policy.success_score,
                warning_score=self._policy.warning_score,
            ),
            logger=self._logger,
        )
        return await executor.run_unit(registration, options)

    async def auto_fix_issues(
        self,
        fixer: Fixer | None = None,
        report: VerificationReport | None = None,
    ) -> AutoFixSummary:
        """Apply ``fixer`` (or each unit's own ``fix`` hook) to every auto-fixable issue."""
        target = report if report is not None else self._latest
        if target is None:
            raise NoReportError("no verification report available for auto-fixing")

        fixed = failed = unsupported = 0
        errors: list[str] = []
        candidates = target.auto_fixable_issues

        for result, issue in candidates:
            try:
                outcome = await self._apply_fix(fixer, result, issue)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                failed += 1
                message = f"{result.unit_id}/{issue.issue_id}: {type(exc).__name__}: {exc}"
                errors.append(message)
                self._logger.warning(
                    "issue_fix_failed",
                    unit_id=result.unit_id,
                    issue_id=issue.issue_id,
                    error=message,
                )
                continue

            if outcome is None:
                unsupported += 1
            elif outcome:
                fixed += 1
            else:
                failed += 1

        summary = AutoFixSummary(
            attempted=len(candidates),
            fixed=fixed,
            failed=failed,
            unsupported=unsupported,
            errors=tuple(errors),
        )
        self._logger.info(
            "auto_fix_finished",
            report_id=target.report_id,
            attempted=summary.attempted,
            fixed=summary.fixed,
            failed=summary.failed,
            unsupported=summary.unsupported,
        )
        return summary

    async def _apply_fix(
        self,
        fixer: Fixer | None,
        result: RunResult,
        issue: Issue,
    ) -> bool | None:
        """Return True/False for fixed/not fixed, ``None`` when no fix hook applies."""
        if fixer is not None:
            returned = fixer(result, issue)
            if inspect.isawaitable(returned):
                returned = await returned
            return returned is None or bool(returned)

        if not self._registry.contains(result.unit_id):
            return None
        registration = self._registry.get(result.unit_id)
        if not registration.supports_fix:
            return None

        context = UnitContext(
            unit_id=result.unit_id,
            attempt=1,
            timeout_seconds=registration.spec.timeout_seconds,
        )
        return await run_with_timeout(
            invoke_fix(registration.unit, issue, context), registration.spec.timeout_seconds
        )


__all__ = [
    "AlreadyRunningError",
    "Fixer",
    "NoReportError",
    "UnknownUnitError",
    "VerificationOrchestrator",
    "policy_from_config",
]
