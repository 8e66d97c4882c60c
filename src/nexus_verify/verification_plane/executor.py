"""
nexus-verify — wave executor

File: src/nexus_verify/verification_plane/executor.py
Last updated: 2026-10-19

Purpose
- Drive resolved waves to completion and produce exactly one ``RunResult`` per unit.

Normative behavior
- Waves run strictly in order; units inside a wave run concurrently behind one bounded
  semaphore shared by the whole run.
- Each attempt gets ``min(unit timeout, remaining run deadline)``; errors and timeouts are
  retried immediately up to ``max_retries`` extra attempts. Low scores are not retried.
- A unit whose dependency ended outside {success, warning} is skipped without being invoked,
  which propagates transitively. Disabled units are skipped as well.
- Cancellation: in-flight units end ``failed`` with a critical "execution cancelled" issue,
  units that have not started end ``skipped`` with reason "run cancelled".
- No fail-fast: a unit failure never aborts its siblings or the run.
- Sync units run on a thread pool owned by the run and sized to the concurrency bound, so
  a thread is free whenever a unit holds a slot. After a timed-out attempt the unit waits
  for its thread to return before retrying or releasing its slot.
- Units receive a deep-frozen copy of the run options.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import structlog

from nexus_verify.constants import (
    SKIP_REASON_CANCELLED,
    SKIP_REASON_DEPENDENCY_PREFIX,
    SKIP_REASON_DISABLED,
    SUCCESS_SCORE,
    WARNING_SCORE,
)
from nexus_verify.domain.models import Issue, Outcome, RunResult, Severity, UnitSpec, UnitStatus
from nexus_verify.observability.logging import correlation_scope
from nexus_verify.planning.resolver import Waves
from nexus_verify.utils.concurrency import (
    CancellationToken,
    Deadline,
    ThreadLane,
    WorkerPool,
    run_with_timeout,
)
from nexus_verify.verification_plane.units import (
    UnitContext,
    UnitRegistration,
    UnitRegistry,
    freeze_options,
    invoke_unit,
)

RUN_DEADLINE_REASON = "run deadline exceeded"
_EXECUTION_CATEGORY = "execution"
_THREAD_NAME_PREFIX = "nexus-verify-unit"


@dataclass(frozen=True, slots=True)
class SchedulerPolicy:
    """Run-wide scheduling knobs; ``None`` means unbounded / no deadline."""

    max_concurrency: int | None = None
    success_score: int = SUCCESS_SCORE
    warning_score: int = WARNING_SCORE
    run_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_concurrency is not None and self.max_concurrency <= 0:
            raise ValueError("SchedulerPolicy.max_concurrency must be > 0 or None")
        if not 0 <= self.warning_score <= self.success_score <= 100:
            raise ValueError("SchedulerPolicy requires 0 <= warning_score <= success_score <= 100")
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            raise ValueError("SchedulerPolicy.run_timeout_seconds must be > 0 or None")

    def status_for_score(self, score: int) -> UnitStatus:
        if score >= self.success_score:
            return UnitStatus.SUCCESS
        if score >= self.warning_score:
            return UnitStatus.WARNING
        return UnitStatus.FAILED


@dataclass(frozen=True, slots=True)
class ProgressCallbacks:
    """Optional per-run progress hooks, invoked on the event loop thread."""

    on_wave_start: Callable[[int, tuple[str, ...]], None] | None = None
    on_unit_start: Callable[[str, int], None] | None = None
    on_unit_done: Callable[[RunResult], None] | None = None

    def wave_started(self, wave_index: int, unit_ids: tuple[str, ...]) -> None:
        if self.on_wave_start is not None:
            self.on_wave_start(wave_index, unit_ids)

    def unit_started(self, unit_id: str, attempt: int) -> None:
        if self.on_unit_start is not None:
            self.on_unit_start(unit_id, attempt)

    def unit_done(self, result: RunResult) -> None:
        if self.on_unit_done is not None:
            self.on_unit_done(result)


_NO_PROGRESS = ProgressCallbacks()


class WaveExecutor:
    """Execute resolved waves against a registry snapshot."""

    def __init__(
        self,
        registry: UnitRegistry,
        *,
        policy: SchedulerPolicy | None = None,
        logger: Any | None = None,
    ) -> None:
        self._registry = registry
        self._policy = policy if policy is not None else SchedulerPolicy()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._peak_concurrency = 0

    @property
    def policy(self) -> SchedulerPolicy:
        return self._policy

    @property
    def peak_concurrency(self) -> int:
        """Most units in flight at once during the last ``run``."""
        return self._peak_concurrency

    async def run(
        self,
        waves: Waves,
        options: Mapping[str, object] | None = None,
        *,
        progress: ProgressCallbacks | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[RunResult, ...]:
        """Run every wave and return results in wave order, then ``(priority, unit_id)``."""
        callbacks = progress if progress is not None else _NO_PROGRESS
        token = cancel_token if cancel_token is not None else CancellationToken()
        deadline = Deadline.after(self._policy.run_timeout_seconds)
        run_options = freeze_options(options)
        pool: WorkerPool[RunResult] = WorkerPool(self._policy.max_concurrency)
        threads = ThreadPoolExecutor(
            max_workers=_thread_budget(self._policy.max_concurrency, waves),
            thread_name_prefix=_THREAD_NAME_PREFIX,
        )
        results: dict[str, RunResult] = {}

        watchdog = (
            asyncio.create_task(_cancel_after(token, self._policy.run_timeout_seconds))
            if self._policy.run_timeout_seconds is not None
            else None
        )
        try:
            for wave_index, wave in enumerate(waves):
                runnable: list[UnitSpec] = []
                for spec in wave:
                    reason = self._skip_reason(spec, results, token)
                    if reason is None:
                        runnable.append(spec)
                        continue
                    skipped = self._skipped(spec, wave_index, reason)
                    results[spec.unit_id] = skipped
                    callbacks.unit_done(skipped)

                if not runnable:
                    continue

                unit_ids = tuple(spec.unit_id for spec in runnable)
                self._logger.info(
                    "wave_started",
                    wave_index=wave_index,
                    unit_ids=list(unit_ids),
                    max_concurrency=self._policy.max_concurrency,
                )
                callbacks.wave_started(wave_index, unit_ids)

                finished = await pool.run(
                    self._execute(
                        self._registry.get(spec.unit_id),
                        run_options,
                        threads=threads,
                        wave_index=wave_index,
                        token=token,
                        deadline=deadline,
                        progress=callbacks,
                    )
                    for spec in runnable
                )
                for item in finished:
                    results[item.unit_id] = item
        finally:
            self._peak_concurrency = pool.peak
            # Threads abandoned by a cancelled run are not joined.
            threads.shutdown(wait=False, cancel_futures=True)
            if watchdog is not None:
                watchdog.cancel()
                await asyncio.gather(watchdog, return_exceptions=True)

        return tuple(results[spec.unit_id] for wave in waves for spec in wave)

    async def run_unit(
        self,
        registration: UnitRegistration,
        options: Mapping[str, object] | None = None,
        *,
        wave_index: int = 0,
        cancel_token: CancellationToken | None = None,
        progress: ProgressCallbacks | None = None,
    ) -> RunResult:
        """Run a single unit with its timeout/retry policy, ignoring dependencies."""
        threads = ThreadPoolExecutor(max_workers=1, thread_name_prefix=_THREAD_NAME_PREFIX)
        try:
            return await self._execute(
                registration,
                freeze_options(options),
                threads=threads,
                wave_index=wave_index,
                token=cancel_token if cancel_token is not None else CancellationToken(),
                deadline=Deadline(),
                progress=progress if progress is not None else _NO_PROGRESS,
            )
        finally:
            threads.shutdown(wait=False, cancel_futures=True)

    async def _execute(
        self,
        registration: UnitRegistration,
        options: Mapping[str, object],
        *,
        threads: Executor,
        wave_index: int,
        token: CancellationToken,
        deadline: Deadline,
        progress: ProgressCallbacks,
    ) -> RunResult:
        spec = registration.spec
        start = time.perf_counter()
        max_attempts = spec.max_retries + 1
        attempts = 0
        last_status = UnitStatus.FAILED
        last_error = "unit was not attempted"
        cancelled = False
        lane = ThreadLane(threads)

        while attempts < max_attempts:
            timeout_seconds = deadline.clamp(spec.timeout_seconds)
            if timeout_seconds <= 0:
                token.cancel(RUN_DEADLINE_REASON)
            if token.is_cancelled:
                if attempts == 0:
                    skipped = self._skipped(spec, wave_index, SKIP_REASON_CANCELLED)
                    progress.unit_done(skipped)
                    return skipped
                cancelled = True
                break

            attempts += 1
            context = UnitContext(
                unit_id=spec.unit_id,
                attempt=attempts,
                timeout_seconds=timeout_seconds,
                options=options,
                cancel_token=token,
            )
            progress.unit_started(spec.unit_id, attempts)
            self._logger.info(
                "unit_started",
                unit_id=spec.unit_id,
                attempt=attempts,
                max_attempts=max_attempts,
                timeout_seconds=timeout_seconds,
                wave_index=wave_index,
            )

            try:
                with correlation_scope(unit_id=spec.unit_id, attempt=str(attempts)):
                    outcome = await run_with_timeout(
                        invoke_unit(registration.unit, context, executor=lane),
                        timeout_seconds,
                        token,
                    )
            except TimeoutError:
                last_status = UnitStatus.TIMED_OUT
                last_error = f"unit timed out after {timeout_seconds:.3f}s"
                # A sync unit's thread outlives the timeout; attempts stay serial.
                await lane.settle(token)
            except asyncio.CancelledError:
                if not token.is_cancelled or _current_task_cancelling():
                    raise
                cancelled = True
                break
            except Exception as exc:  # noqa: BLE001
                last_status = UnitStatus.FAILED
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                result = self._scored(spec, outcome, wave_index, attempts, _duration_ms(start))
                self._logger.info(
                    "unit_finished",
                    unit_id=spec.unit_id,
                    status=result.status.value,
                    score=result.score,
                    attempts=attempts,
                    duration_ms=result.duration_ms,
                )
                progress.unit_done(result)
                return result

            self._logger.warning(
                "unit_attempt_failed",
                unit_id=spec.unit_id,
                attempt=attempts,
                max_attempts=max_attempts,
                status=last_status.value,
                error=last_error,
            )

        if cancelled:
            result = self._cancelled(spec, wave_index, attempts, _duration_ms(start), token)
        else:
            result = self._exhausted(
                spec, wave_index, attempts, _duration_ms(start), last_status, last_error
            )
        self._logger.info(
            "unit_finished",
            unit_id=spec.unit_id,
            status=result.status.value,
            score=result.score,
            attempts=attempts,
            duration_ms=result.duration_ms,
            error=result.error,
        )
        progress.unit_done(result)
        return result

    def _skip_reason(
        self,
        spec: UnitSpec,
        results: Mapping[str, RunResult],
        token: CancellationToken,
    ) -> str | None:
        if not spec.enabled:
            return SKIP_REASON_DISABLED
        if token.is_cancelled:
            return SKIP_REASON_CANCELLED
        unsatisfied = [
            dependency
            for dependency in spec.depends_on
            if dependency not in results or not results[dependency].is_satisfied
        ]
        if unsatisfied:
            return f"{SKIP_REASON_DEPENDENCY_PREFIX}: {', '.join(unsatisfied)}"
        return None

    def _skipped(self, spec: UnitSpec, wave_index: int, reason: str) -> RunResult:
        self._logger.info(
            "unit_skipped", unit_id=spec.unit_id, reason=reason, wave_index=wave_index
        )
        return RunResult(
            unit_id=spec.unit_id,
            name=spec.name,
            status=UnitStatus.SKIPPED,
            score=0,
            wave_index=wave_index,
            weight=spec.weight,
            skip_reason=reason,
        )

    def _scored(
        self,
        spec: UnitSpec,
        outcome: Outcome,
        wave_index: int,
        attempts: int,
        duration_ms: int,
    ) -> RunResult:
        return RunResult(
            unit_id=spec.unit_id,
            name=spec.name,
            status=self._policy.status_for_score(outcome.score),
            score=outcome.score,
            issues=outcome.issues,
            recommendations=outcome.recommendations,
            duration_ms=duration_ms,
            attempts=attempts,
            wave_index=wave_index,
            weight=spec.weight,
        )

    def _exhausted(
        self,
        spec: UnitSpec,
        wave_index: int,
        attempts: int,
        duration_ms: int,
        status: UnitStatus,
        error: str,
    ) -> RunResult:
        if status is UnitStatus.TIMED_OUT:
            issue = Issue(
                severity=Severity.CRITICAL,
                category=_EXECUTION_CATEGORY,
                message=f"Unit execution timed out: {error}",
                suggestion=f"Raise timeout_seconds for {spec.unit_id} or speed the unit up",
            )
            recommendations: tuple[str, ...] = ()
        else:
            issue = Issue(
                severity=Severity.CRITICAL,
                category=_EXECUTION_CATEGORY,
                message=f"Unit execution failed: {error}",
            )
            recommendations = (f"Fix unit {spec.name} implementation",)
        return RunResult(
            unit_id=spec.unit_id,
            name=spec.name,
            status=status,
            score=0,
            issues=(issue,),
            recommendations=recommendations,
            duration_ms=duration_ms,
            attempts=attempts,
            wave_index=wave_index,
            weight=spec.weight,
            error=error,
        )

    def _cancelled(
        self,
        spec: UnitSpec,
        wave_index: int,
        attempts: int,
        duration_ms: int,
        token: CancellationToken,
    ) -> RunResult:
        reason = token.reason or "operation cancelled"
        return RunResult(
            unit_id=spec.unit_id,
            name=spec.name,
            status=UnitStatus.FAILED,
            score=0,
            issues=(
                Issue(
                    severity=Severity.CRITICAL,
                    category=_EXECUTION_CATEGORY,
                    message=f"Unit execution cancelled: {reason}",
                ),
            ),
            duration_ms=duration_ms,
            attempts=attempts,
            wave_index=wave_index,
            weight=spec.weight,
            error=f"execution cancelled: {reason}",
        )


def results_by_id(results: Sequence[RunResult]) -> dict[str, RunResult]:
    return {item.unit_id: item for item in results}


async def _cancel_after(token: CancellationToken, seconds: float | None) -> None:
    if seconds is None:
        return
    await asyncio.sleep(seconds)
    token.cancel(RUN_DEADLINE_REASON)


def _thread_budget(max_concurrency: int | None, waves: Waves) -> int:
    if max_concurrency is not None:
        return max_concurrency
    return max((len(wave) for wave in waves), default=1) or 1


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


def _duration_ms(start: float) -> int:
    elapsed_seconds = max(time.perf_counter() - start, 0.0)
    return int(round(elapsed_seconds * 1000))


__all__ = [
    "ProgressCallbacks",
    "RUN_DEADLINE_REASON",
    "SchedulerPolicy",
    "WaveExecutor",
    "results_by_id",
]
