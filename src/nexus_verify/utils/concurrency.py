"""Asyncio building blocks for the wave executor: cancellation, deadlines, bounded batches."""

from __future__ import annotations

import asyncio
import inspect
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, ParamSpec, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

T = TypeVar("T")
P = ParamSpec("P")


class CancellationToken:
    """Run-wide cancel flag; the first reason given wins."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise asyncio.CancelledError(self._reason or "operation cancelled")


@dataclass(frozen=True, slots=True)
class Deadline:
    """Point on the monotonic clock; ``expires_at=None`` never expires."""

    expires_at: float | None = None

    @classmethod
    def after(cls, seconds: float | None) -> Deadline:
        if seconds is not None and seconds <= 0:
            raise ValueError("deadline seconds must be > 0 when provided")
        return cls(None if seconds is None else time.monotonic() + seconds)

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() == 0.0

    def clamp(self, timeout_seconds: float) -> float:
        remaining = self.remaining()
        return timeout_seconds if remaining is None else min(timeout_seconds, remaining)


class WorkerPool(Generic[T]):
    """Await a batch of jobs, at most ``max_concurrency`` at a time (``None``: all at once).

    Results keep submission order. If a job raises, the jobs still pending are cancelled
    and the error propagates; callers that must not fail fast catch inside their jobs.
    """

    def __init__(self, max_concurrency: int | None = None) -> None:
        if max_concurrency is not None and max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0 or None")
        self.max_concurrency = max_concurrency
        self._slots = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self.active = 0
        self.peak = 0

    async def run(self, jobs: Iterable[Awaitable[T]]) -> list[T]:
        tasks = [asyncio.create_task(self._admit(job)) for job in jobs]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _admit(self, job: Awaitable[T]) -> T:
        if self._slots is None:
            return await self._track(job)
        try:
            async with self._slots:
                return await self._track(job)
        except asyncio.CancelledError:
            _discard(job)
            raise

    async def _track(self, job: Awaitable[T]) -> T:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            return await job
        finally:
            self.active -= 1


class ThreadLane(Executor):
    """One unit's view of a shared thread pool.

    Remembers the call it submitted last, so a timed-out attempt whose thread is still
    running can be waited for (``settle``) before the next attempt starts or the unit
    gives up its concurrency slot.
    """

    def __init__(self, pool: Executor) -> None:
        self._pool = pool
        self._last: Future[Any] | None = None

    def submit(self, fn: Callable[P, T], /, *args: P.args, **kwargs: P.kwargs) -> Future[T]:
        future = self._pool.submit(fn, *args, **kwargs)
        self._last = future
        return future

    async def settle(self, cancel_token: CancellationToken | None = None) -> bool:
        """Wait for the last submitted call to return.

        Returns ``False`` when ``cancel_token`` fires first; the thread is left running.
        """
        last = self._last
        if last is None or last.done():
            return True
        waiters: list[asyncio.Future[Any]] = [asyncio.wrap_future(last)]
        if cancel_token is not None:
            waiters.append(asyncio.ensure_future(cancel_token.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        return last.done()

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        # The pool belongs to the run, not to the lane.
        return None


async def run_with_timeout(
    job: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``job`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` when time runs out and ``asyncio.CancelledError`` when
    ``cancel_token`` fires first; in both cases ``job`` is cancelled and awaited.
    """
    if timeout_seconds <= 0:
        _discard(job)
        raise ValueError("timeout_seconds must be > 0")
    if cancel_token is not None and cancel_token.is_cancelled:
        _discard(job)
        raise asyncio.CancelledError(cancel_token.reason or "operation cancelled")

    work: asyncio.Future[T] = asyncio.ensure_future(job)
    watchers: list[asyncio.Future[Any]] = [work]
    stop = None
    if cancel_token is not None:
        stop = asyncio.ensure_future(cancel_token.wait())
        watchers.append(stop)

    try:
        done, _ = await asyncio.wait(
            watchers, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work in done:
            return work.result()
        if cancel_token is not None and stop in done:
            raise asyncio.CancelledError(cancel_token.reason or "operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        for pending in watchers:
            pending.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)


def _discard(job: Awaitable[object]) -> None:
    # A coroutine that never started must be closed or the GC warns it was never awaited.
    if inspect.iscoroutine(job):
        job.close()


__all__ = [
    "CancellationToken",
    "Deadline",
    "ThreadLane",
    "WorkerPool",
    "run_with_timeout",
]
