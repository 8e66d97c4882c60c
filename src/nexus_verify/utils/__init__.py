"""Utility exports for filesystem and concurrency helpers."""

from nexus_verify.utils.concurrency import (
    CancellationToken,
    Deadline,
    ThreadLane,
    WorkerPool,
    run_with_timeout,
)
from nexus_verify.utils.fs import atomic_write, ensure_parent_dir

__all__ = [
    "CancellationToken",
    "Deadline",
    "ThreadLane",
    "WorkerPool",
    "atomic_write",
    "ensure_parent_dir",
    "run_with_timeout",
]
