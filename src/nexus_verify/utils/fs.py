"""File helpers for persisted reports: all-or-nothing replacement of a file's contents."""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` so readers see either the old or the new file.

    The parent directory must already exist (``FileNotFoundError`` otherwise).
    """
    target = Path(path)
    directory = target.parent.resolve(strict=True)
    payload = data.encode(encoding) if isinstance(data, str) else data

    with tempfile.NamedTemporaryFile(
        "wb", dir=directory, prefix=f".{target.name}.", suffix=".tmp", delete=False
    ) as staging:
        staged = Path(staging.name)
        try:
            staging.write(payload)
            staging.flush()
            os.fsync(staging.fileno())
        except BaseException:
            staging.close()
            staged.unlink(missing_ok=True)
            raise

    try:
        os.replace(staged, target)
    except BaseException:
        staged.unlink(missing_ok=True)
        raise
    _sync_directory(directory)


def ensure_parent_dir(path: PathLike) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def _sync_directory(directory: Path) -> None:
    # Persists the rename itself; not supported on every platform.
    if os.name == "nt":
        return
    with contextlib.suppress(OSError):
        descriptor = os.open(directory, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
        try:
            os.fsync(descriptor)
        finally:
            os.close(descriptor)


__all__ = ["atomic_write", "ensure_parent_dir"]
