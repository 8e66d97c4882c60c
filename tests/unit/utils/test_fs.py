"""Unit tests for atomic file writes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from nexus_verify.utils.fs import atomic_write, ensure_parent_dir

if TYPE_CHECKING:
    from pathlib import Path


def test_atomic_write_replaces_content_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "report.json"
    atomic_write(target, "first")
    atomic_write(target, b"second")

    assert target.read_text(encoding="utf-8") == "second"
    assert sorted(path.name for path in tmp_path.iterdir()) == ["report.json"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        atomic_write(tmp_path / "missing" / "report.json", "data")


def test_ensure_parent_dir_creates_nested_directories(tmp_path: Path) -> None:
    target = ensure_parent_dir(tmp_path / "a" / "b" / "report.json")

    assert target.parent.is_dir()
    assert not target.exists()
