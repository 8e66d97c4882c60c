"""Unit tests for prefixed ULID identifiers and unit id validation."""

from __future__ import annotations

import pytest

from nexus_verify.domain import ids


def _fixed_bytes(size: int) -> bytes:
    return bytes([7]) * size


def test_generated_ids_are_deterministic_with_injected_sources() -> None:
    first = ids.generate_report_id(timestamp_ms=1_760_000_000_000, randbytes=_fixed_bytes)
    second = ids.generate_report_id(timestamp_ms=1_760_000_000_000, randbytes=_fixed_bytes)

    assert first == second
    assert first.startswith("rpt-")
    assert len(first) == len("rpt-") + ids.ULID_LENGTH
    ids.validate_report_id(first)


def test_ulid_timestamp_round_trips() -> None:
    ulid = ids.generate_ulid(timestamp_ms=123_456_789, randbytes=_fixed_bytes)

    assert ids.parse_ulid_timestamp_ms(ulid) == 123_456_789


def test_ids_sort_by_timestamp() -> None:
    earlier = ids.generate_run_id(timestamp_ms=1_000, randbytes=_fixed_bytes)
    later = ids.generate_run_id(timestamp_ms=2_000, randbytes=_fixed_bytes)

    assert earlier < later


def test_validate_prefixed_id_rejects_wrong_prefix() -> None:
    run_id = ids.generate_run_id()

    with pytest.raises(ValueError, match="expected prefix 'rpt-'"):
        ids.validate_report_id(run_id)


@pytest.mark.parametrize("bad", ["", "a" * 20, "rpt-not-a-ulid", "rpt-" + "U" * 26])
def test_validate_report_id_rejects_malformed_values(bad: str) -> None:
    with pytest.raises(ValueError):
        ids.validate_report_id(bad)


@pytest.mark.parametrize("unit_id", ["lint", "schema-validator", "pkg.check:types", "A_1"])
def test_validate_unit_id_accepts_catalog_ids(unit_id: str) -> None:
    ids.validate_unit_id(unit_id)


@pytest.mark.parametrize("unit_id", ["", "-leading-dash", "has space", "x" * 129, "slash/id"])
def test_validate_unit_id_rejects_bad_ids(unit_id: str) -> None:
    with pytest.raises(ValueError):
        ids.validate_unit_id(unit_id)


def test_short_id_returns_trailing_characters() -> None:
    issue_id = ids.generate_issue_id(timestamp_ms=5, randbytes=_fixed_bytes)

    assert ids.short_id(issue_id) == issue_id[-8:]
    with pytest.raises(ValueError):
        ids.short_id("abc")
