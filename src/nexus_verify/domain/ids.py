"""Identifiers: time-ordered ``<prefix>-<ULID>`` ids for runs, reports and issues, plus unit ids."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

REPORT_ID_PREFIX: Final[str] = "rpt"
ISSUE_ID_PREFIX: Final[str] = "iss"
RUN_ID_PREFIX: Final[str] = "run"

UNIT_ID_PATTERN_DESCRIPTION: Final[str] = "letters, digits, '.', '_', ':' or '-' (max 128)"

_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"  # Crockford base32
_ULID_RE: Final[re.Pattern[str]] = re.compile(rf"^[{_ALPHABET}]{{{ULID_LENGTH}}}$", re.IGNORECASE)
_UNIT_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")
_RANDOM_BYTES: Final[int] = 10

RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    """26-character ULID; 48 bits of milliseconds followed by 80 random bits."""
    millis = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(millis, int) or not 0 <= millis <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}")
    entropy = bytes((randbytes or secrets.token_bytes)(_RANDOM_BYTES))
    if len(entropy) != _RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BYTES} bytes")

    value = (millis << 80) | int.from_bytes(entropy, "big")
    digits = []
    for _ in range(ULID_LENGTH):
        value, remainder = divmod(value, 32)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def parse_ulid_timestamp_ms(ulid: str) -> int:
    return _ulid_value(ulid) >> 80


def generate_run_id(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    return f"{RUN_ID_PREFIX}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def generate_report_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return f"{REPORT_ID_PREFIX}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def generate_issue_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return f"{ISSUE_ID_PREFIX}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_report_id(id_str: str) -> None:
    """Raise ``ValueError`` unless ``id_str`` is ``rpt-<ULID>``; report ids name files on disk."""
    if not isinstance(id_str, str):
        raise ValueError(f"report id must be a string, got {type(id_str).__name__}")
    prefix, _, ulid = id_str.partition("-")
    if prefix != REPORT_ID_PREFIX or not ulid:
        raise ValueError(f"expected prefix '{REPORT_ID_PREFIX}-' in {id_str!r}")
    _ulid_value(ulid)


def validate_unit_id(unit_id: str) -> None:
    if not isinstance(unit_id, str) or _UNIT_ID_RE.fullmatch(unit_id) is None:
        raise ValueError(f"unit_id must use {UNIT_ID_PATTERN_DESCRIPTION} (got {unit_id!r})")


def short_id(id_str: str) -> str:
    """Trailing 8 characters, for compact display."""
    if not isinstance(id_str, str) or len(id_str) < 8:
        raise ValueError(f"id must be a string of at least 8 characters, got {id_str!r}")
    return id_str[-8:]


def _ulid_value(ulid: str) -> int:
    if not isinstance(ulid, str) or _ULID_RE.fullmatch(ulid) is None:
        raise ValueError(f"not a ULID: {ulid!r}")
    value = 0
    for char in ulid.upper():
        value = value * 32 + _ALPHABET.index(char)
    if value >> 128:
        raise ValueError(f"ULID exceeds 128 bits: {ulid!r}")
    return value


__all__ = [
    "ISSUE_ID_PREFIX",
    "REPORT_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "UNIT_ID_PATTERN_DESCRIPTION",
    "generate_issue_id",
    "generate_report_id",
    "generate_run_id",
    "generate_ulid",
    "parse_ulid_timestamp_ms",
    "short_id",
    "validate_report_id",
    "validate_unit_id",
]
