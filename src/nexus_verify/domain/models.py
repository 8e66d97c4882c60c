"""Frozen domain models for units, results and reports, with validated JSON round-trips."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import Any, ClassVar, Final, NoReturn, TypeVar, cast

from nexus_verify.constants import (
    DEFAULT_UNIT_CATEGORY,
    DEFAULT_UNIT_MAX_RETRIES,
    DEFAULT_UNIT_PRIORITY,
    DEFAULT_UNIT_TIMEOUT_SECONDS,
    REPORT_SCHEMA_VERSION,
)
from nexus_verify.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT: Final[int] = 8192
_MAX_ITEMS: Final[int] = 4096


class Severity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class UnitStatus(StrEnum):
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


# Contribute to the overall score.
SCORED_STATUSES: Final[frozenset[UnitStatus]] = frozenset(
    {UnitStatus.SUCCESS, UnitStatus.WARNING, UnitStatus.FAILED}
)
# Let dependents run.
SATISFIED_STATUSES: Final[frozenset[UnitStatus]] = frozenset(
    {UnitStatus.SUCCESS, UnitStatus.WARNING}
)


class ReportStatus(StrEnum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class CanonicalModel:
    """Shared JSON handling for the frozen dataclasses below.

    ``from_dict`` rejects unknown keys, requires fields without defaults and decodes the
    nested models named in ``_nested``; every other value is checked by the model's own
    ``__post_init__``.
    """

    __slots__ = ()

    # field name -> (model type, is_sequence)
    _nested: ClassVar[Mapping[str, tuple[type[CanonicalModel], bool]]] = {}

    def to_dict(self) -> dict[str, JSONValue]:
        return cast("dict[str, JSONValue]", _to_json(self, type(self).__name__))

    def to_json(self, *, indent: int | None = None) -> str:
        if indent is None:
            return json.dumps(
                self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
            )
        return json.dumps(self.to_dict(), sort_keys=True, indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        return cls.from_dict(_as_mapping(parsed, cls.__name__))

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        name = cls.__name__
        payload = _as_mapping(data, name)
        declared = {item.name: item for item in fields(cast("Any", cls))}
        required = {
            key
            for key, item in declared.items()
            if item.default is MISSING and item.default_factory is MISSING
        }

        unexpected = sorted(set(payload) - set(declared))
        if unexpected:
            _fail(name, f"unexpected fields: {unexpected}")
        missing = sorted(required - set(payload))
        if missing:
            _fail(name, f"missing required fields: {missing}")

        values: dict[str, Any] = {}
        for key, raw in payload.items():
            if raw is None and key not in required:
                continue
            nested = cls._nested.get(key)
            values[key] = raw if nested is None else _decode(raw, *nested, f"{name}.{key}")
        return cls(**values)


@dataclass(frozen=True, slots=True)
class IssueLocator(CanonicalModel):
    resource: str
    line: int | None = None

    def __post_init__(self) -> None:
        _assign(
            self,
            resource=_as_str(self.resource, "IssueLocator.resource"),
            line=None if self.line is None else _as_int(self.line, "IssueLocator.line", 1),
        )


@dataclass(frozen=True, slots=True)
class Issue(CanonicalModel):
    """One finding reported by a unit, or synthesized for an execution failure."""

    _nested: ClassVar[Mapping[str, tuple[type[CanonicalModel], bool]]] = {
        "locator": (IssueLocator, False)
    }

    severity: Severity
    message: str
    category: str = DEFAULT_UNIT_CATEGORY
    locator: IssueLocator | None = None
    suggestion: str | None = None
    auto_fixable: bool = False
    issue_id: str = field(default_factory=domain_ids.generate_issue_id)

    def __post_init__(self) -> None:
        if self.locator is not None and not isinstance(self.locator, IssueLocator):
            _fail("Issue.locator", f"expected IssueLocator, got {type(self.locator).__name__}")
        _assign(
            self,
            severity=_as_enum(Severity, self.severity, "Issue.severity"),
            message=_as_str(self.message, "Issue.message"),
            category=_as_str(self.category, "Issue.category"),
            suggestion=_as_optional_str(self.suggestion, "Issue.suggestion"),
            auto_fixable=_as_bool(self.auto_fixable, "Issue.auto_fixable"),
            issue_id=_as_str(self.issue_id, "Issue.issue_id"),
        )


@dataclass(frozen=True, slots=True)
class Outcome(CanonicalModel):
    """What a unit's ``verify`` returns: a 0..100 score plus findings."""

    _nested: ClassVar[Mapping[str, tuple[type[CanonicalModel], bool]]] = {
        "issues": (Issue, True)
    }

    score: int
    issues: tuple[Issue, ...] = ()
    recommendations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _assign(
            self,
            score=_as_score(self.score, "Outcome.score"),
            issues=_as_models(self.issues, Issue, "Outcome.issues"),
            recommendations=_as_texts(self.recommendations, "Outcome.recommendations"),
        )


@dataclass(frozen=True, slots=True)
class UnitSpec(CanonicalModel):
    """Static description of one verification unit and its scheduling policy."""

    unit_id: str
    name: str = ""
    description: str = ""
    priority: int = DEFAULT_UNIT_PRIORITY
    timeout_seconds: float = DEFAULT_UNIT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_UNIT_MAX_RETRIES
    depends_on: tuple[str, ...] = ()
    enabled: bool = True
    weight: float = 1.0
    category: str = DEFAULT_UNIT_CATEGORY

    def __post_init__(self) -> None:
        unit_id = _as_str(self.unit_id, "UnitSpec.unit_id")
        try:
            domain_ids.validate_unit_id(unit_id)
        except ValueError as exc:
            _fail("UnitSpec.unit_id", str(exc))
        raw_depends = self.depends_on
        if isinstance(raw_depends, (set, frozenset)):
            raw_depends = tuple(raw_depends)
        _assign(
            self,
            unit_id=unit_id,
            name=_as_str(self.name, "UnitSpec.name", min_len=0) or unit_id,
            description=_as_str(self.description, "UnitSpec.description", min_len=0),
            priority=_as_int(self.priority, "UnitSpec.priority"),
            timeout_seconds=_as_positive(self.timeout_seconds, "UnitSpec.timeout_seconds"),
            max_retries=_as_int(self.max_retries, "UnitSpec.max_retries", 0),
            depends_on=tuple(sorted(set(_as_texts(raw_depends, "UnitSpec.depends_on")))),
            enabled=_as_bool(self.enabled, "UnitSpec.enabled"),
            weight=_as_positive(self.weight, "UnitSpec.weight"),
            category=_as_str(self.category, "UnitSpec.category"),
        )


@dataclass(frozen=True, slots=True)
class RunResult(CanonicalModel):
    """Terminal result for one unit in one run."""

    _nested: ClassVar[Mapping[str, tuple[type[CanonicalModel], bool]]] = {
        "issues": (Issue, True)
    }

    unit_id: str
    name: str
    status: UnitStatus
    score: int
    issues: tuple[Issue, ...] = ()
    recommendations: tuple[str, ...] = ()
    duration_ms: int = 0
    attempts: int = 0
    wave_index: int = 0
    weight: float = 1.0
    skip_reason: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        _assign(
            self,
            unit_id=_as_str(self.unit_id, "RunResult.unit_id"),
            name=_as_str(self.name, "RunResult.name"),
            status=_as_enum(UnitStatus, self.status, "RunResult.status"),
            score=_as_score(self.score, "RunResult.score"),
            issues=_as_models(self.issues, Issue, "RunResult.issues"),
            recommendations=_as_texts(self.recommendations, "RunResult.recommendations"),
            duration_ms=_as_int(self.duration_ms, "RunResult.duration_ms", 0),
            attempts=_as_int(self.attempts, "RunResult.attempts", 0),
            wave_index=_as_int(self.wave_index, "RunResult.wave_index", 0),
            weight=_as_positive(self.weight, "RunResult.weight"),
            skip_reason=_as_optional_str(self.skip_reason, "RunResult.skip_reason"),
            error=_as_optional_str(self.error, "RunResult.error"),
        )
        if self.status is UnitStatus.SKIPPED and self.attempts != 0:
            _fail("RunResult.attempts", "skipped units must report 0 attempts")

    @property
    def is_scored(self) -> bool:
        return self.status in SCORED_STATUSES

    @property
    def is_satisfied(self) -> bool:
        return self.status in SATISFIED_STATUSES


@dataclass(frozen=True, slots=True)
class ReportSummary(CanonicalModel):
    total_units: int = 0
    executed_units: int = 0
    skipped_units: int = 0
    timed_out_units: int = 0
    failed_units: int = 0
    total_issues: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    auto_fixable: int = 0

    def __post_init__(self) -> None:
        for item in fields(self):
            _as_int(getattr(self, item.name), f"ReportSummary.{item.name}", 0)

    def count_for(self, severity: Severity | str) -> int:
        resolved = _as_enum(Severity, severity, "ReportSummary.severity")
        return cast("int", getattr(self, resolved.value))


@dataclass(frozen=True, slots=True)
class VerificationReport(CanonicalModel):
    """Aggregated, immutable result of one orchestrated run."""

    _nested: ClassVar[Mapping[str, tuple[type[CanonicalModel], bool]]] = {
        "summary": (ReportSummary, False),
        "results": (RunResult, True),
    }

    report_id: str
    started_at: datetime
    finished_at: datetime
    overall_score: int
    status: ReportStatus
    summary: ReportSummary
    results: tuple[RunResult, ...]
    recommendations: tuple[str, ...] = ()
    total_duration_ms: int = 0
    cancelled: bool = False
    schema_version: int = REPORT_SCHEMA_VERSION

    def __post_init__(self) -> None:
        report_id = _as_str(self.report_id, "VerificationReport.report_id")
        try:
            domain_ids.validate_report_id(report_id)
        except ValueError as exc:
            _fail("VerificationReport.report_id", str(exc))
        if not isinstance(self.summary, ReportSummary):
            _fail("VerificationReport.summary", "expected ReportSummary")
        results = _as_models(self.results, RunResult, "VerificationReport.results")
        if len({item.unit_id for item in results}) != len(results):
            _fail("VerificationReport.results", "unit ids must be unique")
        recommendations = _as_texts(self.recommendations, "VerificationReport.recommendations")
        if len(set(recommendations)) != len(recommendations):
            _fail("VerificationReport.recommendations", "must be unique")
        _assign(
            self,
            report_id=report_id,
            started_at=_as_datetime(self.started_at, "VerificationReport.started_at"),
            finished_at=_as_datetime(self.finished_at, "VerificationReport.finished_at"),
            overall_score=_as_score(self.overall_score, "VerificationReport.overall_score"),
            status=_as_enum(ReportStatus, self.status, "VerificationReport.status"),
            results=results,
            recommendations=recommendations,
            total_duration_ms=_as_int(
                self.total_duration_ms, "VerificationReport.total_duration_ms", 0
            ),
            cancelled=_as_bool(self.cancelled, "VerificationReport.cancelled"),
            schema_version=_as_int(self.schema_version, "VerificationReport.schema_version", 1),
        )

    def result_for(self, unit_id: str) -> RunResult:
        for item in self.results:
            if item.unit_id == unit_id:
                return item
        raise KeyError(f"no result for unit {unit_id!r}")

    @property
    def auto_fixable_issues(self) -> tuple[tuple[RunResult, Issue], ...]:
        return tuple(
            (item, issue) for item in self.results for issue in item.issues if issue.auto_fixable
        )


@dataclass(frozen=True, slots=True)
class AutoFixSummary(CanonicalModel):
    """Counts produced by applying unit fix hooks to auto-fixable issues."""

    attempted: int = 0
    fixed: int = 0
    failed: int = 0
    unsupported: int = 0
    errors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in ("attempted", "fixed", "failed", "unsupported"):
            _as_int(getattr(self, name), f"AutoFixSummary.{name}", 0)
        if self.fixed + self.failed + self.unsupported != self.attempted:
            _fail("AutoFixSummary", "fixed + failed + unsupported must equal attempted")
        _assign(self, errors=_as_texts(self.errors, "AutoFixSummary.errors"))


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _assign(model: object, **values: object) -> None:
    for name, value in values.items():
        object.__setattr__(model, name, value)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _decode(raw: object, model: type[CanonicalModel], many: bool, path: str) -> object:
    def one(item: object, where: str) -> CanonicalModel:
        return item if isinstance(item, model) else model.from_dict(_as_mapping(item, where))

    if not many:
        return one(raw, path)
    return tuple(one(item, f"{path}[{index}]") for index, item in enumerate(_as_list(raw, path)))


def _as_mapping(value: object, path: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    if any(not isinstance(key, str) for key in value):
        _fail(path, "object keys must be strings")
    return dict(value)


def _as_list(value: object, path: str) -> list[object]:
    if not isinstance(value, (list, tuple)):
        _fail(path, f"expected array, got {type(value).__name__}")
    if len(value) > _MAX_ITEMS:
        _fail(path, f"too many items (>{_MAX_ITEMS})")
    return list(value)


def _as_str(value: object, path: str, *, min_len: int = 1) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    text = value.strip()
    if len(text) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(text) > _MAX_TEXT:
        _fail(path, f"must be <= {_MAX_TEXT} characters")
    return text


def _as_optional_str(value: object, path: str) -> str | None:
    return None if value is None else _as_str(value, path)


def _as_texts(value: object, path: str) -> tuple[str, ...]:
    items = _as_list(value, path)
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(items))


def _as_models(value: object, model: type[TModel], path: str) -> tuple[TModel, ...]:
    items = _as_list(value, path)
    for index, item in enumerate(items):
        if not isinstance(item, model):
            _fail(f"{path}[{index}]", f"expected {model.__name__}, got {type(item).__name__}")
    return tuple(cast("list[TModel]", items))


def _as_bool(value: object, path: str) -> bool:
    if not isinstance(value, bool):
        _fail(path, f"expected boolean, got {type(value).__name__}")
    return value


def _as_int(value: object, path: str, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_number(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    number = float(value)
    if not math.isfinite(number):
        _fail(path, "must be finite")
    return number


def _as_positive(value: object, path: str) -> float:
    number = _as_number(value, path)
    if number <= 0:
        _fail(path, "must be > 0")
    return number


def _as_score(value: object, path: str) -> int:
    """Int or float within ``0..100``, rounded half up."""
    number = _as_number(value, path)
    if not 0 <= number <= 100:
        _fail(path, f"must be within 0..100, got {value!r}")
    return round_half_up(number)


def _as_datetime(value: object, path: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime ({exc})")
    if not isinstance(value, datetime):
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")
    if value.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return value.astimezone(UTC)


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        try:
            return enum_type(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(str(item.value) for item in enum_type)
    _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _to_json(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, Enum):
        return cast("str", value.value)
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, (list, tuple)):
        return [_to_json(item, f"{path}[]") for item in value]
    if isinstance(value, CanonicalModel):
        return {
            item.name: _to_json(getattr(value, item.name), f"{path}.{item.name}")
            for item in fields(cast("Any", value))
        }
    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "AutoFixSummary",
    "CanonicalModel",
    "Issue",
    "IssueLocator",
    "JSONScalar",
    "JSONValue",
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
    "round_half_up",
    "utc_now",
]
