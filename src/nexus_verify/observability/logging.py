"""
nexus-verify — structured run logging

File: src/nexus_verify/observability/logging.py
Last updated: 2026-10-19

Purpose
- Write one JSON object per line to ``<log_dir>/<run_id>/verify.jsonl`` for every run.
- Route ``structlog`` events (the library code's logger) through the same sink.

Functional requirements
- Every line carries ``timestamp`` (UTC, ``Z``), ``level``, ``logger``, ``message`` and the
  bound correlation ids (``run_id``, ``report_id``, ``unit_id``, ``attempt``) at top level.
- Remaining event keys are nested under ``fields``.
- Secret-looking keys and inline credentials are redacted unless disabled.
- Only one run sink is active per process; configuring a new one closes the previous one.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import math
import re
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

REDACTED: Final[str] = "***REDACTED***"
LOG_FILENAME: Final[str] = "verify.jsonl"
ROOT_LOGGER_NAME: Final[str] = "nexus_verify"

CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "report_id", "unit_id", "attempt")

_SECRET_KEY_MARKERS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)
_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord has; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "nexus_verify_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    log_filename: str = LOG_FILENAME
    log_to_stdout: bool = False
    redact_secrets: bool = True


@dataclass(slots=True)
class StructuredLoggingHandle:
    """Owns the handlers of one run sink; ``shutdown`` is idempotent."""

    logger: logging.Logger
    run_id: str
    log_path: Path
    handlers: tuple[logging.Handler, ...]
    _closed: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self) -> None:
        for handler in self.handlers:
            handler.flush()

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            for handler in self.handlers:
                self.logger.removeHandler(handler)
                handler.flush()
                handler.close()
            self._closed = True


class _CorrelationFilter(logging.Filter):
    """Snapshot the caller's correlation ids onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        bound = get_correlation_context()
        if bound:
            record.correlation = bound
        return True


class JsonLineFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_text(self._redactor(record.getMessage())),
        }
        event.update(sorted(_correlation_for(record, self._run_id).items()))

        extras = {
            key: _jsonable(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
            and key not in CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._redactor(extras)
        if record.exc_info:
            event["exception"] = _as_text(self._redactor(self.formatException(record.exc_info)))
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> StructuredLoggingHandle:
    """Open the run sink described by an ``[observability]`` section and wire structlog."""
    section = dict(observability_config or {})
    base_dir = log_dir if log_dir is not None else section.get("log_dir", "logs")
    level = section.get("log_level", "INFO")
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=base_dir if isinstance(base_dir, (str, Path)) else "logs",
            level=level if isinstance(level, (str, int)) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
            redact_secrets=bool(section.get("redact_secrets", True)),
        )
    )
    configure_structlog()
    return handle


def configure_structlog() -> None:
    """Send structlog events to stdlib logging; keyword arguments become ``extra``."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    run_id = _require_text(config.run_id, "run_id")
    logger_name = _require_text(config.logger_name, "logger_name")
    filename = _require_text(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not contain path separators")
    level = _parse_level(config.level)

    _close_active()

    log_path = Path(config.base_log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    redactor: LogRedactor = default_log_redactor if config.redact_secrets else _keep
    formatter = JsonLineFormatter(run_id=run_id, redactor=redactor)
    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        handlers.append(logging.StreamHandler())

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(_CorrelationFilter())
        logger.addHandler(handler)

    handle = StructuredLoggingHandle(
        logger=logger, run_id=run_id, log_path=log_path, handlers=tuple(handlers)
    )
    global _active, _atexit_hooked
    with _active_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Close ``handle`` (default: the active sink)."""
    global _active
    target = handle if handle is not None else get_active_logging_handle()
    if target is None:
        return
    target.shutdown()
    with _active_lock:
        if _active is target:
            _active = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**ids: str | None) -> Iterator[None]:
    """Bind correlation ids for log lines emitted inside the block; ``None`` unbinds."""
    bound = get_correlation_context()
    for key, value in ids.items():
        if value is None:
            bound.pop(key, None)
        else:
            bound[key] = _require_text(value, f"correlation value for {key}")
    token = _correlation.set(tuple(bound.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under secret-looking keys and inline ``key=value``/Bearer credentials."""
    if isinstance(value, str):
        masked = _INLINE_SECRET.sub(lambda match: f"{match[1]}{match[2]}{REDACTED}", value)
        return _BEARER.sub(f"Bearer {REDACTED}", masked)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_secret_key(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    return value


def _close_active() -> None:
    global _active
    with _active_lock:
        previous, _active = _active, None
    if previous is not None:
        previous.shutdown()


def _correlation_for(record: logging.LogRecord, run_id: str) -> dict[str, str]:
    merged = {"run_id": run_id}
    bound = getattr(record, "correlation", None)
    if isinstance(bound, Mapping):
        merged.update(bound)
    for key in CORRELATION_KEYS:
        value = getattr(record, key, None)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            merged[key] = str(value).strip()
    return merged


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEY_MARKERS)


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_jsonable(item) for item in value]
        return sorted(items, key=repr) if isinstance(value, (set, frozenset)) else items
    if isinstance(value, Path):
        return value.as_posix()
    return str(value)


def _as_text(value: JSONValue) -> str:
    return value if isinstance(value, str) else json.dumps(value, sort_keys=True)


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _keep(value: JSONValue) -> JSONValue:
    return value


def _require_text(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string")
    return value.strip()


def _parse_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    known = logging.getLevelNamesMapping()
    name = level.strip().upper()
    if name not in known:
        raise ValueError(f"unsupported logging level {level!r}")
    return known[name]


__all__ = [
    "CORRELATION_KEYS",
    "JSONValue",
    "JsonLineFormatter",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
