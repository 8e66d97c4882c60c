"""
nexus-verify — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Validate structured JSON logging with redaction, correlation metadata, and structlog routing.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation and scoping.
- structlog events landing in the per-run JSON-lines sink.
- Sink replacement and shutdown behavior.

Functional requirements
- Offline operation.

Non-functional requirements
- Deterministic and non-flaky.
"""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING

import pytest
import structlog

from nexus_verify.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [
        json.loads(line)
        for line in path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]


def test_log_lines_are_json_with_run_id_and_fields(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-1", base_log_dir=tmp_path))

    handle.logger.info("unit finished", extra={"score": 90, "status": "success"})
    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "run-1" / "verify.jsonl"
    [event] = _read_json_lines(handle.log_path)
    assert event["message"] == "unit finished"
    assert event["level"] == "INFO"
    assert event["run_id"] == "run-1"
    assert event["fields"] == {"score": 90, "status": "success"}
    assert str(event["timestamp"]).endswith("Z")


def test_secrets_are_redacted_in_messages_and_fields(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-2", base_log_dir=tmp_path))

    handle.logger.info(
        "calling api with token=abc123",
        extra={"api_key": "sk-live", "detail": "sent Bearer xyz.789"},
    )
    shutdown_logging(handle)

    [event] = _read_json_lines(handle.log_path)
    text = json.dumps(event)
    assert "abc123" not in text
    assert "sk-live" not in text
    assert "xyz.789" not in text
    assert event["fields"]["api_key"] == "***REDACTED***"  # type: ignore[index]


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-3", base_log_dir=tmp_path, redact_secrets=False)
    )

    handle.logger.info("password=visible")
    shutdown_logging(handle)

    [event] = _read_json_lines(handle.log_path)
    assert event["message"] == "password=visible"


def test_correlation_scope_binds_and_restores_fields(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-4", base_log_dir=tmp_path))

    with correlation_scope(report_id="rpt-1"):
        with correlation_scope(unit_id="lint", attempt="2"):
            assert get_correlation_context() == {
                "report_id": "rpt-1",
                "unit_id": "lint",
                "attempt": "2",
            }
            handle.logger.info("inner")
        handle.logger.info("outer")
    assert get_correlation_context() == {}
    shutdown_logging(handle)

    inner, outer = _read_json_lines(handle.log_path)
    assert (inner["unit_id"], inner["attempt"], inner["report_id"]) == ("lint", "2", "rpt-1")
    assert "unit_id" not in outer
    assert outer["report_id"] == "rpt-1"


def test_structlog_events_are_routed_into_the_sink(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "INFO", "log_dir": str(tmp_path), "redact_secrets": True},
        run_id="run-5",
    )

    logger = structlog.get_logger("nexus_verify.verification_plane.executor")
    logger.info("unit_finished", unit_id="schema", status="success", score=95)
    logger.debug("hidden_below_level")
    shutdown_logging(handle)

    [event] = _read_json_lines(handle.log_path)
    assert event["message"] == "unit_finished"
    assert event["logger"] == "nexus_verify.verification_plane.executor"
    assert event["unit_id"] == "schema"
    assert event["fields"] == {"score": 95, "status": "success"}


def test_setup_replaces_previous_active_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(LoggingConfig(run_id="run-a", base_log_dir=tmp_path))
    second = setup_structured_logging(LoggingConfig(run_id="run-b", base_log_dir=tmp_path))

    assert first.is_shutdown
    assert get_active_logging_handle() is second
    shutdown_logging()
    assert second.is_shutdown
    assert get_active_logging_handle() is None


def test_concurrent_threads_produce_complete_lines(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-6", base_log_dir=tmp_path))

    def emit(worker: int) -> None:
        for index in range(25):
            handle.logger.info("tick", extra={"worker": worker, "index": index})

    threads = [threading.Thread(target=emit, args=(worker,)) for worker in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    assert len(events) == 100
    assert all(event["message"] == "tick" for event in events)


@pytest.mark.parametrize(
    ("config", "message"),
    [
        (LoggingConfig(run_id=" "), "run_id"),
        (LoggingConfig(run_id="r", log_filename="a/b.jsonl"), "path separators"),
        (LoggingConfig(run_id="r", level="LOUD"), "unsupported logging level"),
    ],
)
def test_invalid_logging_config_is_rejected(config: LoggingConfig, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        setup_structured_logging(config)


def test_default_redactor_handles_nested_values() -> None:
    redacted = default_log_redactor({"outer": {"client_secret": "s"}, "items": ["token: t0k"]})

    assert redacted == {
        "outer": {"client_secret": "***REDACTED***"},
        "items": ["token:***REDACTED***"],
    }
