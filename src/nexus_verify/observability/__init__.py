"""Public observability primitives: structured JSON-lines logging and correlation context."""

from nexus_verify.observability.logging import (
    LoggingConfig,
    LogRedactor,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
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
