"""Stable constants shared across verification planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
UNIT_CATALOG_SCHEMA_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")
DEFAULT_UNIT_CATALOG: Final[PurePosixPath] = PurePosixPath("units.yaml")

# Score thresholds (0..100 scale).
SUCCESS_SCORE: Final[int] = 80
WARNING_SCORE: Final[int] = 60
PASSING_SCORE: Final[int] = 70

# Unit defaults.
DEFAULT_UNIT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_UNIT_MAX_RETRIES: Final[int] = 2
DEFAULT_UNIT_PRIORITY: Final[int] = 100
DEFAULT_UNIT_CATEGORY: Final[str] = "general"

# Skip reasons recorded on results that never executed.
SKIP_REASON_DISABLED: Final[str] = "unit disabled"
SKIP_REASON_CANCELLED: Final[str] = "run cancelled"
SKIP_REASON_DEPENDENCY_PREFIX: Final[str] = "dependency not satisfied"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_UNIT_CATALOG",
    "DEFAULT_UNIT_CATEGORY",
    "DEFAULT_UNIT_MAX_RETRIES",
    "DEFAULT_UNIT_PRIORITY",
    "DEFAULT_UNIT_TIMEOUT_SECONDS",
    "LOG_DIR",
    "PASSING_SCORE",
    "REPORT_SCHEMA_VERSION",
    "SKIP_REASON_CANCELLED",
    "SKIP_REASON_DEPENDENCY_PREFIX",
    "SKIP_REASON_DISABLED",
    "STATE_DIR",
    "SUCCESS_SCORE",
    "UNIT_CATALOG_SCHEMA_VERSION",
    "WARNING_SCORE",
]
