"""
nexus-verify — configuration schema and validation.

File: src/nexus_verify/config/schema.py
Last updated: 2026-10-19

Purpose
- Own the built-in defaults for ``nexus-verify.toml`` and the rules every section must obey.

What should be included in this file
- One declarative rule table per section (scheduler, scoring, paths, observability).
- Profile overlays validated with the same rules, as partial sections.
- Deterministic deep merge and redaction helpers shared with the loader.

Functional requirements
- Report every problem at once as ``(dotted path, message)`` pairs.
- Refuse secret-looking keys outright; secrets reach units through the environment.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal

from nexus_verify.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_UNIT_CATALOG,
    DEFAULT_UNIT_MAX_RETRIES,
    DEFAULT_UNIT_TIMEOUT_SECONDS,
    LOG_DIR,
    PASSING_SCORE,
    STATE_DIR,
    SUCCESS_SCORE,
    WARNING_SCORE,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive", "ci")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Relative values of these fields are resolved against the config file's directory.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "unit_catalog"),
    ("paths", "state_dir"),
    ("observability", "log_dir"),
)

_PROFILE_NAME = re.compile(r"^[a-z][a-z0-9_-]*$")
_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[^A-Za-z0-9]+")
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials"}
)
_SECRET_PAIRS: Final[frozenset[tuple[str, str]]] = frozenset(
    {("api", "key"), ("private", "key"), ("access", "key")}
)

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "scheduler": {
        "parallel": False,
        "max_concurrency": 0,
        "default_timeout_seconds": DEFAULT_UNIT_TIMEOUT_SECONDS,
        "default_max_retries": DEFAULT_UNIT_MAX_RETRIES,
        "run_timeout_seconds": 0.0,
    },
    "scoring": {
        "success_score": SUCCESS_SCORE,
        "warning_score": WARNING_SCORE,
        "passing_score": PASSING_SCORE,
    },
    "paths": {
        "unit_catalog": str(DEFAULT_UNIT_CATALOG),
        "state_dir": f"{STATE_DIR}/",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": f"{LOG_DIR}/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "scheduler": {"default_max_retries": 0},
            "scoring": {"passing_score": 80},
        },
        "permissive": {"scoring": {"passing_score": 60}},
        "ci": {
            "scheduler": {"parallel": True, "max_concurrency": 4, "run_timeout_seconds": 900.0},
            "observability": {"log_to_stdout": False},
        },
    },
}

_Kind = Literal["bool", "int", "float", "text", "level"]


@dataclass(frozen=True, slots=True)
class _Rule:
    kind: _Kind
    minimum: float | None = None
    maximum: float | None = None
    positive: bool = False


_SECTIONS: Final[dict[str, dict[str, _Rule]]] = {
    "scheduler": {
        "parallel": _Rule("bool"),
        "max_concurrency": _Rule("int", minimum=0),
        "default_timeout_seconds": _Rule("float", minimum=0.0, positive=True),
        "default_max_retries": _Rule("int", minimum=0),
        "run_timeout_seconds": _Rule("float", minimum=0.0),
    },
    "scoring": {
        "success_score": _Rule("int", minimum=0, maximum=100),
        "warning_score": _Rule("int", minimum=0, maximum=100),
        "passing_score": _Rule("int", minimum=0, maximum=100),
    },
    "paths": {
        "unit_catalog": _Rule("text"),
        "state_dir": _Rule("text"),
    },
    "observability": {
        "log_level": _Rule("level"),
        "log_dir": _Rule("text"),
        "log_to_stdout": _Rule("bool"),
        "redact_secrets": _Rule("bool"),
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config (``None`` when invalid) plus every issue found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when a config payload breaks one or more rules."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _Checker:
    """Accumulates issues while walking one payload."""

    def __init__(self) -> None:
        self.issues: list[ConfigValidationIssue] = []

    def fail(self, path: str, message: str) -> None:
        self.issues.append(ConfigValidationIssue(path=path, message=message))

    def mapping(self, value: object, path: str) -> dict[str, object] | None:
        if not isinstance(value, Mapping):
            self.fail(path, f"expected object, got {type(value).__name__}")
            return None
        accepted: dict[str, object] = {}
        for key, item in value.items():
            if isinstance(key, str):
                accepted[key] = item
            else:
                self.fail(path, f"object key must be string, got {type(key).__name__}")
        return accepted

    def keys(
        self,
        payload: Mapping[str, object],
        path: str,
        *,
        allowed: Sequence[str],
        required: bool,
    ) -> None:
        for key in sorted(payload):
            if key in allowed:
                continue
            if looks_secret(key):
                self.fail(
                    _join(path, key),
                    "embedded secret values are forbidden; "
                    "pass secrets to units via the environment",
                )
            else:
                self.fail(_join(path, key), "unknown field")
        if required:
            for key in sorted(set(allowed) - set(payload)):
                self.fail(_join(path, key), "missing required field")

    def section(
        self, name: str, payload: Mapping[str, object], path: str, *, partial: bool
    ) -> dict[str, Any]:
        rules = _SECTIONS[name]
        self.keys(payload, path, allowed=tuple(rules), required=not partial)
        checked: dict[str, Any] = {}
        for key, rule in rules.items():
            if key in payload:
                value = self.value(payload[key], rule, _join(path, key))
                if value is not None:
                    checked[key] = value
        return checked

    def value(self, raw: object, rule: _Rule, path: str) -> object | None:
        if rule.kind == "bool":
            if isinstance(raw, bool):
                return raw
            self.fail(path, f"expected boolean, got {type(raw).__name__}")
            return None
        if rule.kind in ("text", "level"):
            return self._text(raw, path, levels=rule.kind == "level")

        number: int | float
        if rule.kind == "int":
            if isinstance(raw, bool) or not isinstance(raw, int):
                self.fail(path, f"expected integer, got {type(raw).__name__}")
                return None
            number = raw
        else:
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                self.fail(path, f"expected number, got {type(raw).__name__}")
                return None
            number = float(raw)
            if not math.isfinite(number):
                self.fail(path, "must be finite")
                return None

        if rule.minimum is not None and number < rule.minimum:
            self.fail(path, f"must be >= {_render_bound(rule.minimum, rule.kind)}")
            return None
        if rule.maximum is not None and number > rule.maximum:
            self.fail(path, f"must be <= {_render_bound(rule.maximum, rule.kind)}")
            return None
        if rule.positive and number <= 0:
            self.fail(path, "must be > 0")
            return None
        return number

    def _text(self, raw: object, path: str, *, levels: bool) -> str | None:
        if not isinstance(raw, str):
            self.fail(path, f"expected string, got {type(raw).__name__}")
            return None
        text = raw.strip()
        if not text:
            self.fail(path, "must not be empty")
            return None
        if levels and text not in LOG_LEVELS:
            self.fail(
                path, f"invalid value {text!r}; expected one of: {', '.join(sorted(LOG_LEVELS))}"
            )
            return None
        if "\x00" in text:
            self.fail(path, "must not contain NUL bytes")
            return None
        return text


def default_config() -> dict[str, Any]:
    """Fresh deep copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade nexus-verify.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the nexus-verify runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested mappings merge key by key."""
    merged: dict[str, Any] = {key: copy.deepcopy(base[key]) for key in sorted(base)}
    for key in sorted(overlay):
        incoming = overlay[key]
        current = merged.get(key)
        if isinstance(incoming, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, incoming)
        elif isinstance(incoming, Mapping):
            merged[key] = merge_config({}, incoming)
        else:
            merged[key] = copy.deepcopy(incoming)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge the named profile's overlay onto ``config`` and validate the result."""
    selected = (profile or "").strip()
    if not selected:
        return merge_config({}, config)

    profiles = config.get("profiles")
    if not isinstance(profiles, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay = profiles.get(selected)
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(config, overlay))


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    checker = _Checker()
    root = checker.mapping(config, "<root>")
    if root is None:
        return ConfigValidationResult(config=None, issues=tuple(checker.issues))

    normalized = _check_root(checker, root)
    selected = active_profile.strip() if isinstance(active_profile, str) else ""
    if selected:
        profiles = normalized.get("profiles", {})
        if selected not in profiles:
            checker.fail("profiles", f"profile {selected!r} is not defined")
        else:
            _check_root(checker, merge_config(normalized, profiles[selected]))

    issues = tuple(checker.issues)
    return ConfigValidationResult(config=None if issues else normalized, issues=issues)


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with secret-looking keys replaced by ``<redacted>``."""
    if not isinstance(config, Mapping):
        return {}
    return {
        key: "<redacted>" if looks_secret(key) else _redact_item(config[key])
        for key in sorted(config)
    }


def looks_secret(key: str) -> bool:
    """True for keys like ``api_token`` or ``clientSecret``; ``*_env`` names are allowed."""
    words = [word for word in _WORD_BOUNDARY.split(key.strip()) if word]
    lowered = [word.lower() for word in words]
    if not lowered or lowered[-1] == "env":
        return False
    if any(word in _SECRET_WORDS for word in lowered):
        return True
    return any(pair in _SECRET_PAIRS for pair in zip(lowered, lowered[1:], strict=False))


def _check_root(checker: _Checker, payload: Mapping[str, object]) -> dict[str, Any]:
    checker.keys(payload, "", allowed=("meta", "profiles", *_SECTIONS), required=False)
    for key in ("meta", *_SECTIONS):
        if key not in payload:
            checker.fail(key, "missing required field")

    normalized: dict[str, Any] = {}
    meta = payload.get("meta")
    if meta is not None:
        section = checker.mapping(meta, "meta")
        if section is not None:
            normalized["meta"] = _check_meta(checker, section)

    for name in _SECTIONS:
        raw = payload.get(name)
        if raw is None:
            continue
        section = checker.mapping(raw, name)
        if section is not None:
            normalized[name] = checker.section(name, section, name, partial=False)

    profiles = payload.get("profiles")
    if profiles is not None:
        section = checker.mapping(profiles, "profiles")
        if section is not None:
            normalized["profiles"] = _check_profiles(checker, section)

    scoring = normalized.get("scoring", {})
    warning, success = scoring.get("warning_score"), scoring.get("success_score")
    if warning is not None and success is not None and warning > success:
        checker.fail("scoring.warning_score", "must be <= success_score")
    return normalized


def _check_meta(checker: _Checker, payload: Mapping[str, object]) -> dict[str, Any]:
    checker.keys(payload, "meta", allowed=("schema_version",), required=True)
    if "schema_version" not in payload:
        return {}
    version = checker.value(
        payload["schema_version"], _Rule("int", minimum=1), "meta.schema_version"
    )
    if not isinstance(version, int):
        return {}
    if version != ConfigSchemaVersion:
        checker.fail("meta.schema_version", migration_guidance(version))
    return {"schema_version": version}


def _check_profiles(checker: _Checker, payload: Mapping[str, object]) -> dict[str, Any]:
    profiles: dict[str, Any] = {}
    for name in sorted(payload):
        path = f"profiles.{name}"
        if not _PROFILE_NAME.fullmatch(name):
            checker.fail(path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = checker.mapping(payload[name], path)
        if overlay is None:
            continue
        checker.keys(overlay, path, allowed=tuple(_SECTIONS), required=False)
        checked: dict[str, Any] = {}
        for section_name in sorted(_SECTIONS):
            if section_name not in overlay:
                continue
            section_path = f"{path}.{section_name}"
            section = checker.mapping(overlay[section_name], section_path)
            if section is not None:
                checked[section_name] = checker.section(
                    section_name, section, section_path, partial=True
                )
        profiles[name] = checked
    return profiles


def _redact_item(value: object) -> object:
    if isinstance(value, Mapping):
        return redact_config(value)
    if isinstance(value, (list, tuple)):
        return [_redact_item(item) for item in value]
    return value


def _render_bound(bound: float, kind: _Kind) -> str:
    return str(int(bound)) if kind == "int" else str(float(bound))


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "looks_secret",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
