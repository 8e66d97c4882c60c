"""
nexus-verify — runtime config loader.

File: src/nexus_verify/config/loader.py
Last updated: 2026-10-19

Purpose
- Produce the effective config for one invocation.

Functional requirements
- Layering, lowest first: built-in defaults, ``nexus-verify.toml``, the selected profile,
  ``NEXUS_VERIFY_*`` environment variables, CLI overrides.
- Relative paths are resolved against the directory holding the config file.
- Every layer is validated through the schema before it is returned.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from nexus_verify.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "nexus-verify.toml"
ENV_PREFIX: Final[str] = "NEXUS_VERIFY_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_NOT_OVERRIDABLE: Final[frozenset[str]] = frozenset({"meta", "profiles"})


class ConfigLoadError(ValueError):
    """The config file is unreadable or an override has the wrong shape."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    search_dir: str | Path | None = None,
) -> dict[str, Any]:
    """Load the effective config.

    An explicit ``config_path`` must exist. Otherwise ``nexus-verify.toml`` is optional and
    looked up in ``search_dir`` (default: the working directory). ``cli_overrides`` maps
    dotted keys such as ``"scheduler.max_concurrency"`` to values.
    """

    env = os.environ if environ is None else environ
    if config_path is None:
        root = Path(search_dir).expanduser() if search_dir is not None else Path.cwd()
        source = (root / DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()

    from_file = _read_toml(source) if source.exists() else None
    if from_file is None and config_path is not None:
        raise ConfigLoadError(f"config file not found: {source}")

    config = assert_valid_config(merge_config(default_config(), from_file or {}))

    selected = (profile if profile is not None else env.get(f"{ENV_PREFIX}PROFILE", "")).strip()
    if selected:
        config = apply_profile_overlay(config, selected)

    config = merge_config(config, _env_layer(env))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    config = assert_valid_config(config, active_profile=selected or None)
    return assert_valid_config(normalize_paths(config, base_dir=source.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve path fields, including those inside profile overlays, against ``base_dir``."""

    resolved = merge_config({}, config)
    targets = list(PATH_FIELDS)
    profiles = resolved.get("profiles")
    if isinstance(profiles, dict):
        for name in sorted(profiles):
            targets.extend(("profiles", name, *field) for field in PATH_FIELDS)

    for field in targets:
        *parents, leaf = field
        node: Any = resolved
        for part in parents:
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, dict) and isinstance(node.get(leaf), str):
            node[leaf] = _resolve_path(node[leaf], base_dir)
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Canonical JSON of the redacted config; identical inputs give identical text."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for section, fields in sorted(DEFAULT_CONFIG.items()):
        if section in _NOT_OVERRIDABLE:
            continue
        for field, default in sorted(fields.items()):
            name = env_name_for_path((section, field))
            if name in env:
                layer.setdefault(section, {})[field] = _coerce(env[name], default, name)
    return layer


def _coerce(raw: str, default: object, name: str) -> object:
    text = raw.strip()
    if isinstance(default, bool):
        if text.lower() in _TRUTHY:
            return True
        if text.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    try:
        if isinstance(default, int):
            return int(text)
        if isinstance(default, float):
            return float(text)
    except ValueError as exc:
        expected = "an integer" if isinstance(default, int) else "a number"
        raise ConfigLoadError(f"{name} must be {expected}") from exc
    return text


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key in sorted(overrides):
        parts = [part for part in key.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        node = layer
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = overrides[key]
    return layer


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
