"""
nexus-verify — YAML unit catalog

File: src/nexus_verify/verification_plane/catalog.py
Last updated: 2026-10-19

Purpose
- Load ``units.yaml`` into ``UnitSpec`` records plus the unit implementation each entry binds.

Functional requirements
- Top level is a mapping with ``schema_version`` and a ``units`` sequence.
- Each entry names exactly one of ``entrypoint`` (``module:attribute``) or ``command`` (argv).
- Unknown fields, missing ids and bad types raise ``CatalogError`` naming the entry location.
- Unit timeout/retry fall back to the configured scheduler defaults.
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final, cast

import yaml

from nexus_verify.constants import (
    DEFAULT_UNIT_CATEGORY,
    DEFAULT_UNIT_MAX_RETRIES,
    DEFAULT_UNIT_PRIORITY,
    DEFAULT_UNIT_TIMEOUT_SECONDS,
    UNIT_CATALOG_SCHEMA_VERSION,
)
from nexus_verify.domain.models import UnitSpec
from nexus_verify.planning.resolver import DuplicateUnitError
from nexus_verify.verification_plane.command_unit import CommandUnit
from nexus_verify.verification_plane.units import Unit, UnitRegistry

_ALLOWED_TOP_LEVEL_FIELDS: Final[frozenset[str]] = frozenset({"schema_version", "units"})
_REQUIRED_ENTRY_FIELDS: Final[frozenset[str]] = frozenset({"id"})
_ALLOWED_ENTRY_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "name",
        "description",
        "priority",
        "timeout_seconds",
        "max_retries",
        "depends_on",
        "enabled",
        "weight",
        "category",
        "entrypoint",
        "command",
        "fix_command",
        "cwd",
    }
)


class CatalogError(ValueError):
    """Raised when the unit catalog cannot be read or is malformed."""


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    """One parsed ``units`` entry: scheduling spec plus its implementation binding."""

    spec: UnitSpec
    entrypoint: str | None = None
    command: tuple[str, ...] | None = None
    fix_command: tuple[str, ...] | None = None
    cwd: str | None = None

    def build_unit(self) -> Unit:
        if self.command is not None:
            return CommandUnit(self.command, cwd=self.cwd, fix_argv=self.fix_command)
        if self.entrypoint is None:
            raise CatalogError(f"unit {self.spec.unit_id!r} has no entrypoint or command")
        return import_entrypoint(self.entrypoint)


def load_catalog(
    path: str | Path,
    *,
    default_timeout_seconds: float = DEFAULT_UNIT_TIMEOUT_SECONDS,
    default_max_retries: int = DEFAULT_UNIT_MAX_RETRIES,
) -> tuple[CatalogEntry, ...]:
    """Parse a catalog file into entries in file order."""
    catalog_path = Path(path)
    try:
        with catalog_path.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except FileNotFoundError as exc:
        raise CatalogError(f"unit catalog not found: {catalog_path}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"{catalog_path}: invalid YAML ({exc})") from exc
    except OSError as exc:
        raise CatalogError(f"unable to read unit catalog {catalog_path}: {exc}") from exc

    return parse_catalog(
        loaded,
        source=catalog_path.name,
        base_dir=catalog_path.resolve().parent,
        default_timeout_seconds=default_timeout_seconds,
        default_max_retries=default_max_retries,
    )


def parse_catalog(
    payload: object,
    *,
    source: str = "<catalog>",
    base_dir: Path | None = None,
    default_timeout_seconds: float = DEFAULT_UNIT_TIMEOUT_SECONDS,
    default_max_retries: int = DEFAULT_UNIT_MAX_RETRIES,
) -> tuple[CatalogEntry, ...]:
    root = _as_string_key_mapping(payload, source)
    unknown = sorted(set(root) - _ALLOWED_TOP_LEVEL_FIELDS)
    if unknown:
        raise CatalogError(f"{source}: unexpected top-level fields: {unknown}")

    schema_version = root.get("schema_version")
    if schema_version != UNIT_CATALOG_SCHEMA_VERSION:
        raise CatalogError(
            f"{source}.schema_version: expected {UNIT_CATALOG_SCHEMA_VERSION}, "
            f"got {schema_version!r}"
        )

    raw_units = root.get("units")
    if not isinstance(raw_units, list):
        raise CatalogError(f"{source}.units: expected a sequence, got {type(raw_units).__name__}")

    entries: list[CatalogEntry] = []
    seen: set[str] = set()
    for index, item in enumerate(raw_units):
        location = f"{source}.units[{index}]"
        entry = _parse_entry(
            item,
            location=location,
            base_dir=base_dir,
            default_timeout_seconds=default_timeout_seconds,
            default_max_retries=default_max_retries,
        )
        if entry.spec.unit_id in seen:
            raise CatalogError(f"{location}.id: duplicate unit id {entry.spec.unit_id!r}")
        seen.add(entry.spec.unit_id)
        entries.append(entry)
    return tuple(entries)


def build_registry(
    entries: Sequence[CatalogEntry],
    *,
    registry: UnitRegistry | None = None,
) -> UnitRegistry:
    """Materialize unit implementations and register them in catalog order."""
    target = registry if registry is not None else UnitRegistry()
    for entry in entries:
        try:
            target.register(entry.spec, entry.build_unit())
        except DuplicateUnitError as exc:
            raise CatalogError(str(exc)) from exc
    return target


def load_registry(
    path: str | Path,
    *,
    default_timeout_seconds: float = DEFAULT_UNIT_TIMEOUT_SECONDS,
    default_max_retries: int = DEFAULT_UNIT_MAX_RETRIES,
) -> UnitRegistry:
    return build_registry(
        load_catalog(
            path,
            default_timeout_seconds=default_timeout_seconds,
            default_max_retries=default_max_retries,
        )
    )


def import_entrypoint(reference: str) -> Unit:
    """Resolve ``"package.module:attr.path"``; classes are instantiated without arguments."""
    module_name, separator, attribute_path = reference.partition(":")
    if not separator or not module_name or not attribute_path:
        raise CatalogError(f"entrypoint {reference!r} must look like 'module:attribute'")

    try:
        target: object = importlib.import_module(module_name)
    except ImportError as exc:
        raise CatalogError(
            f"entrypoint {reference!r}: cannot import {module_name!r} ({exc})"
        ) from exc

    for part in attribute_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise CatalogError(f"entrypoint {reference!r}: missing attribute {part!r}") from exc

    if isinstance(target, type):
        try:
            target = target()
        except TypeError as exc:
            raise CatalogError(
                f"entrypoint {reference!r}: class must be constructible without arguments"
            ) from exc

    if not (callable(target) or callable(getattr(target, "verify", None))):
        raise CatalogError(f"entrypoint {reference!r} is not callable and has no verify()")
    return cast("Unit", target)


def _parse_entry(
    value: object,
    *,
    location: str,
    base_dir: Path | None,
    default_timeout_seconds: float,
    default_max_retries: int,
) -> CatalogEntry:
    parsed = _as_string_key_mapping(value, location)
    keys = set(parsed)

    missing = sorted(_REQUIRED_ENTRY_FIELDS - keys)
    if missing:
        raise CatalogError(f"{location}: missing required fields: {missing}")

    unknown = sorted(keys - _ALLOWED_ENTRY_FIELDS)
    if unknown:
        raise CatalogError(
            f"{location}: unexpected fields: {unknown}; allowed fields: "
            f"{sorted(_ALLOWED_ENTRY_FIELDS)}"
        )

    has_entrypoint = "entrypoint" in parsed
    has_command = "command" in parsed
    if has_entrypoint == has_command:
        raise CatalogError(f"{location}: exactly one of 'entrypoint' or 'command' is required")

    entrypoint = (
        _as_non_empty_str(parsed["entrypoint"], f"{location}.entrypoint")
        if has_entrypoint
        else None
    )
    command = _as_argv(parsed["command"], f"{location}.command") if has_command else None
    fix_command = (
        _as_argv(parsed["fix_command"], f"{location}.fix_command")
        if "fix_command" in parsed
        else None
    )
    if fix_command is not None and command is None:
        raise CatalogError(f"{location}.fix_command: only supported together with 'command'")

    cwd: str | None = None
    if "cwd" in parsed:
        raw_cwd = Path(_as_non_empty_str(parsed["cwd"], f"{location}.cwd"))
        if not raw_cwd.is_absolute() and base_dir is not None:
            raw_cwd = base_dir / raw_cwd
        cwd = raw_cwd.as_posix()
    elif command is not None and base_dir is not None:
        cwd = base_dir.as_posix()

    depends_on = parsed.get("depends_on", [])
    if not isinstance(depends_on, list):
        raise CatalogError(
            f"{location}.depends_on: expected a sequence, got {type(depends_on).__name__}"
        )

    try:
        spec = UnitSpec(
            unit_id=parsed["id"],  # type: ignore[arg-type]
            name=parsed.get("name", ""),  # type: ignore[arg-type]
            description=parsed.get("description", ""),  # type: ignore[arg-type]
            priority=parsed.get("priority", DEFAULT_UNIT_PRIORITY),  # type: ignore[arg-type]
            timeout_seconds=parsed.get(  # type: ignore[arg-type]
                "timeout_seconds", default_timeout_seconds
            ),
            max_retries=parsed.get("max_retries", default_max_retries),  # type: ignore[arg-type]
            depends_on=tuple(depends_on),
            enabled=parsed.get("enabled", True),  # type: ignore[arg-type]
            weight=parsed.get("weight", 1.0),  # type: ignore[arg-type]
            category=parsed.get("category", DEFAULT_UNIT_CATEGORY),  # type: ignore[arg-type]
        )
    except ValueError as exc:
        raise CatalogError(f"{location}: {exc}") from exc

    return CatalogEntry(
        spec=spec,
        entrypoint=entrypoint,
        command=command,
        fix_command=fix_command,
        cwd=cwd,
    )


def _as_string_key_mapping(value: object, location: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise CatalogError(f"{location}: expected mapping, got {type(value).__name__}")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise CatalogError(f"{location}: mapping keys must be strings")
        parsed[key] = item
    return parsed


def _as_non_empty_str(value: object, location: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CatalogError(f"{location}: expected non-empty string")
    return value.strip()


def _as_argv(value: object, location: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not value:
        raise CatalogError(f"{location}: expected a non-empty list of strings")
    argv: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item:
            raise CatalogError(f"{location}[{index}]: expected non-empty string")
        argv.append(item)
    return tuple(argv)


__all__ = [
    "CatalogEntry",
    "CatalogError",
    "build_registry",
    "import_entrypoint",
    "load_catalog",
    "load_registry",
    "parse_catalog",
]
