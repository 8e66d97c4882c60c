"""
nexus-verify — unit tests for the YAML unit catalog

File: tests/unit/verification_plane/test_catalog.py
Last updated: 2026-10-19

Purpose
- Validate catalog parsing, entry validation errors and registry construction.

What this test file should cover
- Scheduler defaults applied to entries that omit timeout/retries.
- Error messages naming the offending entry location.
- Entrypoint imports for functions and zero-argument classes.
- Command entries resolving their working directory next to the catalog.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from nexus_verify.verification_plane.catalog import (
    CatalogError,
    build_registry,
    import_entrypoint,
    load_catalog,
    load_registry,
    parse_catalog,
)
from nexus_verify.verification_plane.command_unit import CommandUnit


def _write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_load_catalog_parses_entries_in_file_order(tmp_path: Path) -> None:
    catalog = _write(
        tmp_path / "units.yaml",
        """
        schema_version: 1
        units:
          - id: schema
            name: Schema Validator
            priority: 1
            category: schema
            command: [python3, check.py]
          - id: wiring
            depends_on: [schema]
            timeout_seconds: 5
            max_retries: 0
            weight: 2
            enabled: false
            command: [python3, wiring.py]
            fix_command: [python3, wiring.py, --fix]
            cwd: tools
        """,
    )

    entries = load_catalog(catalog, default_timeout_seconds=12.0, default_max_retries=1)

    assert [entry.spec.unit_id for entry in entries] == ["schema", "wiring"]
    schema, wiring = entries
    assert schema.spec.name == "Schema Validator"
    assert (schema.spec.timeout_seconds, schema.spec.max_retries) == (12.0, 1)
    assert schema.cwd == tmp_path.resolve().as_posix()
    assert wiring.spec.depends_on == ("schema",)
    assert (wiring.spec.timeout_seconds, wiring.spec.max_retries) == (5.0, 0)
    assert wiring.spec.weight == 2.0
    assert wiring.spec.enabled is False
    assert wiring.fix_command == ("python3", "wiring.py", "--fix")
    assert wiring.cwd == (tmp_path.resolve() / "tools").as_posix()


def test_missing_catalog_file(tmp_path: Path) -> None:
    with pytest.raises(CatalogError, match="unit catalog not found"):
        load_catalog(tmp_path / "absent.yaml")


def test_invalid_yaml_is_reported(tmp_path: Path) -> None:
    catalog = _write(tmp_path / "units.yaml", "schema_version: 1\nunits: [\n")

    with pytest.raises(CatalogError, match="invalid YAML"):
        load_catalog(catalog)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ([], "expected mapping"),
        ({"schema_version": 2, "units": []}, "schema_version: expected 1, got 2"),
        ({"schema_version": 1}, "units: expected a sequence"),
        ({"schema_version": 1, "units": [], "extra": 1}, "unexpected top-level fields"),
        ({"schema_version": 1, "units": [{"command": ["x"]}]}, "missing required fields"),
        (
            {"schema_version": 1, "units": [{"id": "a", "command": ["x"], "shell": True}]},
            r"units\[0\]: unexpected fields: \['shell'\]",
        ),
        (
            {"schema_version": 1, "units": [{"id": "a"}]},
            "exactly one of 'entrypoint' or 'command' is required",
        ),
        (
            {"schema_version": 1, "units": [{"id": "a", "entrypoint": "m:f", "command": ["x"]}]},
            "exactly one of 'entrypoint' or 'command' is required",
        ),
        (
            {
                "schema_version": 1,
                "units": [{"id": "a", "entrypoint": "m:f", "fix_command": ["x"]}],
            },
            "fix_command: only supported together with 'command'",
        ),
        ({"schema_version": 1, "units": [{"id": "a", "command": []}]}, "non-empty list"),
        (
            {"schema_version": 1, "units": [{"id": "a", "command": ["x"], "depends_on": "b"}]},
            "depends_on: expected a sequence",
        ),
        (
            {"schema_version": 1, "units": [{"id": "a", "command": ["x"], "timeout_seconds": 0}]},
            r"units\[0\]: .*timeout_seconds",
        ),
        (
            {"schema_version": 1, "units": [{"id": "bad id", "command": ["x"]}]},
            r"units\[0\]",
        ),
    ],
)
def test_malformed_catalogs_are_rejected(payload: object, message: str) -> None:
    with pytest.raises(CatalogError, match=message):
        parse_catalog(payload, source="units.yaml")


def test_duplicate_ids_name_the_second_entry() -> None:
    payload = {
        "schema_version": 1,
        "units": [
            {"id": "lint", "command": ["a"]},
            {"id": "lint", "command": ["b"]},
        ],
    }

    with pytest.raises(CatalogError, match=r"units\[1\]\.id: duplicate unit id 'lint'"):
        parse_catalog(payload, source="units.yaml")


def test_unknown_dependencies_are_left_for_the_resolver() -> None:
    payload = {"schema_version": 1, "units": [{"id": "a", "command": ["x"], "depends_on": ["z"]}]}

    [entry] = parse_catalog(payload)

    assert entry.spec.depends_on == ("z",)
    assert entry.cwd is None


def test_entrypoints_resolve_functions_and_classes(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(
        tmp_path / "catalog_fixture_units.py",
        """
        from nexus_verify.domain.models import Outcome


        def lint(context):
            return Outcome(score=93)


        class Formatter:
            def verify(self, context):
                return Outcome(score=88)


        class NeedsArgs:
            def __init__(self, path):
                self.path = path

            def verify(self, context):
                return Outcome(score=1)


        NOT_A_UNIT = 42
        """,
    )
    monkeypatch.syspath_prepend(str(tmp_path))

    function_unit = import_entrypoint("catalog_fixture_units:lint")
    class_unit = import_entrypoint("catalog_fixture_units:Formatter")

    assert callable(function_unit)
    assert type(class_unit).__name__ == "Formatter"
    with pytest.raises(CatalogError, match="constructible without arguments"):
        import_entrypoint("catalog_fixture_units:NeedsArgs")
    with pytest.raises(CatalogError, match="has no verify"):
        import_entrypoint("catalog_fixture_units:NOT_A_UNIT")
    with pytest.raises(CatalogError, match="missing attribute 'ghost'"):
        import_entrypoint("catalog_fixture_units:ghost")


@pytest.mark.parametrize(
    ("reference", "message"),
    [
        ("no_colon", "must look like 'module:attribute'"),
        (":attr", "must look like 'module:attribute'"),
        ("nexus_verify_missing_module:attr", "cannot import"),
    ],
)
def test_malformed_entrypoints(reference: str, message: str) -> None:
    with pytest.raises(CatalogError, match=message):
        import_entrypoint(reference)


def test_load_registry_builds_command_units(tmp_path: Path) -> None:
    catalog = _write(
        tmp_path / "units.yaml",
        """
        schema_version: 1
        units:
          - id: beta
            command: [python3, beta.py]
          - id: alpha
            priority: 1
            command: [python3, alpha.py]
            fix_command: [python3, alpha.py, --fix]
        """,
    )

    registry = load_registry(catalog)

    assert registry.unit_ids() == ("alpha", "beta")
    alpha = registry.get("alpha")
    assert isinstance(alpha.unit, CommandUnit)
    assert alpha.unit.argv == ("python3", "alpha.py")
    assert alpha.supports_fix
    assert not registry.get("beta").supports_fix


def test_build_registry_rejects_ids_already_registered(tmp_path: Path) -> None:
    entries = parse_catalog({"schema_version": 1, "units": [{"id": "a", "command": ["x"]}]})
    registry = build_registry(entries)

    with pytest.raises(CatalogError, match="duplicate unit id: 'a'"):
        build_registry(entries, registry=registry)
