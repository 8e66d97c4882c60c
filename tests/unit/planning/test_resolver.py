"""
nexus-verify — unit tests for the dependency resolver

File: tests/unit/planning/test_resolver.py
Last updated: 2026-10-19

Purpose
- Validate wave partitioning, structural error detection, and deterministic ordering.

What this test file should cover
- Kahn waves (longest path from a root) and (priority, unit_id) ordering inside a wave.
- Duplicate ids, unknown dependencies, self-loops and longer cycles.
- Property checks over random DAGs: every dependency sits in an earlier wave and
  resolution is idempotent.

Functional requirements
- Offline and deterministic.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from nexus_verify.domain.models import UnitSpec
from nexus_verify.planning.resolver import (
    CyclicDependencyError,
    DuplicateUnitError,
    StructuralError,
    UnknownDependencyError,
    build_graph,
    resolve,
    wave_index,
)


def _spec(unit_id: str, *depends_on: str, priority: int = 100) -> UnitSpec:
    return UnitSpec(unit_id=unit_id, depends_on=depends_on, priority=priority)


def _wave_ids(waves: tuple[tuple[UnitSpec, ...], ...]) -> list[list[str]]:
    return [[spec.unit_id for spec in wave] for wave in waves]


def test_empty_catalog_has_no_waves() -> None:
    assert resolve([]) == ()


def test_independent_units_share_wave_zero() -> None:
    waves = resolve([_spec("b"), _spec("a"), _spec("c")])

    assert _wave_ids(waves) == [["a", "b", "c"]]


def test_chain_and_diamond_use_longest_path_layering() -> None:
    specs = [
        _spec("lint"),
        _spec("schema", "lint"),
        _spec("types", "lint"),
        _spec("integration", "schema", "types"),
        _spec("late", "lint", "integration"),
    ]

    waves = resolve(specs)

    assert _wave_ids(waves) == [["lint"], ["schema", "types"], ["integration"], ["late"]]
    assert wave_index(waves) == {
        "lint": 0,
        "schema": 1,
        "types": 1,
        "integration": 2,
        "late": 3,
    }


def test_wave_members_are_ordered_by_priority_then_id() -> None:
    specs = [
        _spec("zeta", priority=1),
        _spec("alpha", priority=5),
        _spec("beta", priority=1),
    ]

    assert _wave_ids(resolve(specs)) == [["beta", "zeta", "alpha"]]


def test_duplicate_unit_id_is_rejected() -> None:
    with pytest.raises(DuplicateUnitError) as excinfo:
        resolve([_spec("a"), _spec("a")])

    assert excinfo.value.unit_id == "a"
    assert isinstance(excinfo.value, StructuralError)


def test_unknown_dependency_names_both_units() -> None:
    with pytest.raises(UnknownDependencyError) as excinfo:
        resolve([_spec("a", "ghost")])

    assert excinfo.value.unit_id == "a"
    assert excinfo.value.missing_id == "ghost"
    assert "ghost" in str(excinfo.value)


def test_unknown_dependency_is_reported_before_cycles() -> None:
    with pytest.raises(UnknownDependencyError):
        resolve([_spec("a", "b"), _spec("b", "a", "missing")])


def test_self_dependency_is_a_cycle() -> None:
    with pytest.raises(CyclicDependencyError) as excinfo:
        resolve([_spec("a", "a")])

    assert excinfo.value.cycle_path == ("a", "a")


def test_cycle_path_follows_depends_on_edges() -> None:
    specs = [_spec("a", "b"), _spec("b", "c"), _spec("c", "a"), _spec("root")]

    with pytest.raises(CyclicDependencyError) as excinfo:
        resolve(specs)

    path = excinfo.value.cycle_path
    assert path[0] == path[-1]
    assert set(path) == {"a", "b", "c"}
    by_id = {spec.unit_id: spec for spec in specs}
    for current, following in zip(path, path[1:], strict=False):
        assert following in by_id[current].depends_on
    assert "dependency cycle detected" in str(excinfo.value)


def test_build_graph_adds_dependency_edges() -> None:
    graph = build_graph([_spec("a"), _spec("b", "a")])

    assert graph.edges == (("a", "b"),)
    assert graph.get_dependencies("b") == ("a",)


def test_resolve_rejects_non_spec_items() -> None:
    with pytest.raises(TypeError):
        resolve([{"unit_id": "a"}])  # type: ignore[list-item]


@st.composite
def _dags(draw: st.DrawFn) -> list[UnitSpec]:
    size = draw(st.integers(min_value=1, max_value=12))
    ids = [f"u{index:02d}" for index in range(size)]
    specs: list[UnitSpec] = []
    for index, unit_id in enumerate(ids):
        # Edges only point to earlier ids, so the graph is acyclic.
        deps = draw(st.sets(st.sampled_from(ids[:index]), max_size=3)) if index else set()
        priority = draw(st.integers(min_value=0, max_value=3))
        specs.append(_spec(unit_id, *sorted(deps), priority=priority))
    return draw(st.permutations(specs))


@settings(max_examples=75, deadline=None)
@given(_dags())
def test_every_dependency_sits_in_an_earlier_wave(specs: list[UnitSpec]) -> None:
    waves = resolve(specs)
    index = wave_index(waves)

    assert sorted(index) == sorted(spec.unit_id for spec in specs)
    for spec in specs:
        for dependency in spec.depends_on:
            assert index[dependency] < index[spec.unit_id]
        if spec.depends_on:
            assert index[spec.unit_id] == 1 + max(index[dep] for dep in spec.depends_on)
        else:
            assert index[spec.unit_id] == 0


@settings(max_examples=50, deadline=None)
@given(_dags())
def test_resolution_is_independent_of_input_order(specs: list[UnitSpec]) -> None:
    first = resolve(specs)
    second = resolve(list(reversed(specs)))

    assert first == second
    assert resolve(specs) == first
