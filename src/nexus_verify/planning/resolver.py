"""
nexus-verify — dependency resolver

File: src/nexus_verify/planning/resolver.py
Last updated: 2026-10-19

Purpose
- Validate a unit catalog as a DAG and partition it into execution waves.

Normative behavior
- Duplicate unit ids, unknown dependency references and cycles are structural errors.
- Structural errors are raised before any wave is produced.
- Wave 0 holds every unit without dependencies; wave k holds units whose dependencies all
  sit in waves 0..k-1 (longest path from a root).
- Within a wave, units are ordered by ``(priority, unit_id)``. The ordering is advisory;
  units in one wave share no dependency edge and may run fully concurrently.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TypeAlias

from nexus_verify.domain.models import UnitSpec
from nexus_verify.planning.unit_graph import CycleError, UnitGraph

Wave: TypeAlias = tuple[UnitSpec, ...]
Waves: TypeAlias = tuple[Wave, ...]


class StructuralError(ValueError):
    """Configuration-level graph failure detected before any unit runs."""


class DuplicateUnitError(StructuralError):
    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f"duplicate unit id: {unit_id!r}")


class UnknownDependencyError(StructuralError):
    def __init__(self, unit_id: str, missing_id: str) -> None:
        self.unit_id = unit_id
        self.missing_id = missing_id
        super().__init__(f"unit {unit_id!r} depends on unknown unit {missing_id!r}")


class CyclicDependencyError(StructuralError):
    """Raised when ``depends_on`` edges form a cycle; paths read in depends-on order."""

    def __init__(self, cycles: Sequence[Sequence[str]]) -> None:
        self.cycles: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycle_path: tuple[str, ...] = self.cycles[0] if self.cycles else ()
        if self.cycle_path:
            message = f"dependency cycle detected: {' -> '.join(self.cycle_path)}"
        else:
            message = "dependency cycle detected"
        super().__init__(message)


def build_graph(specs: Sequence[UnitSpec]) -> UnitGraph:
    """Build the dependency graph after validating ids and references."""
    by_id = index_specs(specs)

    graph = UnitGraph(nodes=by_id)
    for unit_id in sorted(by_id):
        for dependency in by_id[unit_id].depends_on:
            if dependency not in by_id:
                raise UnknownDependencyError(unit_id, dependency)
            graph.add_edge(dependency, unit_id)
    return graph


def resolve(specs: Sequence[UnitSpec]) -> Waves:
    """Return the wave partition of ``specs`` or raise a ``StructuralError``."""
    by_id = index_specs(specs)
    graph = build_graph(specs)

    try:
        layers = graph.layers()
    except CycleError as exc:
        raise CyclicDependencyError(
            [tuple(reversed(path)) for path in exc.cycles] or [()]
        ) from exc

    return tuple(
        tuple(sorted((by_id[unit_id] for unit_id in layer), key=_wave_sort_key))
        for layer in layers
    )


def index_specs(specs: Sequence[UnitSpec]) -> dict[str, UnitSpec]:
    by_id: dict[str, UnitSpec] = {}
    for spec in specs:
        if not isinstance(spec, UnitSpec):
            raise TypeError(f"expected UnitSpec, got {type(spec).__name__}")
        if spec.unit_id in by_id:
            raise DuplicateUnitError(spec.unit_id)
        by_id[spec.unit_id] = spec
    return by_id


def wave_index(waves: Waves) -> Mapping[str, int]:
    """Map every unit id to the index of the wave it runs in."""
    return {spec.unit_id: index for index, wave in enumerate(waves) for spec in wave}


def _wave_sort_key(spec: UnitSpec) -> tuple[int, str]:
    return (spec.priority, spec.unit_id)


__all__ = [
    "CyclicDependencyError",
    "DuplicateUnitError",
    "StructuralError",
    "UnknownDependencyError",
    "Wave",
    "Waves",
    "build_graph",
    "index_specs",
    "resolve",
    "wave_index",
]
