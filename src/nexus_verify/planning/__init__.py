"""
nexus-verify — planning layer

File: src/nexus_verify/planning/__init__.py
Last updated: 2026-10-19

Purpose
- Dependency graph construction and wave partitioning for the unit catalog.

Functional requirements
- Must output a valid DAG partition or a structural error, never both.
- Must produce repeatable waves given the same catalog.
"""

from nexus_verify.planning.resolver import (
    CyclicDependencyError,
    DuplicateUnitError,
    StructuralError,
    UnknownDependencyError,
    Wave,
    Waves,
    build_graph,
    resolve,
    wave_index,
)
from nexus_verify.planning.unit_graph import CycleError, UnitGraph

__all__ = [
    "CycleError",
    "CyclicDependencyError",
    "DuplicateUnitError",
    "StructuralError",
    "UnitGraph",
    "UnknownDependencyError",
    "Wave",
    "Waves",
    "build_graph",
    "resolve",
    "wave_index",
]
