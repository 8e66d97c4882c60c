"""Dependency graph over unit ids; an edge ``(a, b)`` means ``b`` depends on ``a``."""

from __future__ import annotations

import graphlib
from collections.abc import Iterable, Sequence


class CycleError(ValueError):
    """The graph cannot be layered; ``cycles`` holds closed paths along edge direction."""

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        self.cycles: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        shown = "; ".join(" -> ".join(path) for path in self.cycles[:3])
        more = " ..." if len(self.cycles) > 3 else ""
        super().__init__(f"unit graph contains cycle(s): {shown or 'unknown'}{more}")


class UnitGraph:
    __slots__ = ("_parents",)

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        # node -> the nodes it depends on
        self._parents: dict[str, set[str]] = {}
        for node in nodes or ():
            self.add_node(node)
        for parent, child in edges or ():
            self.add_edge(parent, child)

    def __len__(self) -> int:
        return len(self._parents)

    def __contains__(self, node: object) -> bool:
        return node in self._parents

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(sorted(self._parents))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """``(dependency, dependent)`` pairs, sorted."""
        pairs = ((parent, child) for child, parents in self._parents.items() for parent in parents)
        return tuple(sorted(pairs))

    def add_node(self, node: str) -> None:
        if not isinstance(node, str) or not node:
            raise ValueError("node id must be a non-empty string")
        self._parents.setdefault(node, set())

    def add_edge(self, parent: str, child: str) -> None:
        self.add_node(parent)
        self.add_node(child)
        self._parents[child].add(parent)

    def layers(self) -> tuple[tuple[str, ...], ...]:
        """Kahn layering: each node sits one layer below its deepest dependency.

        Raises :class:`CycleError` when any node sits on, or behind, a cycle.
        """
        sorter = graphlib.TopologicalSorter(self._parents)
        try:
            sorter.prepare()
        except graphlib.CycleError as exc:
            raise CycleError(self.detect_cycles()) from exc

        layered: list[tuple[str, ...]] = []
        while sorter.is_active():
            ready = tuple(sorted(sorter.get_ready()))
            layered.append(ready)
            sorter.done(*ready)
        return tuple(layered)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Closed cycle paths such as ``("a", "b", "c", "a")``, each rotated to start at its
        smallest node."""
        children = self._children()
        finished: set[str] = set()
        found: set[tuple[str, ...]] = set()

        def visit(node: str, path: list[str], on_path: dict[str, int]) -> None:
            on_path[node] = len(path)
            path.append(node)
            for child in children[node]:
                if child in on_path:
                    found.add(_rotate_to_min(path[on_path[child] :]))
                elif child not in finished:
                    visit(child, path, on_path)
            path.pop()
            del on_path[node]
            finished.add(node)

        for start in sorted(self._parents):
            if start not in finished:
                visit(start, [], {})
        return tuple(sorted(found))

    def get_dependencies(self, node: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._require(node)
        return self._reach(node, self._parents, transitive)

    def get_dependents(self, node: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._require(node)
        return self._reach(node, self._children(), transitive)

    def serialize(self) -> dict[str, object]:
        return {"nodes": list(self.nodes), "edges": [list(edge) for edge in self.edges]}

    def _children(self) -> dict[str, list[str]]:
        children: dict[str, list[str]] = {node: [] for node in self._parents}
        for parent, child in self.edges:
            children[parent].append(child)
        return children

    @staticmethod
    def _reach(
        node: str, adjacency: dict[str, set[str]] | dict[str, list[str]], transitive: bool
    ) -> tuple[str, ...]:
        seen: set[str] = set()
        frontier = list(adjacency[node])
        while frontier:
            current = frontier.pop()
            if current in seen:
                continue
            seen.add(current)
            if transitive:
                frontier.extend(adjacency[current])
        return tuple(sorted(seen))

    def _require(self, node: str) -> None:
        if node not in self._parents:
            raise KeyError(f"unknown node: {node}")


def _rotate_to_min(cycle: Sequence[str]) -> tuple[str, ...]:
    start = cycle.index(min(cycle))
    rotated = tuple(cycle[start:]) + tuple(cycle[:start])
    return rotated + (rotated[0],)


__all__ = ["CycleError", "UnitGraph"]
