"""Dependency-map algorithms shared by the build tools.

A dependency map associates each node name with the names it depends on.
Dependencies that are not keys of the map are ignored by every helper here,
which lets callers keep external references in the same structure.
"""
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Mapping, Sequence


class CycleError(ValueError):
    """Raised when a dependency map cannot be ordered."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        if self.cycle:
            message = f"Circular dependency detected: {' -> '.join(self.cycle)}"
        else:
            message = "Circular dependency detected"
        super().__init__(message)


def find_cycle(dependency_map: Mapping[str, Sequence[str]]) -> list[str]:
    """Return the first cycle found as ``[a, b, ..., a]`` or an empty list.

    Nodes are visited in mapping order and dependencies in declared order, so
    the reported path is stable for a given input. The walk keeps its own
    stack and handles chains of any depth.
    """

    visited: set[str] = set()
    active: set[str] = set()

    for start in dependency_map:
        if start in visited:
            continue
        visited.add(start)
        active.add(start)
        path: list[str] = [start]
        stack: list[Iterator[str]] = [iter(dependency_map.get(start, ()))]
        while stack:
            for dep in stack[-1]:
                if dep not in dependency_map:
                    continue
                if dep in active:
                    return path[path.index(dep):] + [dep]
                if dep not in visited:
                    visited.add(dep)
                    active.add(dep)
                    path.append(dep)
                    stack.append(iter(dependency_map.get(dep, ())))
                    break
            else:
                stack.pop()
                active.discard(path.pop())
    return []


def _dependents(dependency_map: Mapping[str, Sequence[str]]) -> tuple[Dict[str, List[str]], Dict[str, int]]:
    dependents: Dict[str, List[str]] = {node: [] for node in dependency_map}
    indegree: Dict[str, int] = {node: 0 for node in dependency_map}

    for node, deps in dependency_map.items():
        filtered_deps = {dep for dep in deps if dep in dependency_map}
        indegree[node] = len(filtered_deps)
        for dep in filtered_deps:
            dependents[dep].append(node)

    for dependent_list in dependents.values():
        dependent_list.sort()
    return dependents, indegree


def topological_tiers(dependency_map: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Partition nodes into tiers of mutually independent nodes.

    Every zero in-degree node goes into the current tier, then the in-degree
    of its dependents is decremented. Each tier is sorted by name.
    """

    dependents, indegree = _dependents(dependency_map)
    current = sorted(node for node, degree in indegree.items() if degree == 0)
    tiers: list[list[str]] = []
    placed = 0

    while current:
        tiers.append(current)
        placed += len(current)
        following: list[str] = []
        for node in current:
            for dependent in dependents[node]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    following.append(dependent)
        current = sorted(following)

    if placed != len(indegree):
        raise CycleError(find_cycle(dependency_map))
    return tiers


def reachable_from(dependency_map: Mapping[str, Sequence[str]], roots: Iterable[str]) -> set[str]:
    """Return every node that transitively depends on any of ``roots``."""

    dependents, _ = _dependents(dependency_map)
    seen: set[str] = set()
    stack = [root for root in roots if root in dependents]
    while stack:
        node = stack.pop()
        for dependent in dependents[node]:
            if dependent not in seen:
                seen.add(dependent)
                stack.append(dependent)
    return seen


__all__ = [
    "CycleError",
    "find_cycle",
    "reachable_from",
    "topological_tiers",
]
