"""Conversion of a project into a graph of build nodes."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Set

from core.graph import find_cycle, reachable_from

from .errors import ConfigValidationError, DependencyCycle, UnresolvedDependency
from .model import ExternalLibrary, Language, Project, Target, TargetKind
from .toolchains import ToolchainDescriptor


class Granularity(str, Enum):
    TARGET = "target"
    TRANSLATION_UNIT = "translation_unit"

    @classmethod
    def parse(cls, value: str | "Granularity") -> "Granularity":
        if isinstance(value, Granularity):
            return value
        text = str(value).strip().lower().replace("-", "_")
        if text in ("tu", "unit"):
            text = cls.TRANSLATION_UNIT.value
        try:
            return cls(text)
        except ValueError:
            raise ConfigValidationError(
                f"Unknown granularity '{value}' (expected 'target' or 'translation_unit')"
            ) from None


class NodeRole(str, Enum):
    TARGET = "target"
    COMPILE = "compile"
    LINK = "link"


LINK_SLOT = "link"


def compile_slot(language: Language) -> str:
    return f"compile:{language.value}"


@dataclass(eq=False, slots=True)
class BuildNode:
    """One schedulable unit of work.

    ``target`` is a reference into the project; the node never copies or
    mutates it. ``toolchains`` is filled in by the planner, keyed by
    :func:`compile_slot` and :data:`LINK_SLOT`.
    """

    name: str
    target: Target
    role: NodeRole
    source: str | None = None
    predecessors: Set[str] = field(default_factory=set)
    libraries: List[str] = field(default_factory=list)
    external_libraries: List[ExternalLibrary] = field(default_factory=list)
    include_dirs: List[str] = field(default_factory=list)
    toolchains: Dict[str, ToolchainDescriptor] = field(default_factory=dict)

    @property
    def sources(self) -> List[str]:
        if self.role is NodeRole.TARGET:
            return list(self.target.sources)
        if self.role is NodeRole.COMPILE:
            return [self.source] if self.source else []
        if self.role is NodeRole.LINK:
            return []
        raise ValueError(f"Unhandled node role: {self.role!r}")

    @property
    def links(self) -> bool:
        return self.role in (NodeRole.TARGET, NodeRole.LINK)

    def __repr__(self) -> str:
        return f"BuildNode({self.name!r}, role={self.role.value})"


class BuildGraph:
    def __init__(self, project: Project, nodes: Iterable[BuildNode], *, granularity: Granularity) -> None:
        self.project = project
        self.granularity = granularity
        self._nodes: Dict[str, BuildNode] = {}
        for node in nodes:
            if node.name in self._nodes:
                raise ConfigValidationError(f"Duplicate build node '{node.name}'")
            self._nodes[node.name] = node
        self._artifact_nodes: Dict[str, str] = {
            node.target.name: node.name for node in self._nodes.values() if node.links
        }

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[BuildNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, name: str) -> BuildNode:
        return self._nodes[name]

    def artifact_node(self, target_name: str) -> BuildNode:
        """Return the node producing ``target_name``'s final artifact."""

        return self._nodes[self._artifact_nodes[target_name]]

    def dependency_map(self) -> Dict[str, List[str]]:
        return {name: sorted(node.predecessors) for name, node in self._nodes.items()}

    def edges(self) -> List[tuple[str, str]]:
        return [(pred, node.name) for node in self._nodes.values() for pred in sorted(node.predecessors)]

    def descendants(self, names: Iterable[str]) -> Set[str]:
        return reachable_from(self.dependency_map(), names)


class DependencyGraphBuilder:
    def __init__(self, project: Project, *, granularity: Granularity | str = Granularity.TARGET) -> None:
        self._project = project
        self._granularity = Granularity.parse(granularity)
        self._targets: Dict[str, Target] = {}
        self._internal: Dict[str, List[str]] = {}
        self._external: Dict[str, List[ExternalLibrary]] = {}

    def build(self) -> BuildGraph:
        self._project.ensure_valid()
        self._targets = {target.name: target for target in self._project.targets}
        self._resolve_dependencies()

        cycle = find_cycle(self._internal)
        if cycle:
            raise DependencyCycle(cycle)

        nodes: List[BuildNode] = []
        for target in self._project.targets:
            nodes.extend(self._nodes_for(target))
        return BuildGraph(self._project, nodes, granularity=self._granularity)

    def _resolve_dependencies(self) -> None:
        self._internal = {}
        self._external = {}
        libraries = self._project.external_libraries
        for target in self._project.targets:
            internal: List[str] = []
            external: List[ExternalLibrary] = []
            for name in target.dependencies:
                if name in self._targets:
                    internal.append(name)
                elif name in libraries:
                    external.append(libraries[name])
                else:
                    raise UnresolvedDependency(name, target.name)
            self._internal[target.name] = internal
            self._external[target.name] = external

    def _link_closure(self, name: str) -> tuple[List[str], List[ExternalLibrary]]:
        """Libraries to pass to the linker for ``name``, dependents before dependencies.

        Static libraries forward their own dependencies; a shared library was
        already linked against its dependencies and stops the walk. The result
        is a reversed post-order, so an archive always precedes every archive
        it needs and unrelated libraries keep their declared order.
        """

        finished: List[str] = []
        visited: Set[str] = set()

        for root in reversed(self._internal[name]):
            if root in visited:
                continue
            visited.add(root)
            stack: List[tuple[str, Iterator[str]]] = [(root, self._forwarded(root))]
            while stack:
                current, pending = stack[-1]
                for dep in pending:
                    if dep not in visited:
                        visited.add(dep)
                        stack.append((dep, self._forwarded(dep)))
                        break
                else:
                    stack.pop()
                    finished.append(current)

        libraries = finished[::-1]
        externals: List[ExternalLibrary] = list(self._external[name])
        for dep in libraries:
            if self._targets[dep].kind is not TargetKind.STATIC_LIBRARY:
                continue
            for library in self._external[dep]:
                if library not in externals:
                    externals.append(library)
        return libraries, externals

    def _forwarded(self, name: str) -> Iterator[str]:
        if self._targets[name].kind is not TargetKind.STATIC_LIBRARY:
            return iter(())
        return reversed(self._internal[name])

    def _include_closure(self, target: Target) -> List[str]:
        include_dirs: List[str] = list(target.include_dirs)
        visited: Set[str] = set()
        pending = list(self._internal[target.name])
        while pending:
            dep = pending.pop(0)
            if dep in visited:
                continue
            visited.add(dep)
            for path in self._targets[dep].include_dirs:
                if path not in include_dirs:
                    include_dirs.append(path)
            pending.extend(self._internal[dep])
        for library in self._external[target.name]:
            for path in library.include_dirs:
                if path not in include_dirs:
                    include_dirs.append(path)
        return include_dirs

    def _nodes_for(self, target: Target) -> List[BuildNode]:
        if target.kind is TargetKind.STATIC_LIBRARY:
            libraries: List[str] = []
            externals = list(self._external[target.name])
        else:
            libraries, externals = self._link_closure(target.name)
        include_dirs = self._include_closure(target)
        dependency_nodes = set(self._internal[target.name])

        if self._granularity is Granularity.TARGET:
            return [
                BuildNode(
                    name=target.name,
                    target=target,
                    role=NodeRole.TARGET,
                    predecessors=dependency_nodes,
                    libraries=libraries,
                    external_libraries=externals,
                    include_dirs=include_dirs,
                )
            ]

        if self._granularity is Granularity.TRANSLATION_UNIT:
            compile_nodes = [
                BuildNode(
                    name=f"{target.name}/{source}",
                    target=target,
                    role=NodeRole.COMPILE,
                    source=source,
                    include_dirs=include_dirs,
                )
                for source in target.sources
            ]
            link_node = BuildNode(
                name=target.name,
                target=target,
                role=NodeRole.LINK,
                predecessors=dependency_nodes | {node.name for node in compile_nodes},
                libraries=libraries,
                external_libraries=externals,
                include_dirs=include_dirs,
            )
            return [*compile_nodes, link_node]

        raise ValueError(f"Unhandled granularity: {self._granularity!r}")


def build_graph(project: Project, *, granularity: Granularity | str = Granularity.TARGET) -> BuildGraph:
    return DependencyGraphBuilder(project, granularity=granularity).build()


__all__ = [
    "BuildGraph",
    "BuildNode",
    "DependencyGraphBuilder",
    "Granularity",
    "LINK_SLOT",
    "NodeRole",
    "build_graph",
    "compile_slot",
]
