"""Tiered build planning."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List

from core.graph import CycleError, topological_tiers

from .errors import DependencyCycle
from .graph import LINK_SLOT, BuildGraph, BuildNode, compile_slot
from .model import Project, TargetKind, source_language, standard_language
from .toolchains import Capability, ToolchainDescriptor, ToolchainResolver, ToolKind


@dataclass(slots=True)
class BuildPlan:
    graph: BuildGraph
    tiers: List[List[BuildNode]]
    toolchains: Dict[str, ToolchainDescriptor] = field(default_factory=dict)

    @property
    def project(self) -> Project:
        return self.graph.project

    def nodes(self) -> Iterator[BuildNode]:
        for tier in self.tiers:
            yield from tier

    def tier_of(self, name: str) -> int:
        for index, tier in enumerate(self.tiers):
            if any(node.name == name for node in tier):
                return index
        raise KeyError(f"Unknown build node '{name}'")

    def tier_names(self) -> List[List[str]]:
        return [[node.name for node in tier] for tier in self.tiers]

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "project": self.project.name,
            "version": self.project.version,
            "granularity": self.graph.granularity.value,
            "tiers": [
                [
                    {
                        "node": node.name,
                        "target": node.target.name,
                        "role": node.role.value,
                        "predecessors": sorted(node.predecessors),
                        "toolchains": {slot: tool.executable for slot, tool in sorted(node.toolchains.items())},
                    }
                    for node in tier
                ]
                for tier in self.tiers
            ],
            "toolchains": {key: tool.to_mapping() for key, tool in sorted(self.toolchains.items())},
        }


class BuildPlanner:
    """Order a validated graph into tiers and bind toolchains to every node.

    With ``resolver`` set to ``None`` only the ordering is computed, which is
    what graph validation needs.
    """

    def __init__(self, resolver: ToolchainResolver | None, *, architecture: str | None = None) -> None:
        self._resolver = resolver
        self._architecture = architecture

    def requirements(self, project: Project, node: BuildNode) -> Dict[str, Capability]:
        options = project.effective_options(node.target)
        standard_lang = standard_language(options.standard) if options.standard else None
        capabilities: Dict[str, Capability] = {}

        for source in node.sources:
            language = source_language(source)
            if language is None:
                continue
            slot = compile_slot(language)
            if slot in capabilities:
                continue
            capabilities[slot] = Capability(
                kind=ToolKind.COMPILER,
                language=language,
                standard=options.standard if standard_lang is language else None,
                architecture=self._architecture,
            )

        if node.links:
            kind = node.target.kind
            if kind is TargetKind.STATIC_LIBRARY:
                capabilities[LINK_SLOT] = Capability(kind=ToolKind.ARCHIVER)
            elif kind in (TargetKind.EXECUTABLE, TargetKind.SHARED_LIBRARY):
                capabilities[LINK_SLOT] = Capability(
                    kind=ToolKind.LINKER,
                    language=node.target.link_language,
                    architecture=self._architecture,
                )
            else:
                raise ValueError(f"Unhandled target kind: {kind!r}")
        return capabilities

    def plan(self, graph: BuildGraph) -> BuildPlan:
        try:
            tier_names = topological_tiers(graph.dependency_map())
        except CycleError as exc:
            raise DependencyCycle(exc.cycle) from exc

        tiers = [[graph.node(name) for name in names] for names in tier_names]
        if self._resolver is None:
            return BuildPlan(graph=graph, tiers=tiers)

        # Resolve everything before touching any node so a missing tool leaves
        # the graph exactly as it was.
        bindings: Dict[str, Dict[str, ToolchainDescriptor]] = {}
        resolved: Dict[str, ToolchainDescriptor] = {}
        for tier in tiers:
            for node in tier:
                node_tools: Dict[str, ToolchainDescriptor] = {}
                for slot, capability in self.requirements(graph.project, node).items():
                    descriptor = self._resolver.resolve(capability)
                    node_tools[slot] = descriptor
                    resolved[capability.key] = descriptor
                bindings[node.name] = node_tools

        for node in graph:
            node.toolchains = bindings[node.name]
        return BuildPlan(graph=graph, tiers=tiers, toolchains=resolved)


__all__ = ["BuildPlan", "BuildPlanner"]
