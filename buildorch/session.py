"""One build session: graph, plan, generated steps and execution share a resolver."""
from __future__ import annotations

from pathlib import Path
from typing import Callable
import shutil

from core.command_runner import CommandRunner, RecordingCommandRunner, SubprocessCommandRunner

from .backends import BackendFormat, render, write_backend
from .config_loader import EngineConfig, ProjectConfiguration
from .console import Console
from .environment import PlatformConventions, host_platform
from .executor import CancellationToken, Executor
from .generator import GeneratedBuild, generate
from .graph import BuildGraph, DependencyGraphBuilder
from .model import Project
from .planner import BuildPlan, BuildPlanner
from .report import SessionReport
from .toolchains import ToolchainResolver


class BuildSession:
    """Own the per-session toolchain cache and the artifacts derived from a project.

    Use it as a context manager; leaving the block drops every memoized
    toolchain so the next session probes afresh.
    """

    def __init__(
        self,
        configuration: ProjectConfiguration | Project,
        *,
        engine: EngineConfig | None = None,
        runner: CommandRunner | None = None,
        probe_runner: CommandRunner | None = None,
        console: Console | None = None,
        conventions: PlatformConventions | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        if isinstance(configuration, Project):
            configuration = ProjectConfiguration(project=configuration)
        self.configuration = configuration
        self.engine = engine or configuration.engine
        self.runner = runner or SubprocessCommandRunner()
        self.console = console or Console(level=self.engine.log_level)
        self.conventions = conventions or host_platform()
        self.resolver = ToolchainResolver(
            probe_runner or self.runner,
            registry=configuration.registry,
            preferred=configuration.preferred_toolchain,
            os_name=self.conventions.os_name,
            host_architecture=self.conventions.architecture,
            probe_timeout=self.engine.probe_timeout,
            which=which,
            console=self.console,
        )
        self._graph: BuildGraph | None = None
        self._plan: BuildPlan | None = None
        self._generated: GeneratedBuild | None = None
        self.recorded: RecordingCommandRunner | None = None

    def __enter__(self) -> "BuildSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.resolver.clear()
        self._graph = None
        self._plan = None
        self._generated = None

    @property
    def project(self) -> Project:
        return self.configuration.project

    def graph(self) -> BuildGraph:
        if self._graph is None:
            builder = DependencyGraphBuilder(self.project, granularity=self.engine.granularity)
            self._graph = builder.build()
            self.console.debug(f"Graph: {len(self._graph)} node(s), {len(self._graph.edges())} edge(s)")
        return self._graph

    def order(self) -> BuildPlan:
        """Tier the graph without resolving any toolchain."""

        return BuildPlanner(None).plan(self.graph())

    def plan(self) -> BuildPlan:
        if self._plan is None:
            planner = BuildPlanner(self.resolver, architecture=self.conventions.architecture)
            self._plan = planner.plan(self.graph())
        return self._plan

    def preview(self) -> GeneratedBuild:
        if self._generated is None:
            self._generated = generate(self.plan(), conventions=self.conventions)
        return self._generated

    def render(self, backend: BackendFormat | str | None = None) -> str:
        return render(self.preview(), backend or self.engine.backend)

    def generate(self, backend: BackendFormat | str | None = None, path: Path | None = None) -> Path:
        fmt = BackendFormat.parse(backend or self.engine.backend)
        target = Path(path) if path is not None else self.project.build_dir
        if path is None:
            target.mkdir(parents=True, exist_ok=True)
        written = write_backend(self.preview(), fmt, target)
        self.console.info(f"Wrote {fmt.value} backend to {written}")
        return written

    def execute(self, token: CancellationToken | None = None, *, dry_run: bool = False) -> SessionReport:
        generated = self.preview()
        if dry_run:
            recorder = RecordingCommandRunner()
            dry_console = self.console.derive(dry_run=True)
            executor = Executor(
                recorder,
                jobs=1,
                fail_fast=self.engine.fail_fast,
                step_timeout=self.engine.step_timeout,
                verify_outputs=False,
                prepare_outputs=False,
                console=dry_console,
            )
            self.recorded = recorder
        else:
            executor = Executor(
                self.runner,
                jobs=self.engine.jobs,
                fail_fast=self.engine.fail_fast,
                step_timeout=self.engine.step_timeout,
                verify_outputs=self.engine.verify_outputs,
                console=self.console,
            )
        self.console.info(
            f"Building {self.project.name} {self.project.version}: "
            f"{len(generated.steps())} step(s) in {len(generated.tiers)} tier(s) with {executor.jobs} job(s)"
        )
        report = executor.execute(generated, token)
        self.console.info(
            f"{report.state.value}: {len(report.succeeded)} succeeded, "
            f"{len(report.failed)} failed, {len(report.skipped)} skipped"
        )
        return report


__all__ = ["BuildSession"]
