"""Declarative C/C++ build orchestration: graph, plan, generate, execute."""
from __future__ import annotations

from .backends import BackendFormat, render, write_backend
from .config_loader import EngineConfig, ProjectConfiguration, load_project_file
from .console import Console
from .environment import PlatformConventions, conventions_for, host_platform
from .errors import (
    BuildOrchestrationError,
    CancellationRequested,
    ConfigValidationError,
    DependencyCycle,
    StepExecutionFailure,
    StepTimeout,
    ToolchainNotFound,
    UnresolvedDependency,
)
from .executor import CancellationToken, Executor
from .generator import BackendGenerator, BuildStep, GeneratedBuild, generate
from .graph import BuildGraph, BuildNode, DependencyGraphBuilder, Granularity, build_graph
from .model import BuildOptions, ExternalLibrary, Language, Project, Target, TargetKind
from .planner import BuildPlan, BuildPlanner
from .report import ExecutionResult, FailureKind, SessionReport, SessionState, SkipReason, StepStatus
from .session import BuildSession
from .toolchains import Capability, ToolchainDescriptor, ToolchainRegistry, ToolchainResolver, ToolKind

__version__ = "0.1.0"

__all__ = [
    "BackendFormat",
    "BackendGenerator",
    "BuildGraph",
    "BuildNode",
    "BuildOptions",
    "BuildOrchestrationError",
    "BuildPlan",
    "BuildPlanner",
    "BuildSession",
    "BuildStep",
    "CancellationRequested",
    "CancellationToken",
    "Capability",
    "ConfigValidationError",
    "Console",
    "DependencyCycle",
    "DependencyGraphBuilder",
    "EngineConfig",
    "ExecutionResult",
    "Executor",
    "ExternalLibrary",
    "FailureKind",
    "GeneratedBuild",
    "Granularity",
    "Language",
    "PlatformConventions",
    "Project",
    "ProjectConfiguration",
    "SessionReport",
    "SessionState",
    "SkipReason",
    "StepExecutionFailure",
    "StepStatus",
    "StepTimeout",
    "Target",
    "TargetKind",
    "ToolKind",
    "ToolchainDescriptor",
    "ToolchainNotFound",
    "ToolchainRegistry",
    "ToolchainResolver",
    "UnresolvedDependency",
    "build_graph",
    "conventions_for",
    "generate",
    "host_platform",
    "load_project_file",
    "render",
    "write_backend",
]
