"""Error taxonomy for planning and executing builds."""
from __future__ import annotations

from typing import Iterable, Sequence


class BuildOrchestrationError(Exception):
    """Base class for every fatal engine error."""


class ConfigValidationError(BuildOrchestrationError, ValueError):
    """Bad or contradictory project data, reported before planning."""

    def __init__(self, errors: Iterable[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid configuration")


class DependencyCycle(BuildOrchestrationError):
    """Target library dependencies form a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle: {' -> '.join(self.cycle)}")


class UnresolvedDependency(BuildOrchestrationError):
    """A library dependency names neither a target nor an external library."""

    def __init__(self, name: str, target: str):
        self.name = name
        self.target = target
        super().__init__(
            f"Target '{target}' depends on '{name}', which is neither a project target nor a declared external library"
        )


class ToolchainNotFound(BuildOrchestrationError):
    """No candidate tool satisfies a required capability."""

    def __init__(self, capability: str, candidates: Sequence[str], reasons: Sequence[str] | None = None):
        self.capability = capability
        self.candidates = list(candidates)
        self.reasons = list(reasons or [])
        tried = ", ".join(self.candidates) or "<none>"
        message = f"No tool satisfies '{capability}' (tried: {tried})"
        if self.reasons:
            message = f"{message}\n  " + "\n  ".join(self.reasons)
        super().__init__(message)


class StepExecutionFailure(BuildOrchestrationError):
    """A build step did not produce its declared outcome."""

    def __init__(
        self,
        step_id: str,
        message: str,
        *,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.step_id = step_id
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Step '{step_id}' failed: {message}")


class StepTimeout(StepExecutionFailure):
    """A build step exceeded its wall-clock limit and was terminated."""

    def __init__(self, step_id: str, timeout: float, **kwargs):
        self.timeout = timeout
        super().__init__(step_id, f"timed out after {timeout:g}s", **kwargs)


class CancellationRequested(Exception):
    """The session was cancelled deliberately. Not an error."""


__all__ = [
    "BuildOrchestrationError",
    "CancellationRequested",
    "ConfigValidationError",
    "DependencyCycle",
    "StepExecutionFailure",
    "StepTimeout",
    "ToolchainNotFound",
    "UnresolvedDependency",
]
