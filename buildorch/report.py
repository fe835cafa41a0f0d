"""Per-step execution results and the session-level report."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List
import json
import threading

from .errors import StepExecutionFailure, StepTimeout


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)


class FailureKind(str, Enum):
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    MISSING_OUTPUTS = "missing_outputs"
    LAUNCH_FAILURE = "launch_failure"
    TERMINATED = "terminated"


class SkipReason(str, Enum):
    DEPENDENCY_FAILED = "dependency_failed"
    CANCELLED = "cancelled"
    FAIL_FAST = "fail_fast"


class SessionState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ABORTED = "aborted"


class SessionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


EXIT_SUCCESS = 0
EXIT_EXECUTION_FAILED = 1
EXIT_PLANNING_FAILED = 2
EXIT_CANCELLED = 3


@dataclass(slots=True)
class ExecutionResult:
    step_id: str
    node: str
    status: StepStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    failure: FailureKind | None = None
    skip_reason: SkipReason | None = None
    message: str | None = None
    tier: int = 0
    timeout: float | None = None

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "step": self.step_id,
            "node": self.node,
            "tier": self.tier,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "failure": self.failure.value if self.failure else None,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "message": self.message,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }

    def error(self) -> StepExecutionFailure | None:
        """Return the structured failure for a failed step, ``None`` otherwise."""

        if self.status is not StepStatus.FAILED:
            return None
        details = {"exit_code": self.exit_code, "stdout": self.stdout, "stderr": self.stderr}
        if self.failure is FailureKind.TIMEOUT and self.timeout is not None:
            return StepTimeout(self.step_id, self.timeout, **details)
        kind = self.failure.value if self.failure else "failed"
        return StepExecutionFailure(self.step_id, self.message or kind, **details)


@dataclass(slots=True)
class SessionReport:
    """Append-only collection of step results shared by worker threads."""

    project: str
    state: SessionState = SessionState.PLANNING
    cancelled: bool = False
    results: List[ExecutionResult] = field(default_factory=list)
    duration: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def append(self, result: ExecutionResult) -> None:
        with self._lock:
            self.results.append(result)

    def result(self, step_id: str) -> ExecutionResult:
        with self._lock:
            for result in self.results:
                if result.step_id == step_id:
                    return result
        raise KeyError(f"No result recorded for step '{step_id}'")

    def with_status(self, status: StepStatus) -> List[ExecutionResult]:
        with self._lock:
            return [result for result in self.results if result.status is status]

    @property
    def succeeded(self) -> List[ExecutionResult]:
        return self.with_status(StepStatus.SUCCEEDED)

    @property
    def failed(self) -> List[ExecutionResult]:
        return self.with_status(StepStatus.FAILED)

    @property
    def skipped(self) -> List[ExecutionResult]:
        return self.with_status(StepStatus.SKIPPED)

    @property
    def status(self) -> SessionStatus:
        if self.failed:
            return SessionStatus.FAILED
        return SessionStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return EXIT_CANCELLED
        if self.status is SessionStatus.FAILED or self.skipped or self.state is SessionState.ABORTED:
            return EXIT_EXECUTION_FAILED
        return EXIT_SUCCESS

    def failures(self) -> List[StepExecutionFailure]:
        return [error for error in (result.error() for result in self.failed) if error is not None]

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "project": self.project,
            "state": self.state.value,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "duration": round(self.duration, 3),
            "summary": {
                "succeeded": len(self.succeeded),
                "failed": len(self.failed),
                "skipped": len(self.skipped),
            },
            "steps": [result.to_mapping() for result in self.results],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_mapping(), indent=2)

    def format_table(self) -> Iterable[str]:
        headers = ["STEP", "STATUS", "EXIT", "TIME", "DETAIL"]
        rows: List[Dict[str, str]] = []
        for result in self.results:
            detail = ""
            if result.failure is not None:
                detail = result.failure.value
            elif result.skip_reason is not None:
                detail = result.skip_reason.value
            rows.append(
                {
                    "STEP": result.step_id,
                    "STATUS": result.status.value,
                    "EXIT": "" if result.exit_code is None else str(result.exit_code),
                    "TIME": f"{result.duration:.2f}s",
                    "DETAIL": detail,
                }
            )
        widths = {header: max([len(header)] + [len(row[header]) for row in rows]) for header in headers}

        def _format(row: Dict[str, str]) -> str:
            return "  ".join(row[header].ljust(widths[header]) for header in headers).rstrip()

        yield _format({header: header for header in headers})
        yield "  ".join("-" * widths[header] for header in headers)
        for row in rows:
            yield _format(row)
        yield (
            f"{self.state.value}: {len(self.succeeded)} succeeded, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped in {self.duration:.2f}s"
        )


__all__ = [
    "EXIT_CANCELLED",
    "EXIT_EXECUTION_FAILED",
    "EXIT_PLANNING_FAILED",
    "EXIT_SUCCESS",
    "ExecutionResult",
    "FailureKind",
    "SessionReport",
    "SessionState",
    "SessionStatus",
    "SkipReason",
    "StepStatus",
]
