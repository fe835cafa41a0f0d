"""Tier-by-tier execution of generated build steps on a bounded worker pool."""
from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List
import threading
import time

from core.command_runner import CommandLaunchError, CommandRunner

from .console import Console
from .errors import CancellationRequested
from .generator import BuildStep, GeneratedBuild
from .graph import BuildGraph
from .report import (
    ExecutionResult,
    FailureKind,
    SessionReport,
    SessionState,
    SkipReason,
    StepStatus,
)


class CancellationToken:
    """Session-wide cancellation flag shared by the scheduler and its workers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationRequested("Build cancelled")


class Executor:
    """Run a :class:`GeneratedBuild` and collect one result per step.

    Tiers are barriers: tier ``n + 1`` starts only after every step of tier
    ``n`` is terminal. Within a tier a step waits for the steps it names in
    ``depends_on`` and is skipped when one of them, or any step of a
    predecessor node, did not succeed.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        jobs: int = 1,
        fail_fast: bool = False,
        step_timeout: float | None = None,
        verify_outputs: bool = True,
        prepare_outputs: bool = True,
        console: Console | None = None,
    ) -> None:
        if jobs < 1:
            raise ValueError(f"jobs must be at least 1, got {jobs}")
        if step_timeout is not None and step_timeout <= 0:
            raise ValueError(f"step timeout must be positive, got {step_timeout}")
        self.runner = runner
        self.jobs = jobs
        self.fail_fast = fail_fast
        self.step_timeout = step_timeout
        self.verify_outputs = verify_outputs
        self.prepare_outputs = prepare_outputs
        self.console = console or Console(level="none")

        self._status: Dict[str, StepStatus] = {}
        self._node_steps: Dict[str, List[str]] = {}
        self._aborted = False
        self._total = 0
        self._started = 0
        self._counter_lock = threading.Lock()

    def execute(self, generated: GeneratedBuild, token: CancellationToken | None = None) -> SessionReport:
        token = token or CancellationToken()
        graph = generated.plan.graph
        report = SessionReport(project=generated.plan.project.name, state=SessionState.EXECUTING)

        steps = generated.steps()
        self._status = {step.id: StepStatus.PENDING for step in steps}
        self._node_steps = {}
        for step in steps:
            self._node_steps.setdefault(step.node, []).append(step.id)
        self._aborted = False
        self._total = len(steps)
        self._started = 0

        started = time.monotonic()
        with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="buildorch") as pool:
            for index, tier in enumerate(generated.tiers):
                self.console.debug(f"Tier {index}: {len(tier)} step(s)")
                self._run_tier(pool, index, tier, graph, token, report)
        report.duration = time.monotonic() - started

        if token.cancelled:
            report.cancelled = True
            report.state = SessionState.ABORTED
        elif self._aborted:
            report.state = SessionState.ABORTED
        else:
            report.state = SessionState.COMPLETED
        return report

    def _node_failed(self, node_name: str) -> bool:
        return any(
            self._status[step_id] in (StepStatus.FAILED, StepStatus.SKIPPED)
            for step_id in self._node_steps.get(node_name, [])
        )

    def _readiness(self, step: BuildStep, graph: BuildGraph, token: CancellationToken) -> SkipReason | bool:
        """``True`` when runnable, ``False`` while waiting, a reason when it must be skipped."""

        for dependency in step.depends_on:
            if self._status.get(dependency) in (StepStatus.FAILED, StepStatus.SKIPPED):
                return SkipReason.DEPENDENCY_FAILED
        if step.node in graph:
            for predecessor in graph.node(step.node).predecessors:
                if self._node_failed(predecessor):
                    return SkipReason.DEPENDENCY_FAILED
        if token.cancelled:
            return SkipReason.CANCELLED
        if self._aborted:
            return SkipReason.FAIL_FAST
        for dependency in step.depends_on:
            status = self._status.get(dependency)
            if status is not None and not status.terminal:
                return False
        return True

    def _run_tier(
        self,
        pool: ThreadPoolExecutor,
        index: int,
        tier: List[BuildStep],
        graph: BuildGraph,
        token: CancellationToken,
        report: SessionReport,
    ) -> None:
        pending = list(tier)
        running: Dict[Future, BuildStep] = {}

        while pending or running:
            waiting: List[BuildStep] = []
            for step in pending:
                verdict = self._readiness(step, graph, token)
                if verdict is True:
                    self._status[step.id] = StepStatus.RUNNING
                    running[pool.submit(self._execute_step, step, index, token)] = step
                elif verdict is False:
                    waiting.append(step)
                else:
                    self._record(report, self._skipped(step, index, verdict))
            pending = waiting

            if not running:
                if pending:
                    names = ", ".join(step.id for step in pending)
                    raise RuntimeError(f"Steps can never become ready: {names}")
                break

            done, _ = wait(list(running), return_when=FIRST_COMPLETED)
            for future in done:
                running.pop(future)
                self._record(report, future.result())

    def _record(self, report: SessionReport, result: ExecutionResult) -> None:
        self._status[result.step_id] = result.status
        report.append(result)
        if result.status is StepStatus.FAILED:
            self.console.error(f"{result.step_id}: {result.message}")
            if result.stderr.strip():
                self.console.error(result.stderr.rstrip())
            if self.fail_fast and not self._aborted:
                self.console.info("Fail-fast enabled; skipping remaining steps")
                self._aborted = True
        elif result.status is StepStatus.SKIPPED:
            self.console.debug(f"Skipped {result.step_id} ({result.skip_reason.value})")

    @staticmethod
    def _skipped(step: BuildStep, index: int, reason: SkipReason) -> ExecutionResult:
        return ExecutionResult(
            step_id=step.id,
            node=step.node,
            status=StepStatus.SKIPPED,
            skip_reason=reason,
            tier=index,
        )

    def _prepare(self, step: BuildStep) -> None:
        for output in step.outputs:
            Path(output).parent.mkdir(parents=True, exist_ok=True)

    def _execute_step(self, step: BuildStep, index: int, token: CancellationToken) -> ExecutionResult:
        # Checked again on the worker; either flag may have been set while queued.
        if token.cancelled:
            return self._skipped(step, index, SkipReason.CANCELLED)
        if self._aborted:
            return self._skipped(step, index, SkipReason.FAIL_FAST)

        with self._counter_lock:
            self._started += 1
            position = self._started
        self.console.info(f"[{position}/{self._total}] {step.description}")
        self.console.dry(step.format_command())

        result = ExecutionResult(step_id=step.id, node=step.node, status=StepStatus.RUNNING, tier=index)
        started = time.monotonic()
        try:
            if self.prepare_outputs:
                self._prepare(step)
            outcome = self.runner.run(
                list(step.command),
                cwd=step.cwd,
                check=False,
                note=step.description,
                timeout=self.step_timeout,
                cancel=token,
            )
        except CommandLaunchError as exc:
            result.duration = time.monotonic() - started
            result.status = StepStatus.FAILED
            result.failure = FailureKind.LAUNCH_FAILURE
            result.message = str(exc)
            return result
        except OSError as exc:
            result.duration = time.monotonic() - started
            result.status = StepStatus.FAILED
            result.failure = FailureKind.LAUNCH_FAILURE
            result.message = f"Unable to prepare outputs: {exc}"
            return result

        result.duration = outcome.duration or (time.monotonic() - started)
        result.exit_code = outcome.returncode
        result.stdout = outcome.stdout
        result.stderr = outcome.stderr

        if outcome.timed_out:
            result.status = StepStatus.FAILED
            result.failure = FailureKind.TIMEOUT
            result.timeout = self.step_timeout
            result.message = f"timed out after {self.step_timeout:g}s"
        elif outcome.terminated:
            result.status = StepStatus.FAILED
            result.failure = FailureKind.TERMINATED
            result.message = "terminated by cancellation"
        elif outcome.returncode != 0:
            result.status = StepStatus.FAILED
            result.failure = FailureKind.NON_ZERO_EXIT
            result.message = f"exited with code {outcome.returncode}"
        else:
            missing = [path for path in step.outputs if not Path(path).exists()] if self.verify_outputs else []
            if missing:
                result.status = StepStatus.FAILED
                result.failure = FailureKind.MISSING_OUTPUTS
                result.message = "missing declared outputs: " + ", ".join(missing)
            else:
                result.status = StepStatus.SUCCEEDED
        return result


__all__ = ["CancellationToken", "Executor"]
