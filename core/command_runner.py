"""Utilities for executing external commands with optional dry-run support."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, Iterable, Iterator, List, Mapping, Protocol, Sequence
import os
import shlex
import subprocess
import tempfile
import time


class CancelSignal(Protocol):
    """Anything with an ``is_set`` method, typically :class:`threading.Event`."""

    def is_set(self) -> bool:
        ...


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0
    timed_out: bool = False
    terminated: bool = False


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        quoted = " ".join(map(shlex.quote, result.command))
        if result.timed_out:
            message = f"Command timed out after {result.duration:.1f}s: {quoted}"
        else:
            message = f"Command failed with exit code {result.returncode}: {quoted}"
        message = f"{message}\nstdout: {result.stdout}\nstderr: {result.stderr}"
        super().__init__(message)
        self.result = result


class CommandLaunchError(RuntimeError):
    """Raised when the operating system refuses to start a command."""

    def __init__(self, command: Sequence[str], error: OSError):
        executable = command[0] if command else "<empty>"
        super().__init__(f"Unable to start '{executable}': {error}")
        self.command = list(command)
        self.error = error


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        timeout: float | None = None,
        cancel: CancelSignal | None = None,
    ) -> CommandResult:
        raise NotImplementedError


@dataclass
class SpawnedProcess:
    """A running child process together with its capture files."""

    process: subprocess.Popen
    stdout_file: IO[bytes]
    stderr_file: IO[bytes]

    @staticmethod
    def _drain(handle: IO[bytes]) -> str:
        handle.flush()
        handle.seek(0)
        return handle.read().decode("utf-8", errors="replace")

    def read_output(self) -> tuple[str, str]:
        return self._drain(self.stdout_file), self._drain(self.stderr_file)


def terminate_process(process: subprocess.Popen, *, grace: float = 5.0) -> None:
    """Terminate ``process``, escalating to kill when it ignores the request."""

    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


@contextmanager
def spawned_process(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Iterator[SpawnedProcess]:
    """Start ``command`` and guarantee the child and its capture files are released.

    Output is captured into anonymous temporary files instead of pipes so a
    caller can poll the process without risking a full-pipe deadlock. A child
    still running when the block exits is terminated, never detached.
    """

    stdout_file = tempfile.TemporaryFile()
    stderr_file = tempfile.TemporaryFile()
    try:
        try:
            process = subprocess.Popen(
                list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=stdout_file,
                stderr=stderr_file,
            )
        except OSError as exc:
            raise CommandLaunchError(command, exc) from exc
        try:
            yield SpawnedProcess(process=process, stdout_file=stdout_file, stderr_file=stderr_file)
        finally:
            terminate_process(process)
    finally:
        stdout_file.close()
        stderr_file.close()


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    def __init__(self, *, poll_interval: float = 0.05, kill_grace: float = 5.0) -> None:
        self.poll_interval = poll_interval
        self.kill_grace = kill_grace

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and (result.returncode != 0 or result.timed_out):
            raise CommandError(result)
        return result

    def _wait(
        self,
        process: subprocess.Popen,
        *,
        deadline: float | None,
        cancel: CancelSignal | None,
    ) -> tuple[bool, bool]:
        while True:
            wait_for = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    terminate_process(process, grace=self.kill_grace)
                    return True, False
                wait_for = min(wait_for, remaining)
            if cancel is not None and cancel.is_set():
                terminate_process(process, grace=self.kill_grace)
                return False, True
            try:
                process.wait(timeout=wait_for)
                return False, False
            except subprocess.TimeoutExpired:
                continue

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        timeout: float | None = None,
        cancel: CancelSignal | None = None,
    ) -> CommandResult:
        merged_env = self._merge_environment(env)
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None

        with spawned_process(command, cwd=cwd, env=merged_env) as spawned:
            timed_out, terminated = self._wait(spawned.process, deadline=deadline, cancel=cancel)
            stdout, stderr = spawned.read_output()
            returncode = spawned.process.returncode

        return self._finalize(
            CommandResult(
                command=command,
                returncode=returncode,
                stdout=stdout,
                stderr=stderr,
                duration=time.monotonic() - started,
                timed_out=timed_out,
                terminated=terminated,
            ),
            check=check,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None
    timeout: float | None = None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    @staticmethod
    def _record_entry(
        *,
        command: Sequence[str],
        cwd: Path | None,
        env: Mapping[str, str] | None,
        note: str | None,
        timeout: float | None,
    ) -> RecordedCommand:
        return RecordedCommand(
            command=list(command),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env else {},
            note=note,
            timeout=timeout,
        )

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        timeout: float | None = None,
        cancel: CancelSignal | None = None,
    ) -> CommandResult:
        self.commands.append(
            self._record_entry(command=command, cwd=cwd, env=env, note=note, timeout=timeout)
        )
        return CommandResult(command=command, returncode=0, stdout="", stderr="")

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)
