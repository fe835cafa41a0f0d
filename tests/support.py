"""Shared fakes for the engine tests."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence
import threading

from core.command_runner import CommandResult, CommandRunner

from buildorch.environment import conventions_for
from buildorch.generator import GeneratedBuild, generate
from buildorch.graph import build_graph
from buildorch.model import Project
from buildorch.planner import BuildPlanner
from buildorch.toolchains import ToolchainResolver

GCC_VERSION = "gcc (GCC) 13.2.0\nCopyright (C) 2023 Free Software Foundation, Inc.\n"
GXX_VERSION = "g++ (GCC) 13.2.0\nCopyright (C) 2023 Free Software Foundation, Inc.\n"
OLD_GXX_VERSION = "g++ (GCC) 6.3.0\nCopyright (C) 2016 Free Software Foundation, Inc.\n"
AR_VERSION = "GNU ar (GNU Binutils) 2.41\n"
CLANG_VERSION = "clang version 17.0.6\nTarget: x86_64-pc-linux-gnu\nThread model: posix\n"
CLANGXX_VERSION = "clang version 17.0.6\nTarget: x86_64-pc-linux-gnu\nThread model: posix\n"
LLVM_AR_VERSION = "LLVM (http://llvm.org/):\n  LLVM version 17.0.6\n"
CL_VERSION = "Microsoft (R) C/C++ Optimizing Compiler Version 19.38.33130 for x64\n"
LIB_VERSION = "Microsoft (R) Library Manager Version 14.38.33130.0\n"

GNU_TOOLS: Dict[str, str] = {"gcc": GCC_VERSION, "g++": GXX_VERSION, "ar": AR_VERSION}
LLVM_TOOLS: Dict[str, str] = {"clang": CLANG_VERSION, "clang++": CLANGXX_VERSION, "llvm-ar": LLVM_AR_VERSION}
MSVC_TOOLS: Dict[str, str] = {"cl": CL_VERSION, "lib": LIB_VERSION}

Response = Any


class ScriptedRunner(CommandRunner):
    """Answer commands from a table keyed by the executable's base name.

    A response is a ``(returncode, stdout, stderr)`` tuple, a ready
    :class:`CommandResult`, an exception to raise, or a callable taking the
    command and returning one of those.
    """

    def __init__(self, responses: Mapping[str, Response] | None = None, *, default: Response = (0, "", "")) -> None:
        self.responses: Dict[str, Response] = dict(responses or {})
        self.default = default
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        timeout: float | None = None,
        cancel=None,
    ) -> CommandResult:
        with self._lock:
            self.calls.append(list(command))
        response = self.responses.get(Path(command[0]).name, self.default)
        if callable(response) and not isinstance(response, type):
            response = response(list(command))
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, CommandResult):
            return response
        returncode, stdout, stderr = response
        return CommandResult(command=list(command), returncode=returncode, stdout=stdout, stderr=stderr)

    def executables(self) -> List[str]:
        return [Path(call[0]).name for call in self.calls]


def version_responses(*tool_tables: Mapping[str, str]) -> Dict[str, Response]:
    responses: Dict[str, Response] = {}
    for table in tool_tables:
        for name, banner in table.items():
            responses[name] = (0, banner, "")
    return responses


def fake_which(available: Iterable[str]) -> Callable[[str], str | None]:
    names = set(available)

    def _which(name: str) -> str | None:
        return f"/usr/bin/{name}" if name in names else None

    return _which


def make_project(
    targets: List[Dict[str, Any]],
    *,
    base_dir: Path | None = None,
    external_libraries: Mapping[str, Any] | None = None,
    options: Mapping[str, Any] | None = None,
    name: str = "demo",
) -> Project:
    data: Dict[str, Any] = {"project": {"name": name, "version": "1.0.0"}, "targets": targets}
    if external_libraries is not None:
        data["external_libraries"] = dict(external_libraries)
    if options is not None:
        data["options"] = dict(options)
    return Project.from_mapping(data, base_dir=base_dir or Path("/work/demo"))


def library_and_app(base_dir: Path | None = None) -> Project:
    """A static library ``A`` and an executable ``B`` linking it."""

    return make_project(
        [
            {"name": "A", "kind": "static_library", "sources": ["a.cpp"], "include_dirs": ["include"]},
            {"name": "B", "kind": "executable", "sources": ["main.cpp"], "dependencies": ["A"]},
        ],
        base_dir=base_dir,
    )


def generate_for(
    project: Project,
    *,
    os_name: str = "linux",
    tools: Mapping[str, str] = GNU_TOOLS,
    granularity: str = "target",
) -> GeneratedBuild:
    """Plan ``project`` against fake tools and return its generated steps."""

    resolver = ToolchainResolver(
        ScriptedRunner(version_responses(tools)),
        os_name=os_name,
        host_architecture="x86_64",
        which=fake_which(tools),
    )
    plan = BuildPlanner(resolver).plan(build_graph(project, granularity=granularity))
    return generate(plan, conventions=conventions_for(os_name, "x86_64"))
