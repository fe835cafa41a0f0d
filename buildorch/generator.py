"""Render a build plan into concrete process invocations."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Dict, Iterable, List, Sequence, Tuple
import shlex

from .environment import PlatformConventions, host_platform
from .errors import ConfigValidationError
from .graph import LINK_SLOT, BuildNode, NodeRole, compile_slot
from .model import BuildOptions, Language, Target, TargetKind, source_language, standard_language
from .planner import BuildPlan
from .toolchains import ToolchainDescriptor, ToolFamily


class StepAction(str, Enum):
    COMPILE = "compile"
    LINK = "link"
    ARCHIVE = "archive"


@dataclass(frozen=True, slots=True)
class BuildStep:
    id: str
    node: str
    target: str
    action: StepAction
    command: Tuple[str, ...]
    cwd: Path
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    description: str = ""

    def format_command(self) -> str:
        return " ".join(shlex.quote(part) for part in self.command)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "node": self.node,
            "target": self.target,
            "action": self.action.value,
            "description": self.description,
            "command": list(self.command),
            "cwd": str(self.cwd),
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "depends_on": list(self.depends_on),
        }


@dataclass(frozen=True, slots=True)
class FlagStyle:
    include_prefix: str
    define_prefix: str
    object_suffix: str
    compile_only: Tuple[str, ...]
    pic: Tuple[str, ...]

    @property
    def is_msvc(self) -> bool:
        return self.include_prefix.startswith("/")


_GNU_STYLE = FlagStyle(
    include_prefix="-I",
    define_prefix="-D",
    object_suffix=".o",
    compile_only=("-c",),
    pic=("-fPIC",),
)
_MSVC_STYLE = FlagStyle(
    include_prefix="/I",
    define_prefix="/D",
    object_suffix=".obj",
    compile_only=("/nologo", "/c"),
    pic=(),
)


def flag_style(family: ToolFamily) -> FlagStyle:
    if family in (ToolFamily.GNU, ToolFamily.LLVM):
        return _GNU_STYLE
    if family is ToolFamily.MSVC:
        return _MSVC_STYLE
    raise ValueError(f"Unhandled tool family: {family!r}")


_MSVC_OPTIMIZATION = {"0": "/Od", "1": "/O1", "2": "/O2", "3": "/O2", "s": "/O1", "g": "/Od"}

# Kinds whose objects may be linked into a shared object.
_POSITION_INDEPENDENT = (TargetKind.STATIC_LIBRARY, TargetKind.SHARED_LIBRARY)


def option_flags(style: FlagStyle, options: BuildOptions, language: Language) -> List[str]:
    flags: List[str] = []
    if options.optimization is not None:
        if style.is_msvc:
            flags.append(_MSVC_OPTIMIZATION[options.optimization])
        else:
            flags.append(f"-O{options.optimization}")
    if options.debug:
        flags.append("/Z7" if style.is_msvc else "-g")
    if options.standard and standard_language(options.standard) is language:
        flags.append(f"/std:{options.standard}" if style.is_msvc else f"-std={options.standard}")
    return flags


def _definition_flag(style: FlagStyle, name: str, value: Any) -> str | None:
    if value is False or value is None:
        return None
    if value is True:
        return f"{style.define_prefix}{name}"
    return f"{style.define_prefix}{name}={value}"


@dataclass(slots=True)
class GeneratedBuild:
    """Inspectable list of steps grouped by plan tier; nothing has run."""

    plan: BuildPlan
    tiers: List[List[BuildStep]]
    conventions: PlatformConventions | None = None
    _by_id: Dict[str, BuildStep] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_id = {step.id: step for tier in self.tiers for step in tier}

    def steps(self) -> List[BuildStep]:
        return [step for tier in self.tiers for step in tier]

    def step(self, step_id: str) -> BuildStep:
        return self._by_id[step_id]

    def node_steps(self, node_name: str) -> List[BuildStep]:
        return [step for step in self.steps() if step.node == node_name]

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "project": self.plan.project.name,
            "version": self.plan.project.version,
            "tiers": [[step.to_mapping() for step in tier] for tier in self.tiers],
        }

    def format_lines(self) -> Iterable[str]:
        for index, tier in enumerate(self.tiers):
            yield f"# tier {index}"
            for step in tier:
                yield f"[{step.action.value}] {step.description}"
                yield f"    {step.format_command()}"


class BackendGenerator:
    def __init__(self, plan: BuildPlan, *, conventions: PlatformConventions | None = None) -> None:
        self._plan = plan
        self._conventions = conventions or host_platform()
        project = plan.project
        self._cwd = project.source_root.resolve()
        build_dir = project.build_dir
        self._build_dir = build_dir if build_dir.is_absolute() else (Path.cwd() / build_dir)
        self._compilers: Dict[tuple[str, str], ToolchainDescriptor] = {}
        for node in plan.graph:
            for slot, tool in node.toolchains.items():
                if slot != LINK_SLOT:
                    self._compilers.setdefault((node.target.name, slot), tool)

    @property
    def build_dir(self) -> Path:
        return self._build_dir

    def source_path(self, path: str) -> Path:
        """Resolve a project-relative path against the source root."""

        candidate = Path(path)
        return candidate if candidate.is_absolute() else self._cwd / candidate

    def _relative_source(self, source: str) -> PurePath:
        path = PurePath(source)
        if path.is_absolute():
            try:
                path = path.relative_to(self._cwd)
            except ValueError:
                path = PurePath(*path.parts[1:])
        return PurePath(*("__" if part == ".." else part for part in path.parts))

    def object_path(self, target: Target, source: str) -> Path:
        language = source_language(source)
        tool = self._compiler_for(target.name, language) if language is not None else None
        suffix = flag_style(tool.family).object_suffix if tool else ".o"
        relative = self._relative_source(source)
        return self._build_dir / "obj" / target.name / relative.parent / f"{relative.name}{suffix}"

    def artifact_path(self, target: Target) -> Path:
        name = self._conventions.artifact_name(target.name, target.kind)
        kind = target.kind
        if kind is TargetKind.EXECUTABLE:
            return self._build_dir / "bin" / name
        if kind is TargetKind.SHARED_LIBRARY:
            return self._build_dir / ("bin" if self._conventions.is_windows else "lib") / name
        if kind is TargetKind.STATIC_LIBRARY:
            return self._build_dir / "lib" / name
        raise ValueError(f"Unhandled target kind: {kind!r}")

    def _import_library(self, target: Target) -> Path | None:
        node = self._plan.graph.artifact_node(target.name)
        tool = node.toolchains.get(LINK_SLOT)
        if (
            target.kind is TargetKind.SHARED_LIBRARY
            and self._conventions.is_windows
            and tool is not None
            and tool.family is ToolFamily.MSVC
        ):
            return self._build_dir / "lib" / f"{target.name}.lib"
        return None

    def _link_input(self, target: Target) -> Path:
        import_library = self._import_library(target)
        return import_library if import_library is not None else self.artifact_path(target)

    def _compiler_for(self, target_name: str, language: Language) -> ToolchainDescriptor | None:
        return self._compilers.get((target_name, compile_slot(language)))

    def _require_tool(self, node: BuildNode, slot: str) -> ToolchainDescriptor:
        try:
            return node.toolchains[slot]
        except KeyError:
            raise ConfigValidationError(
                f"Build node '{node.name}' has no resolved toolchain for '{slot}'; plan with a resolver first"
            ) from None

    def compile_step_id(self, target: Target, source: str) -> str:
        return f"compile:{target.name}/{source}"

    def link_step_id(self, target: Target) -> str:
        action = StepAction.ARCHIVE if target.kind is TargetKind.STATIC_LIBRARY else StepAction.LINK
        return f"{action.value}:{target.name}"

    def _compile_step(self, node: BuildNode, source: str) -> BuildStep:
        target = node.target
        language = source_language(source)
        if language is None:
            raise ConfigValidationError(f"Cannot infer language of source '{source}' in target '{target.name}'")
        tool = self._require_tool(node, compile_slot(language))
        style = flag_style(tool.family)
        options = self._plan.project.effective_options(target)
        obj = self.object_path(target, source)
        source_path = self.source_path(source)

        command: List[str] = [tool.executable, *style.compile_only]
        command.extend(option_flags(style, options, language))
        if target.kind in _POSITION_INDEPENDENT and not self._conventions.is_windows:
            command.extend(style.pic)
        command.extend(f"{style.include_prefix}{self.source_path(path)}" for path in node.include_dirs)
        for name, value in target.definitions.items():
            flag = _definition_flag(style, name, value)
            if flag:
                command.append(flag)
        if style.is_msvc:
            command.extend([str(source_path), f"/Fo{obj}"])
        else:
            command.extend([str(source_path), "-o", str(obj)])

        return BuildStep(
            id=self.compile_step_id(target, source),
            node=node.name,
            target=target.name,
            action=StepAction.COMPILE,
            command=tuple(command),
            cwd=self._cwd,
            inputs=(str(source_path),),
            outputs=(str(obj),),
            description=f"Compiling {source} ({target.name})",
        )

    def _archive_command(self, tool: ToolchainDescriptor, output: Path, objects: Sequence[str]) -> List[str]:
        if tool.family in (ToolFamily.GNU, ToolFamily.LLVM):
            return [tool.executable, "rcs", str(output), *objects]
        if tool.family is ToolFamily.MSVC:
            return [tool.executable, "/nologo", f"/OUT:{output}", *objects]
        raise ValueError(f"Unhandled tool family: {tool.family!r}")

    def _link_command(
        self,
        node: BuildNode,
        tool: ToolchainDescriptor,
        output: Path,
        objects: Sequence[str],
        libraries: Sequence[str],
    ) -> List[str]:
        target = node.target
        options = self._plan.project.effective_options(target)
        shared = target.kind is TargetKind.SHARED_LIBRARY

        if tool.family in (ToolFamily.GNU, ToolFamily.LLVM):
            command = [tool.executable]
            if shared:
                command.append("-dynamiclib" if self._conventions.is_darwin else "-shared")
            if options.debug:
                command.append("-g")
            command.extend(objects)
            command.extend(libraries)
            if not self._conventions.is_windows:
                rpaths = sorted(
                    {
                        str(self.artifact_path(self._plan.project.target(name)).parent)
                        for name in node.libraries
                        if self._plan.project.target(name).kind is TargetKind.SHARED_LIBRARY
                    }
                )
                command.extend(f"-Wl,-rpath,{path}" for path in rpaths)
            for library in node.external_libraries:
                command.extend(f"-L{path}" for path in library.library_dirs)
                command.append(f"-l{library.link_name}")
            command.extend(["-o", str(output)])
            return command

        if tool.family is ToolFamily.MSVC:
            command = [tool.executable, "/nologo"]
            if shared:
                command.append("/LD")
            if options.debug:
                command.append("/Z7")
            command.extend(objects)
            command.extend(libraries)
            command.extend(f"{library.link_name}.lib" for library in node.external_libraries)
            command.append(f"/Fe{output}")
            linker_options = [f"/LIBPATH:{path}" for library in node.external_libraries for path in library.library_dirs]
            import_library = self._import_library(target)
            if import_library is not None:
                linker_options.append(f"/IMPLIB:{import_library}")
            if linker_options:
                command.append("/link")
                command.extend(linker_options)
            return command

        raise ValueError(f"Unhandled tool family: {tool.family!r}")

    def _link_step(self, node: BuildNode) -> BuildStep:
        target = node.target
        tool = self._require_tool(node, LINK_SLOT)
        output = self.artifact_path(target)
        objects = [str(self.object_path(target, source)) for source in target.sources]
        compile_ids = [self.compile_step_id(target, source) for source in target.sources]
        project = self._plan.project

        if target.kind is TargetKind.STATIC_LIBRARY:
            command = self._archive_command(tool, output, objects)
            return BuildStep(
                id=self.link_step_id(target),
                node=node.name,
                target=target.name,
                action=StepAction.ARCHIVE,
                command=tuple(command),
                cwd=self._cwd,
                inputs=tuple(objects),
                outputs=(str(output),),
                depends_on=tuple(compile_ids),
                description=f"Archiving {output.name}",
            )

        library_inputs = [str(self._link_input(project.target(name))) for name in node.libraries]
        library_steps = [self.link_step_id(project.target(name)) for name in node.libraries]
        command = self._link_command(node, tool, output, objects, library_inputs)
        outputs = [str(output)]
        import_library = self._import_library(target)
        if import_library is not None:
            outputs.append(str(import_library))
        return BuildStep(
            id=self.link_step_id(target),
            node=node.name,
            target=target.name,
            action=StepAction.LINK,
            command=tuple(command),
            cwd=self._cwd,
            inputs=tuple(objects + library_inputs),
            outputs=tuple(outputs),
            depends_on=tuple(compile_ids + library_steps),
            description=f"Linking {output.name}",
        )

    def steps_for(self, node: BuildNode) -> List[BuildStep]:
        role = node.role
        if role is NodeRole.TARGET:
            steps = [self._compile_step(node, source) for source in node.target.sources]
            steps.append(self._link_step(node))
            return steps
        if role is NodeRole.COMPILE:
            return [self._compile_step(node, source) for source in node.sources]
        if role is NodeRole.LINK:
            return [self._link_step(node)]
        raise ValueError(f"Unhandled node role: {role!r}")

    def preview(self) -> GeneratedBuild:
        tiers: List[List[BuildStep]] = []
        for tier in self._plan.tiers:
            steps: List[BuildStep] = []
            for node in tier:
                steps.extend(self.steps_for(node))
            tiers.append(steps)
        _ensure_disjoint_outputs(step for tier in tiers for step in tier)
        return GeneratedBuild(plan=self._plan, tiers=tiers, conventions=self._conventions)


def _ensure_disjoint_outputs(steps: Iterable[BuildStep]) -> None:
    owners: Dict[str, str] = {}
    errors: List[str] = []
    for step in steps:
        for output in step.outputs:
            key = str(Path(output))
            owner = owners.get(key)
            if owner is not None:
                errors.append(f"Output '{output}' is declared by both '{owner}' and '{step.id}'")
            else:
                owners[key] = step.id
    if errors:
        raise ConfigValidationError(errors)


def generate(plan: BuildPlan, *, conventions: PlatformConventions | None = None) -> GeneratedBuild:
    return BackendGenerator(plan, conventions=conventions).preview()


__all__ = [
    "BackendGenerator",
    "BuildStep",
    "FlagStyle",
    "GeneratedBuild",
    "StepAction",
    "flag_style",
    "generate",
    "option_flags",
]
