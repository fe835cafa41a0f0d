"""In-memory configuration model consumed by the engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Dict, List, Mapping
import re

from core.config_loader import normalize_string_list

from .errors import ConfigValidationError


class TargetKind(str, Enum):
    EXECUTABLE = "executable"
    SHARED_LIBRARY = "shared_library"
    STATIC_LIBRARY = "static_library"

    @classmethod
    def parse(cls, value: Any) -> "TargetKind":
        text = str(value).strip().lower().replace("-", "_")
        aliases = {"exe": "executable", "shared": "shared_library", "static": "static_library"}
        text = aliases.get(text, text)
        try:
            return cls(text)
        except ValueError:
            choices = ", ".join(kind.value for kind in cls)
            raise ConfigValidationError(f"Unknown target kind '{value}'. Expected one of: {choices}") from None

    @property
    def is_library(self) -> bool:
        return self is not TargetKind.EXECUTABLE


class Language(str, Enum):
    C = "c"
    CXX = "cxx"


SOURCE_LANGUAGES: Dict[str, Language] = {
    ".c": Language.C,
    ".cc": Language.CXX,
    ".cpp": Language.CXX,
    ".cxx": Language.CXX,
    ".c++": Language.CXX,
    ".C": Language.CXX,
}

OPTIMIZATION_LEVELS = ("0", "1", "2", "3", "s", "g")

_STANDARD_PATTERN = re.compile(r"^(?P<dialect>c|gnu|c\+\+|gnu\+\+)(?P<version>\d{2}|[0-9][a-z])$")
_TARGET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.+-]*$")


def source_language(path: str) -> Language | None:
    suffix = PurePath(path).suffix
    if suffix in SOURCE_LANGUAGES:
        return SOURCE_LANGUAGES[suffix]
    return SOURCE_LANGUAGES.get(suffix.lower())


def standard_language(standard: str) -> Language | None:
    """Return the language a ``-std`` value applies to, or ``None`` if malformed."""

    match = _STANDARD_PATTERN.match(standard)
    if not match:
        return None
    return Language.CXX if match.group("dialect").endswith("++") else Language.C


@dataclass(frozen=True, slots=True)
class BuildOptions:
    """Option set where ``None`` means "inherit"."""

    optimization: str | None = None
    debug: bool | None = None
    standard: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "BuildOptions":
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigValidationError("Build options must be a mapping")
        allowed_keys = {"optimization", "debug", "standard"}
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigValidationError(f"Build options contain unknown keys: {joined}")

        optimization = data.get("optimization")
        debug = data.get("debug")
        standard = data.get("standard")
        if debug is not None and not isinstance(debug, bool):
            raise ConfigValidationError("options.debug must be a boolean")
        return cls(
            optimization=str(optimization).strip().lower() if optimization is not None else None,
            debug=debug,
            standard=str(standard).strip().lower() if standard is not None else None,
        )

    def merged_over(self, base: "BuildOptions") -> "BuildOptions":
        """Return ``self`` layered on top of ``base``; set fields in ``self`` win."""

        return BuildOptions(
            optimization=self.optimization if self.optimization is not None else base.optimization,
            debug=self.debug if self.debug is not None else base.debug,
            standard=self.standard if self.standard is not None else base.standard,
        )

    def validate(self, *, label: str) -> list[str]:
        errors: list[str] = []
        if self.optimization is not None and self.optimization not in OPTIMIZATION_LEVELS:
            choices = ", ".join(OPTIMIZATION_LEVELS)
            errors.append(f"{label}: optimization level '{self.optimization}' is not one of {choices}")
        if self.standard is not None and standard_language(self.standard) is None:
            errors.append(f"{label}: unrecognized language standard '{self.standard}'")
        return errors

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.optimization is not None:
            data["optimization"] = self.optimization
        if self.debug is not None:
            data["debug"] = self.debug
        if self.standard is not None:
            data["standard"] = self.standard
        return data


ENGINE_DEFAULT_OPTIONS = BuildOptions(optimization="0", debug=False, standard=None)


@dataclass(slots=True)
class ExternalLibrary:
    """A library provided by the host, linked by name."""

    name: str
    link_name: str
    library_dirs: List[str] = field(default_factory=list)
    include_dirs: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, name: str, data: Any) -> "ExternalLibrary":
        if data is None or data is True:
            return cls(name=name, link_name=name)
        if isinstance(data, str):
            return cls(name=name, link_name=data.strip() or name)
        if not isinstance(data, Mapping):
            raise ConfigValidationError(f"External library '{name}' must be a mapping or a link name")
        link_name = str(data.get("link_name") or name).strip()
        try:
            library_dirs = normalize_string_list(data.get("library_dirs"), field_name=f"{name}.library_dirs", unique=True)
            include_dirs = normalize_string_list(data.get("include_dirs"), field_name=f"{name}.include_dirs", unique=True)
        except TypeError as exc:
            raise ConfigValidationError(str(exc)) from exc
        return cls(name=name, link_name=link_name, library_dirs=library_dirs, include_dirs=include_dirs)


@dataclass(slots=True)
class Target:
    name: str
    kind: TargetKind
    sources: List[str]
    include_dirs: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    options: BuildOptions = field(default_factory=BuildOptions)
    definitions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Target":
        if not isinstance(data, Mapping):
            raise ConfigValidationError("Target entries must be mappings")
        allowed_keys = {"name", "kind", "sources", "include_dirs", "dependencies", "options", "definitions"}
        name = str(data.get("name") or "").strip()
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigValidationError(f"Target '{name or '<unnamed>'}' contains unknown keys: {joined}")
        if not name:
            raise ConfigValidationError("Every target requires a non-empty 'name'")
        if "kind" not in data:
            raise ConfigValidationError(f"Target '{name}' requires a 'kind'")

        try:
            sources = normalize_string_list(data.get("sources"), field_name=f"{name}.sources")
            include_dirs = normalize_string_list(data.get("include_dirs"), field_name=f"{name}.include_dirs", unique=True)
            dependencies = normalize_string_list(
                data.get("dependencies"), field_name=f"{name}.dependencies", unique=True
            )
        except TypeError as exc:
            raise ConfigValidationError(str(exc)) from exc

        definitions_section = data.get("definitions")
        definitions: Dict[str, Any] = {}
        if isinstance(definitions_section, Mapping):
            definitions = {str(key): value for key, value in definitions_section.items()}
        elif definitions_section is not None:
            raise ConfigValidationError(f"Target '{name}' definitions must be a mapping")

        return cls(
            name=name,
            kind=TargetKind.parse(data["kind"]),
            sources=sources,
            include_dirs=include_dirs,
            dependencies=dependencies,
            options=BuildOptions.from_mapping(data.get("options")),
            definitions=definitions,
        )

    def languages(self) -> set[Language]:
        return {language for language in map(source_language, self.sources) if language is not None}

    @property
    def link_language(self) -> Language:
        return Language.CXX if Language.CXX in self.languages() else Language.C


@dataclass(slots=True)
class Project:
    name: str
    version: str
    targets: List[Target]
    options: BuildOptions = field(default_factory=BuildOptions)
    external_libraries: Dict[str, ExternalLibrary] = field(default_factory=dict)
    source_root: Path = field(default_factory=lambda: Path("."))
    build_dir: Path = field(default_factory=lambda: Path("build"))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "Project":
        project_section = data.get("project")
        if not isinstance(project_section, Mapping):
            raise ConfigValidationError("[project] section is required in project configuration")
        name = str(project_section.get("name") or "").strip()
        version = str(project_section.get("version") or "0.0.0").strip()

        base = base_dir or Path(".")
        source_root = Path(str(project_section.get("source_root") or "."))
        build_dir = Path(str(project_section.get("build_dir") or "build"))
        if not source_root.is_absolute():
            source_root = base / source_root
        if not build_dir.is_absolute():
            build_dir = base / build_dir

        targets_section = data.get("targets", [])
        if isinstance(targets_section, Mapping):
            entries = []
            for key, value in targets_section.items():
                if not isinstance(value, Mapping):
                    raise ConfigValidationError(
                        f"Target '{key}' in [targets] must be a table, got {type(value).__name__}"
                    )
                entries.append({"name": key, **value})
        elif isinstance(targets_section, list):
            entries = targets_section
        else:
            raise ConfigValidationError("[targets] must be an array of tables or a table of targets")
        targets = [Target.from_mapping(entry) for entry in entries]

        libraries_section = data.get("external_libraries", {})
        external_libraries: Dict[str, ExternalLibrary] = {}
        if isinstance(libraries_section, Mapping):
            for raw_name, raw_value in libraries_section.items():
                lib_name = str(raw_name).strip()
                external_libraries[lib_name] = ExternalLibrary.from_mapping(lib_name, raw_value)
        elif isinstance(libraries_section, list):
            try:
                names = normalize_string_list(libraries_section, field_name="external_libraries", unique=True)
            except TypeError as exc:
                raise ConfigValidationError(str(exc)) from exc
            for entry in names:
                external_libraries[entry] = ExternalLibrary.from_mapping(entry, None)
        else:
            raise ConfigValidationError("[external_libraries] must be a table or a list of names")

        project = cls(
            name=name,
            version=version,
            targets=targets,
            options=BuildOptions.from_mapping(data.get("options")),
            external_libraries=external_libraries,
            source_root=source_root,
            build_dir=build_dir,
        )
        project.ensure_valid()
        return project

    def target(self, name: str) -> Target:
        for target in self.targets:
            if target.name == name:
                return target
        raise KeyError(f"Unknown target '{name}'")

    @property
    def target_names(self) -> List[str]:
        return [target.name for target in self.targets]

    def effective_options(self, target: Target) -> BuildOptions:
        return target.options.merged_over(self.options).merged_over(ENGINE_DEFAULT_OPTIONS)

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.name:
            errors.append("project.name is required")
        errors.extend(self.options.validate(label="project options"))

        kinds: Dict[str, TargetKind] = {}
        for target in self.targets:
            if target.name in kinds:
                errors.append(f"Duplicate target name '{target.name}'")
                continue
            kinds[target.name] = target.kind
            if not _TARGET_NAME_PATTERN.match(target.name):
                errors.append(f"Target name '{target.name}' may only contain letters, digits, '_', '.', '+' and '-'")

        for target in self.targets:
            label = f"target '{target.name}'"
            if not target.sources:
                errors.append(f"{label} has no sources")
            for source in target.sources:
                if source_language(source) is None:
                    errors.append(f"{label}: cannot infer language of source '{source}'")
            if len(set(target.sources)) != len(target.sources):
                errors.append(f"{label} lists a source more than once")
            errors.extend(target.options.validate(label=label))
            declared = standard_language(target.options.standard) if target.options.standard else None
            if declared is not None and declared not in target.languages():
                errors.append(
                    f"{label}: standard '{target.options.standard}' does not apply to any of its sources"
                )
            for dependency in target.dependencies:
                if dependency == target.name:
                    errors.append(f"{label} depends on itself")
                elif kinds.get(dependency) is TargetKind.EXECUTABLE:
                    errors.append(f"{label} cannot link against executable '{dependency}'")
        return errors

    def ensure_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise ConfigValidationError(errors)


__all__ = [
    "BuildOptions",
    "ENGINE_DEFAULT_OPTIONS",
    "ExternalLibrary",
    "Language",
    "OPTIMIZATION_LEVELS",
    "Project",
    "SOURCE_LANGUAGES",
    "Target",
    "TargetKind",
    "source_language",
    "standard_language",
]
