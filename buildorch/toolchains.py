"""Toolchain definitions, discovery and capability resolution."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping
import platform
import re
import shutil
import threading

from core.command_runner import CommandLaunchError, CommandResult, CommandRunner

from .errors import ConfigValidationError, ToolchainNotFound
from .model import Language, standard_language


class ToolKind(str, Enum):
    COMPILER = "compiler"
    LINKER = "linker"
    ARCHIVER = "archiver"


class ToolFamily(str, Enum):
    GNU = "gnu"
    LLVM = "llvm"
    MSVC = "msvc"


_LANGUAGE_LABELS = {Language.C: "C", Language.CXX: "C++"}

_STANDARD_ALIASES = {
    "c++0x": "c++11",
    "c++1y": "c++14",
    "c++1z": "c++17",
    "c++2a": "c++20",
    "c++2b": "c++23",
    "c++2c": "c++26",
    "c1x": "c11",
    "c18": "c17",
    "c2x": "c23",
    "c90": "c89",
}

# Minimum (major, minor) release accepting each ``-std`` value.
_STANDARD_SUPPORT: Dict[ToolFamily, Dict[str, tuple[int, int]]] = {
    ToolFamily.GNU: {
        "c89": (0, 0),
        "c99": (4, 5),
        "c11": (4, 7),
        "c17": (8, 0),
        "c23": (14, 0),
        "c++98": (0, 0),
        "c++03": (0, 0),
        "c++11": (4, 8),
        "c++14": (5, 0),
        "c++17": (7, 0),
        "c++20": (10, 0),
        "c++23": (11, 0),
        "c++26": (14, 0),
    },
    ToolFamily.LLVM: {
        "c89": (0, 0),
        "c99": (0, 0),
        "c11": (3, 1),
        "c17": (6, 0),
        "c23": (18, 0),
        "c++98": (0, 0),
        "c++03": (0, 0),
        "c++11": (3, 3),
        "c++14": (3, 5),
        "c++17": (5, 0),
        "c++20": (10, 0),
        "c++23": (17, 0),
        "c++26": (17, 0),
    },
    ToolFamily.MSVC: {
        "c11": (19, 28),
        "c17": (19, 28),
        "c++14": (19, 0),
        "c++17": (19, 11),
        "c++20": (19, 29),
    },
}

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "x86": "i686",
    "i386": "i686",
}


def normalize_standard(standard: str) -> str:
    text = standard.strip().lower()
    if text.startswith("gnu"):
        text = "c" + text[3:]
    return _STANDARD_ALIASES.get(text, text)


def normalize_architecture(value: str) -> str:
    text = value.strip().lower()
    return _ARCH_ALIASES.get(text, text)


@dataclass(frozen=True, slots=True)
class Capability:
    """An abstract tool requirement such as "C++ compiler supporting c++17"."""

    kind: ToolKind
    language: Language | None = None
    standard: str | None = None
    architecture: str | None = None

    @property
    def key(self) -> str:
        parts = [self.kind.value]
        if self.language is not None:
            parts.append(self.language.value)
        if self.standard:
            parts.append(f"std={self.standard}")
        if self.architecture:
            parts.append(f"arch={self.architecture}")
        return ":".join(parts)

    def describe(self) -> str:
        text = self.kind.value
        if self.language is not None:
            text = f"{_LANGUAGE_LABELS[self.language]} {text}"
        qualifiers = []
        if self.standard:
            qualifiers.append(f"standard {self.standard}")
        if self.architecture:
            qualifiers.append(f"architecture {self.architecture}")
        if qualifiers:
            text = f"{text} supporting {' and '.join(qualifiers)}"
        return text

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class ToolchainDescriptor:
    """A concrete tool that satisfied a capability during this session."""

    capability: str
    kind: ToolKind
    family: ToolFamily
    toolchain: str
    executable: str
    version: str
    standards: frozenset[str] = frozenset()
    architectures: frozenset[str] = frozenset()

    def supports_standard(self, standard: str) -> bool:
        return normalize_standard(standard) in self.standards

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "capability": self.capability,
            "kind": self.kind.value,
            "family": self.family.value,
            "toolchain": self.toolchain,
            "executable": self.executable,
            "version": self.version,
            "standards": sorted(self.standards),
            "architectures": sorted(self.architectures),
        }


@dataclass(slots=True)
class ToolchainDefinition:
    name: str
    family: ToolFamily
    description: str | None = None
    cc: str | None = None
    cxx: str | None = None
    archiver: str | None = None

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ToolchainDefinition":
        if not isinstance(data, Mapping):
            raise ConfigValidationError(f"Toolchain '{name}' definition must be a mapping")

        allowed_keys = {"family", "description", "cc", "cxx", "archiver"}
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigValidationError(f"Toolchain '{name}' contains unknown keys: {joined}")

        raw_family = data.get("family")
        if raw_family is None:
            raise ConfigValidationError(f"Toolchain '{name}' requires a 'family' (gnu, llvm or msvc)")
        try:
            family = ToolFamily(str(raw_family).strip().lower())
        except ValueError:
            raise ConfigValidationError(
                f"Toolchain '{name}' has unknown family '{raw_family}' (expected gnu, llvm or msvc)"
            ) from None

        description = data.get("description")
        cc = data.get("cc")
        cxx = data.get("cxx")
        archiver = data.get("archiver")

        return cls(
            name=name,
            family=family,
            description=str(description) if description is not None else None,
            cc=str(cc) if cc is not None else None,
            cxx=str(cxx) if cxx is not None else None,
            archiver=str(archiver) if archiver is not None else None,
        )

    def merge(self, other: "ToolchainDefinition") -> "ToolchainDefinition":
        return ToolchainDefinition(
            name=self.name,
            family=other.family,
            description=other.description or self.description,
            cc=other.cc or self.cc,
            cxx=other.cxx or self.cxx,
            archiver=other.archiver or self.archiver,
        )

    def clone(self) -> "ToolchainDefinition":
        return ToolchainDefinition(
            name=self.name,
            family=self.family,
            description=self.description,
            cc=self.cc,
            cxx=self.cxx,
            archiver=self.archiver,
        )

    def tool_for(self, capability: Capability) -> str | None:
        if capability.kind is ToolKind.ARCHIVER:
            return self.archiver
        if capability.kind in (ToolKind.COMPILER, ToolKind.LINKER):
            if capability.language is Language.CXX:
                return self.cxx
            if capability.language is Language.C:
                return self.cc
            return None
        raise ValueError(f"Unhandled tool kind: {capability.kind!r}")


def _build_builtin_definitions() -> Dict[str, ToolchainDefinition]:
    raw: Dict[str, Mapping[str, Any]] = {
        "gcc": {
            "family": "gnu",
            "description": "GNU Compiler Collection",
            "cc": "gcc",
            "cxx": "g++",
            "archiver": "ar",
        },
        "clang": {
            "family": "llvm",
            "description": "LLVM Clang toolchain",
            "cc": "clang",
            "cxx": "clang++",
            "archiver": "llvm-ar",
        },
        "msvc": {
            "family": "msvc",
            "description": "Microsoft Visual C++",
            "cc": "cl",
            "cxx": "cl",
            "archiver": "lib",
        },
    }

    definitions: Dict[str, ToolchainDefinition] = {}
    for name, data in raw.items():
        definitions[name] = ToolchainDefinition.from_mapping(name, data)
    return definitions


_DEFAULT_ORDER: Dict[str, tuple[str, ...]] = {
    "linux": ("gcc", "clang", "msvc"),
    "darwin": ("clang", "gcc"),
    "windows": ("msvc", "clang", "gcc"),
}


class ToolchainRegistry:
    def __init__(self, definitions: Mapping[str, ToolchainDefinition] | None = None) -> None:
        self._definitions: Dict[str, ToolchainDefinition] = {}
        if definitions:
            for name, definition in definitions.items():
                self._definitions[name] = definition.clone()

    @classmethod
    def with_builtins(cls) -> "ToolchainRegistry":
        return cls(_build_builtin_definitions())

    def merge(self, definitions: Mapping[str, ToolchainDefinition]) -> None:
        for name, definition in definitions.items():
            existing = self._definitions.get(name)
            if existing:
                self._definitions[name] = existing.merge(definition)
            else:
                self._definitions[name] = definition.clone()

    def merge_from_mapping(self, mapping: Mapping[str, Any]) -> None:
        if not mapping:
            return
        parsed: Dict[str, ToolchainDefinition] = {}
        for raw_name, raw_value in mapping.items():
            name = str(raw_name).strip().lower()
            if not name:
                continue
            if isinstance(raw_value, Mapping):
                existing = self._definitions.get(name)
                if existing is not None and "family" not in raw_value:
                    raw_value = {"family": existing.family.value, **raw_value}
                parsed[name] = ToolchainDefinition.from_mapping(name, raw_value)
        if parsed:
            self.merge(parsed)

    def get(self, name: str) -> ToolchainDefinition | None:
        definition = self._definitions.get(name.lower())
        return definition.clone() if definition else None

    def available(self) -> Iterable[str]:
        return self._definitions.keys()

    def ordered(self, *, os_name: str, preferred: str | None = None) -> List[ToolchainDefinition]:
        """Return definitions in probe order.

        A preferred toolchain is the only one considered. Otherwise host
        defaults come first, followed by user-defined toolchains by name.
        """

        if preferred:
            definition = self.get(preferred)
            if definition is None:
                available = ", ".join(sorted(self.available())) or "<none>"
                raise ConfigValidationError(
                    f"Unknown toolchain '{preferred}'. Available toolchains: {available}"
                )
            return [definition]

        default_order = _DEFAULT_ORDER.get(os_name, _DEFAULT_ORDER["linux"])
        names = [name for name in default_order if name in self._definitions]
        builtin_names = set(_DEFAULT_ORDER["linux"])
        names.extend(sorted(name for name in self._definitions if name not in builtin_names))
        return [self._definitions[name].clone() for name in names]

    def validate(self) -> list[str]:
        errors: list[str] = []
        for name, definition in self._definitions.items():
            if not (definition.cc or definition.cxx):
                errors.append(f"Toolchain '{name}' must specify at least one compiler (cc/cxx)")
        return errors


_VERSION_PATTERNS = (
    re.compile(r"Version\s+(\d+(?:\.\d+)+)"),
    re.compile(r"version\s+(\d+(?:\.\d+)+)"),
    re.compile(r"(\d+\.\d+(?:\.\d+)*)"),
)
_TARGET_PATTERN = re.compile(r"^Target:\s*(\S+)", re.M)
_MSVC_ARCH_PATTERN = re.compile(r"\bfor\s+(x64|x86|arm64|ARM64|ARM)\b")


def parse_version(text: str) -> str | None:
    for pattern in _VERSION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _version_tuple(version: str) -> tuple[int, int]:
    parts = [int(part) for part in version.split(".")[:2] if part.isdigit()]
    while len(parts) < 2:
        parts.append(0)
    return parts[0], parts[1]


def detect_family(text: str, fallback: ToolFamily) -> ToolFamily:
    lowered = text.lower()
    if "microsoft" in lowered:
        return ToolFamily.MSVC
    if "clang" in lowered or "llvm" in lowered:
        return ToolFamily.LLVM
    if "free software foundation" in lowered or "gnu" in lowered or "gcc" in lowered:
        return ToolFamily.GNU
    return fallback


def supported_standards(family: ToolFamily, version: str, language: Language | None) -> frozenset[str]:
    if language is None:
        return frozenset()
    current = _version_tuple(version)
    standards = set()
    for standard, minimum in _STANDARD_SUPPORT[family].items():
        if standard_language(standard) is language and current >= minimum:
            standards.add(standard)
    return frozenset(standards)


def detect_architectures(text: str, host_architecture: str) -> frozenset[str]:
    match = _TARGET_PATTERN.search(text)
    if match:
        return frozenset({normalize_architecture(match.group(1).split("-", 1)[0])})
    match = _MSVC_ARCH_PATTERN.search(text)
    if match:
        return frozenset({normalize_architecture(match.group(1))})
    return frozenset({normalize_architecture(host_architecture)})


def version_query(family: ToolFamily) -> List[str]:
    if family in (ToolFamily.GNU, ToolFamily.LLVM):
        return ["--version"]
    if family is ToolFamily.MSVC:
        # cl and lib print their banner when started without arguments.
        return []
    raise ValueError(f"Unhandled tool family: {family!r}")


@dataclass(slots=True)
class _Candidate:
    tool: str
    definition: ToolchainDefinition


class ToolchainResolver:
    """Select one concrete tool per capability and memoize the choice.

    A resolver lives for exactly one build session. Probe output is cached by
    executable, and both successful and failed resolutions are memoized by
    capability key, so a capability is probed at most once per session.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        registry: ToolchainRegistry | None = None,
        preferred: str | None = None,
        os_name: str | None = None,
        host_architecture: str | None = None,
        probe_timeout: float = 10.0,
        which: Callable[[str], str | None] = shutil.which,
        console: Any = None,
    ) -> None:
        self._runner = runner
        self._registry = registry or ToolchainRegistry.with_builtins()
        self._preferred = preferred
        self._os_name = (os_name or platform.system() or "linux").lower()
        self._host_architecture = host_architecture or platform.machine()
        self._probe_timeout = probe_timeout
        self._which = which
        self._console = console
        self._resolved: Dict[str, ToolchainDescriptor] = {}
        self._failures: Dict[str, ToolchainNotFound] = {}
        self._probe_results: Dict[str, CommandResult | str] = {}
        self._lock = threading.Lock()
        self.probe_count = 0

    def _debug(self, message: str) -> None:
        if self._console is not None:
            self._console.debug(message)

    def candidates(self, capability: Capability) -> List[_Candidate]:
        ordered: List[_Candidate] = []
        seen: set[str] = set()
        for definition in self._registry.ordered(os_name=self._os_name, preferred=self._preferred):
            tool = definition.tool_for(capability)
            if not tool or tool in seen:
                continue
            seen.add(tool)
            ordered.append(_Candidate(tool=tool, definition=definition))
        return ordered

    def resolve(self, capability: Capability) -> ToolchainDescriptor:
        key = capability.key
        with self._lock:
            if key in self._resolved:
                return self._resolved[key]
            if key in self._failures:
                raise self._failures[key]

            tried: List[str] = []
            reasons: List[str] = []
            for candidate in self.candidates(capability):
                tried.append(candidate.tool)
                outcome = self._evaluate(candidate, capability)
                if isinstance(outcome, ToolchainDescriptor):
                    self._debug(f"{capability.describe()}: selected {outcome.executable} ({outcome.version})")
                    self._resolved[key] = outcome
                    return outcome
                reasons.append(f"{candidate.tool}: {outcome}")
                self._debug(f"{capability.describe()}: skipped {candidate.tool}: {outcome}")

            failure = ToolchainNotFound(capability.describe(), tried, reasons)
            self._failures[key] = failure
            raise failure

    def cached(self) -> Dict[str, ToolchainDescriptor]:
        with self._lock:
            return dict(self._resolved)

    def clear(self) -> None:
        with self._lock:
            self._resolved.clear()
            self._failures.clear()
            self._probe_results.clear()

    def _probe(self, executable: str, family: ToolFamily) -> CommandResult | str:
        cached = self._probe_results.get(executable)
        if cached is not None:
            return cached
        command = [executable, *version_query(family)]
        self.probe_count += 1
        outcome: CommandResult | str
        try:
            result = self._runner.run(
                command,
                check=False,
                note="probe",
                timeout=self._probe_timeout,
            )
        except CommandLaunchError as exc:
            outcome = f"could not be started ({exc.error})"
        else:
            if result.timed_out:
                outcome = f"no response within {self._probe_timeout:g}s"
            elif result.returncode != 0:
                outcome = f"version query exited with code {result.returncode}"
            else:
                outcome = result
        self._probe_results[executable] = outcome
        return outcome

    def _evaluate(self, candidate: _Candidate, capability: Capability) -> ToolchainDescriptor | str:
        executable = self._which(candidate.tool)
        if not executable:
            return "not found on PATH"

        outcome = self._probe(executable, candidate.definition.family)
        if isinstance(outcome, str):
            return outcome

        text = f"{outcome.stdout}\n{outcome.stderr}"
        version = parse_version(text)
        if version is None:
            return "version could not be determined"
        family = detect_family(text, candidate.definition.family)
        standards = supported_standards(family, version, capability.language)
        architectures = detect_architectures(text, self._host_architecture)

        if capability.standard and normalize_standard(capability.standard) not in standards:
            return f"{family.value} {version} does not support {capability.standard}"
        if capability.standard and capability.standard.startswith("gnu") and family is ToolFamily.MSVC:
            return f"{family.value} {version} does not support GNU dialect {capability.standard}"
        if capability.architecture and normalize_architecture(capability.architecture) not in architectures:
            return f"targets {', '.join(sorted(architectures))}, not {capability.architecture}"

        return ToolchainDescriptor(
            capability=capability.key,
            kind=capability.kind,
            family=family,
            toolchain=candidate.definition.name,
            executable=executable,
            version=version,
            standards=standards,
            architectures=architectures,
        )


__all__ = [
    "Capability",
    "ToolFamily",
    "ToolKind",
    "ToolchainDefinition",
    "ToolchainDescriptor",
    "ToolchainRegistry",
    "ToolchainResolver",
    "detect_family",
    "normalize_standard",
    "parse_version",
    "supported_standards",
]
