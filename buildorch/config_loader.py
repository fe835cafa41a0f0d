"""Loading project files into a configuration model plus engine settings."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
import os

from core.config_loader import ConfigFileError, find_config_file, load_config_file

from .backends import BackendFormat
from .console import Console
from .environment import default_jobs
from .errors import ConfigValidationError
from .graph import Granularity
from .model import Project
from .toolchains import ToolchainRegistry

JOBS_ENVIRONMENT_VARIABLE = "BUILDORCH_JOBS"
DEFAULT_CONFIG_NAMES = ("buildorch.toml", "buildorch.yaml", "buildorch.yml", "buildorch.json")

_ENGINE_KEYS = {
    "jobs",
    "fail_fast",
    "step_timeout",
    "probe_timeout",
    "granularity",
    "backend",
    "log_level",
    "verify_outputs",
}


def _parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
    raise ConfigValidationError(f"engine.{field_name} must be a boolean")


def _parse_positive_int(value: Any, field_name: str) -> int:
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ConfigValidationError(f"{field_name} must be an integer, got '{value}'") from None
    if number < 1:
        raise ConfigValidationError(f"{field_name} must be at least 1, got {number}")
    return number


def _parse_timeout(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigValidationError(f"engine.{field_name} must be a number of seconds")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"engine.{field_name} must be a number of seconds") from None
    if seconds <= 0:
        raise ConfigValidationError(f"engine.{field_name} must be positive, got {seconds:g}")
    return seconds


@dataclass(slots=True)
class EngineConfig:
    jobs: int = field(default_factory=default_jobs)
    fail_fast: bool = False
    step_timeout: float | None = None
    probe_timeout: float = 10.0
    granularity: Granularity = Granularity.TARGET
    backend: BackendFormat = BackendFormat.NINJA
    log_level: str = "info"
    verify_outputs: bool = True

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any] | None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> "EngineConfig":
        section = data or {}
        if not isinstance(section, Mapping):
            raise ConfigValidationError("[engine] must be a table")
        unknown = sorted(str(key) for key in section if key not in _ENGINE_KEYS)
        if unknown:
            raise ConfigValidationError(f"Unknown [engine] keys: {', '.join(unknown)}")

        config = cls()
        if "jobs" in section:
            config.jobs = _parse_positive_int(section["jobs"], "engine.jobs")
        if "fail_fast" in section:
            config.fail_fast = _parse_bool(section["fail_fast"], "fail_fast")
        if "step_timeout" in section:
            config.step_timeout = _parse_timeout(section["step_timeout"], "step_timeout")
        if "probe_timeout" in section:
            config.probe_timeout = _parse_timeout(section["probe_timeout"], "probe_timeout") or config.probe_timeout
        if "granularity" in section:
            config.granularity = Granularity.parse(str(section["granularity"]))
        if "backend" in section:
            config.backend = BackendFormat.parse(str(section["backend"]))
        if "log_level" in section:
            level = str(section["log_level"]).strip().lower()
            if level not in Console.LEVELS:
                choices = ", ".join(Console.LEVELS)
                raise ConfigValidationError(f"Unknown log level '{level}'. Expected one of: {choices}")
            config.log_level = level
        if "verify_outputs" in section:
            config.verify_outputs = _parse_bool(section["verify_outputs"], "verify_outputs")

        env = os.environ if environ is None else environ
        override = env.get(JOBS_ENVIRONMENT_VARIABLE)
        if override is not None and override.strip():
            config.jobs = _parse_positive_int(override, JOBS_ENVIRONMENT_VARIABLE)
        return config


def _preferred_toolchain(data: Mapping[str, Any]) -> str | None:
    project_section = data.get("project")
    if isinstance(project_section, Mapping) and project_section.get("toolchain"):
        return str(project_section["toolchain"]).strip().lower() or None
    section = data.get("toolchain")
    if section is None:
        return None
    if isinstance(section, str):
        return section.strip().lower() or None
    if isinstance(section, Mapping):
        value = section.get("name") or section.get("preferred")
        return str(value).strip().lower() if value else None
    raise ConfigValidationError("[toolchain] must be a toolchain name or a table with 'name'")


@dataclass(slots=True)
class ProjectConfiguration:
    project: Project
    engine: EngineConfig = field(default_factory=EngineConfig)
    registry: ToolchainRegistry = field(default_factory=ToolchainRegistry.with_builtins)
    preferred_toolchain: str | None = None
    path: Path | None = None

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        base_dir: Path | None = None,
        environ: Mapping[str, str] | None = None,
        path: Path | None = None,
    ) -> "ProjectConfiguration":
        project = Project.from_mapping(data, base_dir=base_dir)
        engine = EngineConfig.from_mapping(data.get("engine"), environ=environ)

        registry = ToolchainRegistry.with_builtins()
        toolchains_section = data.get("toolchains")
        if toolchains_section is not None:
            if not isinstance(toolchains_section, Mapping):
                raise ConfigValidationError("[toolchains] must be a table of toolchain definitions")
            registry.merge_from_mapping(toolchains_section)
        errors = registry.validate()
        if errors:
            raise ConfigValidationError(errors)

        preferred = _preferred_toolchain(data)
        if preferred and registry.get(preferred) is None:
            available = ", ".join(sorted(registry.available())) or "<none>"
            raise ConfigValidationError(f"Unknown toolchain '{preferred}'. Available toolchains: {available}")

        return cls(
            project=project,
            engine=engine,
            registry=registry,
            preferred_toolchain=preferred,
            path=path,
        )


def find_project_file(directory: Path) -> Path | None:
    return find_config_file(directory, DEFAULT_CONFIG_NAMES)


def load_project_file(path: Path, *, environ: Mapping[str, str] | None = None) -> ProjectConfiguration:
    """Read ``path`` and build a validated :class:`ProjectConfiguration`.

    Relative ``source_root`` and ``build_dir`` resolve against the file's
    directory, never the process working directory.
    """

    path = Path(path)
    if not path.exists():
        raise ConfigValidationError(f"Project file not found: {path}")
    try:
        data = load_config_file(path)
    except ConfigFileError as exc:
        raise ConfigValidationError(str(exc)) from exc
    return ProjectConfiguration.from_mapping(
        data,
        base_dir=path.resolve().parent,
        environ=environ,
        path=path,
    )


__all__ = [
    "DEFAULT_CONFIG_NAMES",
    "EngineConfig",
    "JOBS_ENVIRONMENT_VARIABLE",
    "ProjectConfiguration",
    "find_project_file",
    "load_project_file",
]
