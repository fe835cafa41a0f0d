"""Host platform detection and artifact naming conventions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict
import os
import platform

from .model import TargetKind


@dataclass(frozen=True, slots=True)
class PlatformConventions:
    os_name: str
    architecture: str
    executable_suffix: str
    shared_prefix: str
    shared_suffix: str
    static_prefix: str
    static_suffix: str

    @property
    def is_windows(self) -> bool:
        return self.os_name == "windows"

    @property
    def is_darwin(self) -> bool:
        return self.os_name == "darwin"

    def artifact_name(self, name: str, kind: TargetKind) -> str:
        if kind is TargetKind.EXECUTABLE:
            return f"{name}{self.executable_suffix}"
        if kind is TargetKind.SHARED_LIBRARY:
            return f"{self.shared_prefix}{name}{self.shared_suffix}"
        if kind is TargetKind.STATIC_LIBRARY:
            return f"{self.static_prefix}{name}{self.static_suffix}"
        raise ValueError(f"Unhandled target kind: {kind!r}")

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "os": self.os_name,
            "architecture": self.architecture,
        }


_CONVENTIONS: Dict[str, Dict[str, str]] = {
    "linux": {
        "executable_suffix": "",
        "shared_prefix": "lib",
        "shared_suffix": ".so",
        "static_prefix": "lib",
        "static_suffix": ".a",
    },
    "darwin": {
        "executable_suffix": "",
        "shared_prefix": "lib",
        "shared_suffix": ".dylib",
        "static_prefix": "lib",
        "static_suffix": ".a",
    },
    "windows": {
        "executable_suffix": ".exe",
        "shared_prefix": "",
        "shared_suffix": ".dll",
        "static_prefix": "",
        "static_suffix": ".lib",
    },
}


def conventions_for(os_name: str, architecture: str | None = None) -> PlatformConventions:
    """Return naming conventions for ``os_name``; unknown Unix flavours use Linux rules."""

    key = os_name.lower()
    values = _CONVENTIONS.get(key, _CONVENTIONS["linux"])
    return PlatformConventions(
        os_name=key,
        architecture=architecture or platform.machine(),
        **values,
    )


def host_platform() -> PlatformConventions:
    return conventions_for(platform.system() or "linux", platform.machine())


def default_jobs() -> int:
    return os.cpu_count() or 1


__all__ = ["PlatformConventions", "conventions_for", "default_jobs", "host_platform"]
