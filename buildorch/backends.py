"""Static build-script emitters for a generated build."""
from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePath
from typing import Callable, Dict, List, Sequence
import json
import shlex
import subprocess

from .errors import ConfigValidationError
from .generator import GeneratedBuild


class BackendFormat(str, Enum):
    NINJA = "ninja"
    MAKE = "make"
    SHELL = "shell"
    JSON = "json"

    @classmethod
    def parse(cls, value: str | "BackendFormat") -> "BackendFormat":
        if isinstance(value, BackendFormat):
            return value
        text = str(value).strip().lower()
        if text in ("makefile", "gmake"):
            text = cls.MAKE.value
        if text in ("sh", "script"):
            text = cls.SHELL.value
        try:
            return cls(text)
        except ValueError:
            choices = ", ".join(fmt.value for fmt in cls)
            raise ConfigValidationError(f"Unknown backend '{value}'. Available backends: {choices}") from None

    @property
    def default_filename(self) -> str:
        return _DEFAULT_FILENAMES[self]


_DEFAULT_FILENAMES: Dict[BackendFormat, str] = {
    BackendFormat.NINJA: "build.ninja",
    BackendFormat.MAKE: "Makefile",
    BackendFormat.SHELL: "build.sh",
    BackendFormat.JSON: "build-steps.json",
}


def _header(generated: GeneratedBuild, comment: str) -> List[str]:
    project = generated.plan.project
    return [
        f"{comment} Generated by buildorch for {project.name} {project.version}.",
        f"{comment} {len(generated.steps())} steps in {len(generated.tiers)} tiers. Do not edit.",
    ]


def _command_line(generated: GeneratedBuild, command: Sequence[str]) -> str:
    conventions = generated.conventions
    if conventions is not None and conventions.is_windows:
        return subprocess.list2cmdline(list(command))
    return shlex.join(command)


def _tier_name(index: int) -> str:
    return f"tier_{index}"


def _ninja_escape_path(path: str) -> str:
    return path.replace("$", "$$").replace(" ", "$ ").replace(":", "$:")


def render_ninja(generated: GeneratedBuild) -> str:
    lines = _header(generated, "#")
    lines.extend(
        [
            "ninja_required_version = 1.3",
            "",
            "rule run",
            "  command = $cmd",
            "  description = $desc",
            "",
        ]
    )
    for index, tier in enumerate(generated.tiers):
        lines.append(f"# tier {index}")
        barrier = f" || {_tier_name(index - 1)}" if index > 0 else ""
        for step in tier:
            outputs = " ".join(_ninja_escape_path(path) for path in step.outputs)
            inputs = " ".join(_ninja_escape_path(path) for path in step.inputs)
            lines.append(f"build {outputs}: run {inputs}{barrier}".rstrip())
            lines.append(f"  cmd = {_command_line(generated, step.command).replace('$', '$$')}")
            lines.append(f"  desc = {step.description}")
        outputs = " ".join(_ninja_escape_path(path) for step in tier for path in step.outputs)
        lines.append(f"build {_tier_name(index)}: phony {outputs}".rstrip())
        lines.append("")
    if generated.tiers:
        lines.append(f"default {_tier_name(len(generated.tiers) - 1)}")
    return "\n".join(lines) + "\n"


def _make_escape_path(path: str) -> str:
    return path.replace("$", "$$").replace(" ", "\\ ").replace(":", "\\:").replace("#", "\\#")


def _make_parent(path: str) -> str:
    return str(PurePath(path).parent)


def render_make(generated: GeneratedBuild) -> str:
    lines = _header(generated, "#")
    tier_names = [_tier_name(index) for index in range(len(generated.tiers))]
    last = tier_names[-1] if tier_names else ""
    lines.extend(
        [
            f".PHONY: all {' '.join(tier_names)}".rstrip(),
            f"all: {last}".rstrip(),
            "",
        ]
    )
    for index, tier in enumerate(generated.tiers):
        lines.append(f"# tier {index}")
        previous = f" | {_tier_name(index - 1)}" if index > 0 else ""
        for step in tier:
            primary, *extra = [_make_escape_path(path) for path in step.outputs]
            inputs = " ".join(_make_escape_path(path) for path in step.inputs)
            lines.append(f"{primary}: {inputs}{previous}".rstrip())
            directories = sorted({_make_parent(path) for path in step.outputs})
            lines.append(f"\t@mkdir -p {' '.join(shlex.quote(path) for path in directories)}")
            lines.append(f"\t@echo {shlex.quote(step.description)}")
            lines.append(f"\t{_command_line(generated, step.command).replace('$', '$$')}")
            for path in extra:
                lines.append(f"{path}: {primary} ;")
        outputs = " ".join(_make_escape_path(path) for step in tier for path in step.outputs)
        lines.append(f"{_tier_name(index)}: {outputs}{previous}".rstrip())
        lines.append("")
    return "\n".join(lines) + "\n"


def render_shell(generated: GeneratedBuild) -> str:
    lines = ["#!/bin/sh"]
    lines.extend(_header(generated, "#"))
    lines.extend(["set -e", ""])
    for index, tier in enumerate(generated.tiers):
        lines.append(f"# tier {index}")
        directories = sorted({_make_parent(path) for step in tier for path in step.outputs})
        if directories:
            lines.append(f"mkdir -p {' '.join(shlex.quote(path) for path in directories)}")
        for step in tier:
            lines.append(f"echo {shlex.quote(step.description)}")
            lines.append(shlex.join(step.command))
        lines.append("")
    return "\n".join(lines) + "\n"


def render_json(generated: GeneratedBuild) -> str:
    return json.dumps(generated.to_mapping(), indent=2) + "\n"


_RENDERERS: Dict[BackendFormat, Callable[[GeneratedBuild], str]] = {
    BackendFormat.NINJA: render_ninja,
    BackendFormat.MAKE: render_make,
    BackendFormat.SHELL: render_shell,
    BackendFormat.JSON: render_json,
}


def render(generated: GeneratedBuild, backend: BackendFormat | str) -> str:
    fmt = BackendFormat.parse(backend)
    renderer = _RENDERERS.get(fmt)
    if renderer is None:
        raise ValueError(f"Unhandled backend: {fmt!r}")
    return renderer(generated)


def write_backend(generated: GeneratedBuild, backend: BackendFormat | str, path: Path) -> Path:
    """Render ``generated`` and write it to ``path`` (a directory gets the default name)."""

    fmt = BackendFormat.parse(backend)
    if path.is_dir():
        path = path / fmt.default_filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render(generated, fmt), encoding="utf-8")
    if fmt is BackendFormat.SHELL:
        path.chmod(0o755)
    return path


__all__ = [
    "BackendFormat",
    "render",
    "render_json",
    "render_make",
    "render_ninja",
    "render_shell",
    "write_backend",
]
