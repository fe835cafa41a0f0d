"""Command line interface for the build orchestration engine."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List
import json
import signal
import sys
import threading

from .backends import BackendFormat
from .config_loader import (
    DEFAULT_CONFIG_NAMES,
    ProjectConfiguration,
    find_project_file,
    load_project_file,
)
from .console import Console
from .errors import (
    CancellationRequested,
    ConfigValidationError,
    DependencyCycle,
    ToolchainNotFound,
    UnresolvedDependency,
)
from .executor import CancellationToken
from .graph import Granularity
from .report import EXIT_CANCELLED, EXIT_PLANNING_FAILED, EXIT_SUCCESS, SessionReport
from .session import BuildSession

PLANNING_ERRORS = (ConfigValidationError, DependencyCycle, UnresolvedDependency, ToolchainNotFound)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise ValueError(value)
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise ValueError(value)
    return number


def _add_planning_arguments(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--granularity",
        choices=[item.value for item in Granularity],
        help="Schedule one node per target or one per translation unit",
    )
    parser.add_argument("-T", "--toolchain", help="Use only this toolchain family")


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="buildorch", description="Declarative C/C++ build orchestrator")
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        help=f"Project file (default: first of {', '.join(DEFAULT_CONFIG_NAMES)} in the current directory)",
    )
    parser.add_argument(
        "--log-level",
        choices=list(Console.LEVELS),
        help="Console verbosity (default: [engine] log_level or info)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Validate the project file and its dependency graph")

    plan_parser = subparsers.add_parser("plan", help="Resolve toolchains and print the tiered plan")
    _add_planning_arguments(plan_parser)
    plan_parser.add_argument("--json", action="store_true", help="Print the plan as JSON")

    toolchain_parser = subparsers.add_parser("toolchains", help="Resolve and print the tools the project needs")
    _add_planning_arguments(toolchain_parser)
    toolchain_parser.add_argument("--json", action="store_true", help="Print descriptors as JSON")

    generate_parser = subparsers.add_parser("generate", help="Write a static build script for an external runner")
    _add_planning_arguments(generate_parser)
    generate_parser.add_argument(
        "-b",
        "--backend",
        choices=[item.value for item in BackendFormat],
        help="Backend format (default: [engine] backend or ninja)",
    )
    generate_parser.add_argument("-o", "--output", metavar="PATH", help="Output file or directory (default: build dir)")

    build_parser = subparsers.add_parser("build", help="Plan and execute the build")
    _add_planning_arguments(build_parser)
    build_parser.add_argument("-j", "--jobs", type=_positive_int, help="Number of parallel workers")
    build_parser.add_argument("--fail-fast", action="store_true", default=None, help="Stop after the first failed step")
    build_parser.add_argument("--timeout", type=_positive_float, metavar="SECONDS", help="Per-step wall-clock limit")
    build_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    build_parser.add_argument("--report", metavar="PATH", help="Write the execution report to PATH")
    build_parser.add_argument(
        "--report-format",
        choices=["json", "text"],
        default="text",
        help="Execution report format (default: text)",
    )
    return parser.parse_args(list(argv))


def _load_configuration(args: Namespace) -> ProjectConfiguration:
    if args.config:
        path = Path(args.config)
    else:
        found = find_project_file(Path.cwd())
        if found is None:
            raise ConfigValidationError(
                f"No project file found in {Path.cwd()} (looked for {', '.join(DEFAULT_CONFIG_NAMES)})"
            )
        path = found
    configuration = load_project_file(path)

    engine = configuration.engine
    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if getattr(args, "granularity", None):
        overrides["granularity"] = Granularity.parse(args.granularity)
    if getattr(args, "backend", None):
        overrides["backend"] = BackendFormat.parse(args.backend)
    if getattr(args, "jobs", None):
        overrides["jobs"] = args.jobs
    if getattr(args, "fail_fast", None):
        overrides["fail_fast"] = True
    if getattr(args, "timeout", None):
        overrides["step_timeout"] = args.timeout
    if overrides:
        configuration.engine = replace(engine, **overrides)

    toolchain = getattr(args, "toolchain", None)
    if toolchain:
        name = toolchain.strip().lower()
        if configuration.registry.get(name) is None:
            available = ", ".join(sorted(configuration.registry.available()))
            raise ConfigValidationError(f"Unknown toolchain '{name}'. Available toolchains: {available}")
        configuration.preferred_toolchain = name
    return configuration


def _open_session(args: Namespace) -> BuildSession:
    configuration = _load_configuration(args)
    console = Console(level=configuration.engine.log_level)
    return BuildSession(configuration, console=console)


def _handle_validate(args: Namespace) -> int:
    with _open_session(args) as session:
        plan = session.order()
        project = session.project
        print(
            f"Validation successful: {project.name} {project.version}, "
            f"{len(project.targets)} target(s), {len(plan.graph)} node(s) in {len(plan.tiers)} tier(s)"
        )
    return EXIT_SUCCESS


def _handle_plan(args: Namespace) -> int:
    with _open_session(args) as session:
        plan = session.plan()
        if args.json:
            print(json.dumps(plan.to_mapping(), indent=2))
            return EXIT_SUCCESS
        print(f"Build plan for {plan.project.name} {plan.project.version} ({plan.graph.granularity.value})")
        for index, tier in enumerate(plan.tiers):
            print(f"  tier {index}:")
            for node in tier:
                tools = ", ".join(f"{slot}={tool.executable}" for slot, tool in sorted(node.toolchains.items()))
                print(f"    - {node.name} [{node.role.value}] {tools}".rstrip())
    return EXIT_SUCCESS


def _handle_toolchains(args: Namespace) -> int:
    with _open_session(args) as session:
        plan = session.plan()
        if args.json:
            print(json.dumps({key: tool.to_mapping() for key, tool in sorted(plan.toolchains.items())}, indent=2))
            return EXIT_SUCCESS
        for key, tool in sorted(plan.toolchains.items()):
            print(f"{key}")
            print(f"    {tool.executable} ({tool.family.value} {tool.version}, toolchain {tool.toolchain})")
    return EXIT_SUCCESS


def _handle_generate(args: Namespace) -> int:
    with _open_session(args) as session:
        output = Path(args.output) if args.output else None
        written = session.generate(session.engine.backend, output)
        print(written)
    return EXIT_SUCCESS


def _emit_report(report: SessionReport, args: Namespace) -> None:
    if args.report_format == "json":
        text = report.to_json() + "\n"
    else:
        text = "\n".join(report.format_table()) + "\n"
    if args.report:
        path = Path(args.report)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)


def _handle_build(args: Namespace) -> int:
    token = CancellationToken()

    def _on_interrupt(signum, frame) -> None:
        print("Interrupted; cancelling build", file=sys.stderr)
        token.cancel()

    install = threading.current_thread() is threading.main_thread()
    previous = signal.signal(signal.SIGINT, _on_interrupt) if install else None
    try:
        with _open_session(args) as session:
            session.plan()
            # Interrupted while probing toolchains; nothing has run yet.
            token.raise_if_cancelled()
            report = session.execute(token, dry_run=args.dry_run)
    finally:
        if install:
            signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)

    _emit_report(report, args)
    for failure in report.failures():
        print(f"Error: {failure}", file=sys.stderr)
    return report.exit_code


_HANDLERS = {
    "validate": _handle_validate,
    "plan": _handle_plan,
    "toolchains": _handle_toolchains,
    "generate": _handle_generate,
    "build": _handle_build,
}


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    handler = _HANDLERS.get(args.command)
    if handler is None:
        raise ValueError(f"Unknown command: {args.command}")
    try:
        return handler(args)
    except PLANNING_ERRORS as exc:
        print(f"Error: {exc}")
        return EXIT_PLANNING_FAILED
    except CancellationRequested as exc:
        print(f"Aborted: {exc}", file=sys.stderr)
        return EXIT_CANCELLED


__all__: List[str] = ["main"]
