"""Shared core utilities for build orchestration."""

from .command_runner import (
    CancelSignal,
    CommandError,
    CommandLaunchError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    spawned_process,
    terminate_process,
)
from .config_loader import (
    ConfigFileError,
    DECODERS,
    find_config_file,
    load_config_file,
    normalize_string_list,
    supported_suffixes,
)
from .graph import CycleError, find_cycle, reachable_from, topological_tiers

__all__ = [
    "CancelSignal",
    "CommandError",
    "CommandLaunchError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "spawned_process",
    "terminate_process",
    "ConfigFileError",
    "DECODERS",
    "find_config_file",
    "load_config_file",
    "normalize_string_list",
    "supported_suffixes",
    "CycleError",
    "find_cycle",
    "reachable_from",
    "topological_tiers",
]
