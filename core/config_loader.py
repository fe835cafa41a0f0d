"""Decoding project files into plain mappings."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Sequence
import json
import tomllib

import yaml


Decoder = Callable[[str], Any]


DECODERS: Dict[str, Decoder] = {
    ".toml": tomllib.loads,
    ".json": json.loads,
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
}
"""Mapping of file suffixes to text decoders."""

DECODE_ERRORS = (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError)


class ConfigFileError(ValueError):
    """A config file cannot be read, decoded, or has no table at its root."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


def supported_suffixes() -> List[str]:
    return sorted(DECODERS)


def load_config_file(path: Path) -> Dict[str, Any]:
    """Decode ``path`` by its suffix and return the root table.

    An empty YAML document decodes to an empty table.
    """

    suffix = path.suffix.lower()
    decoder = DECODERS.get(suffix)
    if decoder is None:
        supported = ", ".join(supported_suffixes())
        raise ConfigFileError(path, f"unsupported extension '{suffix}' (supported: {supported})")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigFileError(path, f"cannot be read: {exc.strerror or exc}") from exc
    try:
        data = decoder(text)
    except DECODE_ERRORS as exc:
        raise ConfigFileError(path, f"invalid {suffix.lstrip('.')}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(path, f"must contain a table at the root, not {type(data).__name__}")
    return data


def find_config_file(directory: Path, names: Iterable[str]) -> Path | None:
    """Return the first of ``names`` that exists as a file in ``directory``."""

    for name in names:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def normalize_string_list(value: Any, *, field_name: str | None = None, unique: bool = False) -> List[str]:
    """Coerce ``value`` into a list of trimmed, non-empty strings.

    With ``unique`` the result is an ordered set: later duplicates are dropped.
    """

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, str):
        raw: Sequence[Any] = [value]
    elif isinstance(value, Sequence) and not isinstance(value, bytes):
        raw = value
    else:
        raise TypeError(f"{label}must be a string or a list of strings")

    items: List[str] = []
    for item in raw:
        if not isinstance(item, str):
            raise TypeError(f"{label}entries must be strings, got {type(item).__name__}")
        text = item.strip()
        if not text or (unique and text in items):
            continue
        items.append(text)
    return items


__all__ = [
    "ConfigFileError",
    "DECODERS",
    "Decoder",
    "find_config_file",
    "load_config_file",
    "normalize_string_list",
    "supported_suffixes",
]
