"""Leveled console output for the engine and its CLI."""
from __future__ import annotations

from typing import TextIO
import sys
import threading


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(
        self,
        level: str = "info",
        dry_run: bool = False,
        *,
        stream: TextIO | None = None,
        error_stream: TextIO | None = None,
    ):
        if level not in self.LEVELS:
            choices = ", ".join(self.LEVELS)
            raise ValueError(f"Unknown log level '{level}'. Expected one of: {choices}")
        self.level_name = level
        self.level = self.LEVELS[level]
        self.dry_run = dry_run
        self._stream = stream
        self._error_stream = error_stream
        # Worker threads report concurrently; keep lines whole.
        self._lock = threading.Lock()

    def _emit(self, message: str, *, error: bool = False) -> None:
        if error:
            target = self._error_stream or sys.stderr
        else:
            target = self._stream or sys.stdout
        with self._lock:
            print(message, file=target, flush=True)

    def derive(self, *, dry_run: bool) -> "Console":
        return Console(self.level_name, dry_run, stream=self._stream, error_stream=self._error_stream)

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(f"[INFO] {message}")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self._emit(f"[ERROR] {message}", error=True)

    def dry(self, message: str) -> None:
        if self.dry_run:
            self._emit(f"[DRY] {message}")

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self._emit(f"[DEBUG] {message}")


__all__ = ["Console"]
