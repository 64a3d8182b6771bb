"""Console output sinks injected into build components."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Protocol, TextIO, runtime_checkable
import sys


@runtime_checkable
class Console(Protocol):
    """Minimal console interface required by the assembly pipeline."""

    dry_run: bool

    def info(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def debug(self, message: str) -> None:
        ...


class StreamConsole:
    """Simple console output handler with configurable log level.

    Levels: none < error < warning < info < debug
    Default: 'none' (no output)
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warning": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(
        self,
        level: str = "none",
        dry_run: bool = False,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        normalized = level.strip().lower()
        if normalized not in self.LEVELS:
            supported = ", ".join(self.LEVELS)
            raise ValueError(f"Unknown log level '{level}'. Supported: {supported}")
        self.level_name = normalized
        self.level = self.LEVELS[normalized]
        self.dry_run = dry_run
        self._stdout = stdout
        self._stderr = stderr

    def _out(self) -> TextIO:
        return self._stdout or sys.stdout

    def _err(self) -> TextIO:
        return self._stderr or sys.stderr

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"[INFO] {message}", file=self._out())

    def warning(self, message: str) -> None:
        if self.level >= self.LEVELS["warning"]:
            print(f"[WARNING] {message}", file=self._err())

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[ERROR] {message}", file=self._err())

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"[DEBUG] {message}", file=self._out())


@dataclass(slots=True)
class RecordedMessage:
    level: str
    message: str


@dataclass
class RecordingConsole:
    """Console that records messages instead of printing them."""

    dry_run: bool = False
    messages: List[RecordedMessage] = field(default_factory=list)

    def info(self, message: str) -> None:
        self.messages.append(RecordedMessage("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(RecordedMessage("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(RecordedMessage("error", message))

    def debug(self, message: str) -> None:
        self.messages.append(RecordedMessage("debug", message))

    def of_level(self, level: str) -> List[str]:
        return [record.message for record in self.messages if record.level == level]


def default_console() -> Console:
    """Return the silent console used when callers do not inject one."""

    return StreamConsole("none")


__all__ = [
    "Console",
    "RecordedMessage",
    "RecordingConsole",
    "StreamConsole",
    "default_console",
]
