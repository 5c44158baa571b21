"""Uniform console output: levelled messages, step markers, prompts and progress."""

from __future__ import annotations

import json
import math
import os
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

_state_lock = threading.RLock()
_verbose = False
_non_interactive = False
_json_output = False

_COLOR_RESET = "\033[0m"


class OutputLevel(str, Enum):
    """Severity of an output message."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


_STYLES: dict[OutputLevel, tuple[str, str]] = {
    OutputLevel.DEBUG: ("[DEBUG]", "\033[90m"),
    OutputLevel.INFO: ("[INFO]", "\033[34m"),
    OutputLevel.WARNING: ("[WARN]", "\033[33m"),
    OutputLevel.ERROR: ("[ERROR]", "\033[31m"),
    OutputLevel.SUCCESS: ("[OK]", "\033[32m"),
}


@dataclass
class Message:
    """A structured output message."""

    level: OutputLevel
    text: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the message; ``data`` is omitted when unset."""
        result: dict[str, Any] = {"level": self.level.value, "text": self.text}
        if self.data is not None:
            result["data"] = self.data
        result["timestamp"] = self.timestamp.isoformat()
        return result


def set_verbose(enabled: bool) -> None:
    """Show or hide debug messages."""
    global _verbose
    with _state_lock:
        _verbose = bool(enabled)


def set_non_interactive(enabled: bool) -> None:
    """Enable or disable interactive prompts."""
    global _non_interactive
    with _state_lock:
        _non_interactive = bool(enabled)


def set_json_output(enabled: bool) -> None:
    """Switch between human-readable and JSON output."""
    global _json_output
    with _state_lock:
        _json_output = bool(enabled)


def _format(fmt: str, args: tuple[Any, ...]) -> str:
    return fmt % args if args else fmt


def _is_terminal() -> bool:
    term = os.environ.get("TERM", "")
    return term not in ("", "dumb")


def _output(level: OutputLevel, fmt: str, args: tuple[Any, ...]) -> None:
    with _state_lock:
        use_json = _json_output
        use_verbose = _verbose

    if level is OutputLevel.DEBUG and not use_verbose:
        return

    message = Message(level=level, text=_format(fmt, args))

    if use_json:
        try:
            encoded = json.dumps(message.to_dict(), indent=2)
        except (TypeError, ValueError) as exc:
            sys.stderr.write(f"Failed to encode JSON output: {exc}\n")
            return
        sys.stdout.write(encoded + "\n")
        return

    stream = sys.stderr if level is OutputLevel.ERROR else sys.stdout
    prefix, color = _STYLES[level]
    if _is_terminal():
        stream.write(f"{color}{prefix:<8}{_COLOR_RESET} {message.text}\n")
    else:
        stream.write(f"{prefix:<8} {message.text}\n")


def debug(fmt: str, *args: Any) -> None:
    """Write a debug message; shown only in verbose mode."""
    _output(OutputLevel.DEBUG, fmt, args)


def info(fmt: str, *args: Any) -> None:
    """Write an informational message."""
    _output(OutputLevel.INFO, fmt, args)


def warning(fmt: str, *args: Any) -> None:
    """Write a warning message."""
    _output(OutputLevel.WARNING, fmt, args)


def error(fmt: str, *args: Any) -> None:
    """Write an error message to stderr."""
    _output(OutputLevel.ERROR, fmt, args)


def success(fmt: str, *args: Any) -> None:
    """Write a success message."""
    _output(OutputLevel.SUCCESS, fmt, args)


def step(step: int, total: int, fmt: str, *args: Any) -> None:
    """Write a numbered step marker such as ``[2/5] text``."""
    with _state_lock:
        use_json = _json_output
    if use_json:
        info(fmt, *args)
        return
    sys.stdout.write(f"  [{step}/{total}] {_format(fmt, args)}\n")


def confirm(fmt: str, *args: Any) -> bool:
    """Ask a yes/no question; always ``True`` in non-interactive mode."""
    with _state_lock:
        non_interactive = _non_interactive
    if non_interactive:
        return True

    sys.stdout.write(f"[?] {_format(fmt, args)} [y/N]: ")
    sys.stdout.flush()
    words = sys.stdin.readline().split()
    response = words[0] if words else ""
    return response in ("y", "Y", "yes")


class Progress:
    """A simple counter-based progress indicator."""

    def __init__(self, title: str, total: int) -> None:
        self.title = title
        self.total = total
        self.current = 0
        self._lock = threading.Lock()

    def update(self) -> None:
        """Advance by one item and redraw the indicator."""
        with self._lock:
            self.current += 1
            with _state_lock:
                use_json = _json_output
            if use_json:
                return

            if self.total:
                percentage = self.current / self.total * 100
            else:
                percentage = math.inf
            sys.stdout.write(
                f"\r[*] {self.title}: {self.current}/{self.total} ({percentage:.1f}%)"
            )
            if self.current >= self.total:
                sys.stdout.write("\n")

    def complete(self) -> None:
        """Mark every item as done."""
        with self._lock:
            self.current = self.total
            with _state_lock:
                use_json = _json_output
            if not use_json:
                sys.stdout.write(f"\r[OK] {self.title}: Complete\n")