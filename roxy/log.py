"""A minimal line-oriented logger writing events to standard output."""

from __future__ import annotations

import enum
import sys
from collections.abc import Mapping
from typing import Any, TextIO

from roxy.timestamp import DateTime


class Level(enum.IntEnum):
    """Log levels; a larger value is more verbose."""

    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4
    TRACE = 5

    @classmethod
    def parse(cls, text: str) -> Level:
        """Parse a level name (case-insensitive) or a number from 1 to 5."""
        if text.isdigit():
            try:
                return cls(int(text))
            except ValueError:
                pass
        else:
            try:
                return cls[text.upper()]
            except KeyError:
                pass
        raise ValueError(
            f"invalid level {text!r}, expected one of trace, debug, info, warn, "
            "error, or a number 1-5"
        )


def _debug_str(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _error_source(error: BaseException) -> BaseException | None:
    if error.__cause__ is not None:
        return error.__cause__
    if error.__context__ is not None and not error.__suppress_context__:
        return error.__context__
    return None


def _render_value(name: str, value: Any) -> str:
    if isinstance(value, BaseException):
        source = _error_source(value)
        if source is None:
            return str(value)
        sources = []
        while source is not None:
            sources.append(str(source))
            source = _error_source(source)
        return f"{value}, {name}.sources: [{', '.join(sources)}]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return _debug_str(value)
    return repr(value)


class Logger:
    """Formats events as single lines and writes those at or below its level."""

    def __init__(
        self,
        level: Level = Level.INFO,
        timestamp: bool = True,
        stream: TextIO | None = None,
    ) -> None:
        self.level = level
        self.timestamp = timestamp
        self._stream = stream

    def enabled(self, level: Level) -> bool:
        """Whether events at ``level`` are written."""
        return level <= self.level

    def format_event(
        self,
        level: Level,
        module: str | None,
        message: Any,
        fields: Mapping[str, Any],
    ) -> str:
        """Render one event as a line, without the trailing newline."""
        parts = []
        if self.timestamp:
            parts.append(f"{DateTime.now()} ")
        parts.append(f"{level.name:<5} ")
        if module:
            parts.append(f"{module} ")
        if message is not None:
            parts.append(str(message))
        for name, value in fields.items():
            name = name.removeprefix("r#")
            parts.append(f" {name}={_render_value(name, value)}")
        return "".join(parts)

    def log(
        self,
        level: Level,
        message: Any,
        module: str | None = None,
        **kwargs: Any,
    ) -> str | None:
        """Write an event if enabled; return the written line, or None."""
        if not self.enabled(level):
            return None
        line = self.format_event(level, module, message, kwargs)
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(line + "\n")
        stream.flush()
        return line


class _GlobalLogger:
    def __init__(self) -> None:
        self.logger: Logger | None = None


_GLOBAL = _GlobalLogger()


def init(level: Level, timestamp: bool) -> Logger:
    """Install the process-wide logger; it can be installed only once."""
    if _GLOBAL.logger is not None:
        raise RuntimeError("set global logger failed")
    _GLOBAL.logger = Logger(level, timestamp)
    return _GLOBAL.logger