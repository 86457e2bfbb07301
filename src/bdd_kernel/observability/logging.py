from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

LOG_LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


@dataclass(frozen=True, slots=True)
class LogMessage:
    # Structured log payload; sinks decide how it is rendered.
    level: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    fields: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.level or not self.message:
            raise ValueError("LogMessage requires non-empty level/message")
        if self.level not in LOG_LEVELS:
            raise ValueError(f"LogMessage.level must be one of: {sorted(LOG_LEVELS)}")


@runtime_checkable
class LogSink(Protocol):
    def emit(self, message: LogMessage) -> None:
        raise NotImplementedError("LogSink is a port; use a concrete adapter.")


@dataclass(frozen=True, slots=True)
class KernelLogger:
    # Level filter in front of an optional sink; no sink means logging is disabled.
    sink: LogSink | None = None
    level: str = "info"

    def __post_init__(self) -> None:
        if self.level not in LOG_LEVELS:
            raise ValueError(f"KernelLogger.level must be one of: {sorted(LOG_LEVELS)}")

    def enabled_for(self, level: str) -> bool:
        return self.sink is not None and LOG_LEVELS[level] >= LOG_LEVELS[self.level]

    def log(self, level: str, message: str, **fields: object) -> None:
        if not self.enabled_for(level):
            return
        assert self.sink is not None
        self.sink.emit(LogMessage(level=level, message=message, fields=dict(fields)))

    def debug(self, message: str, **fields: object) -> None:
        self.log("debug", message, **fields)

    def info(self, message: str, **fields: object) -> None:
        self.log("info", message, **fields)

    def warning(self, message: str, **fields: object) -> None:
        self.log("warning", message, **fields)

    def error(self, message: str, **fields: object) -> None:
        self.log("error", message, **fields)
