from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable
from dataclasses import fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from bdd_kernel.kernel.results import (
    FeatureResult,
    HookResult,
    PhaseEvent,
    ResultRecord,
    ScenarioResult,
    StepResult,
    SuiteResult,
)
from bdd_kernel.ports.result_sink import ResultSink

_RECORD_KINDS: dict[type, str] = {
    PhaseEvent: "phase",
    StepResult: "step",
    HookResult: "hook",
    ScenarioResult: "scenario",
    FeatureResult: "feature",
    SuiteResult: "suite",
}


class InMemoryResultSink(ResultSink):
    # Keeps every record in arrival order; used by tests and embedding callers.
    def __init__(self, *, include_phases: bool = True) -> None:
        self.records: list[ResultRecord] = []
        self._include_phases = include_phases
        self.closed = False

    def emit(self, record: ResultRecord) -> None:
        if not self._include_phases and isinstance(record, PhaseEvent):
            return
        self.records.append(record)

    def flush(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    def of_type(self, kind: type) -> list[ResultRecord]:
        return [record for record in self.records if isinstance(record, kind)]


class JsonlResultSink(ResultSink):
    # JsonlResultSink writes one record per line as soon as it is emitted.
    def __init__(
        self,
        *,
        path: Path,
        write_mode: Literal["line", "batch"] = "line",
        flush_every_n: int = 1,
        fsync_every_n: int | None = None,
        include_phases: bool = True,
    ) -> None:
        self._path = path
        self._write_mode = write_mode
        self._flush_every_n = max(1, flush_every_n)
        self._fsync_every_n = fsync_every_n
        self._include_phases = include_phases
        self._emit_count = 0
        self._buffer: list[str] = []
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self._path.open("a", encoding="utf-8")

    def emit(self, record: ResultRecord) -> None:
        if not self._include_phases and isinstance(record, PhaseEvent):
            return
        line = _dumps(record)
        self._emit_count += 1
        if self._write_mode == "batch":
            self._buffer.append(line)
            if len(self._buffer) >= self._flush_every_n:
                self._write_lines(self._buffer)
                self._buffer.clear()
        else:
            self._write_lines([line])
            if self._emit_count % self._flush_every_n == 0:
                self._handle.flush()
        if self._fsync_every_n and self._emit_count % self._fsync_every_n == 0:
            self._handle.flush()
            os.fsync(self._handle.fileno())

    def flush(self) -> None:
        # Flush both buffered and handle-level writes.
        if self._buffer:
            self._write_lines(self._buffer)
            self._buffer.clear()
        self._handle.flush()

    def close(self) -> None:
        # Close releases file descriptor; always flush pending data first.
        if self._handle.closed:
            return
        self.flush()
        self._handle.close()

    def _write_lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            self._handle.write(line + "\n")


class StdoutResultSink(ResultSink):
    # StdoutResultSink prints one JSON record per line.
    def __init__(self, *, include_phases: bool = False) -> None:
        self._include_phases = include_phases

    def emit(self, record: ResultRecord) -> None:
        if not self._include_phases and isinstance(record, PhaseEvent):
            return
        sys.stdout.write(_dumps(record) + "\n")

    def flush(self) -> None:
        sys.stdout.flush()

    def close(self) -> None:
        self.flush()


def record_to_dict(record: ResultRecord) -> dict[str, object]:
    # Stable key order: "kind" first, then dataclass field order.
    payload: dict[str, object] = {"kind": _RECORD_KINDS.get(type(record), type(record).__name__)}
    payload.update(to_plain(record))  # type: ignore[arg-type]
    if isinstance(record, SuiteResult):
        payload["exit_code"] = record.exit_code
    return payload


def to_plain(obj: object) -> object:
    # Kernel records, enums and tag sets become JSON-ready values.
    if is_dataclass(obj) and not isinstance(obj, type):
        return {item.name: to_plain(getattr(obj, item.name)) for item in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return format_timestamp(obj)
    if isinstance(obj, frozenset):
        return sorted(obj)
    if isinstance(obj, dict):
        return {str(key): to_plain(value) for key, value in obj.items()}
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (list, tuple)):
        return [to_plain(item) for item in obj]
    return obj


def format_timestamp(value: datetime) -> str:
    # RFC3339 UTC format with Z suffix.
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _dumps(record: ResultRecord) -> str:
    return json.dumps(record_to_dict(record), separators=(",", ":"), ensure_ascii=False, default=str)
