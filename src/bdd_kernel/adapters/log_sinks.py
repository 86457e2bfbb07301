from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from typing import TextIO

from bdd_kernel.adapters.result_sinks import format_timestamp, to_plain
from bdd_kernel.kernel.results import ErrorInfo
from bdd_kernel.observability.logging import LogMessage


class _JsonLogSink:
    # One compact JSON object per log line; writes are serialized across scenario threads.
    def __init__(self) -> None:
        self._lock = threading.Lock()

    def emit(self, message: LogMessage) -> None:
        line = log_to_json(message)
        with self._lock:
            stream = self._stream()
            stream.write(line + "\n")
            stream.flush()

    def _stream(self) -> TextIO:
        raise NotImplementedError


class StdoutLogSink(_JsonLogSink):
    def _stream(self) -> TextIO:
        # Looked up per write so redirected stdout is honoured.
        return sys.stdout


class JsonlLogSink(_JsonLogSink):
    # Appends to a file so several runs can share one diagnostics log.
    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._file = path.open("a", encoding="utf-8")
        super().__init__()

    def close(self) -> None:
        with self._lock:
            self._file.close()

    def _stream(self) -> TextIO:
        return self._file


def log_to_json(message: LogMessage) -> str:
    return json.dumps(log_to_dict(message), separators=(",", ":"), ensure_ascii=False, default=str)


def log_to_dict(message: LogMessage) -> dict[str, object]:
    # The scenario id is lifted next to the level so a single scenario's lines are easy to filter.
    fields = dict(message.fields)
    payload: dict[str, object] = {
        "level": message.level,
        "message": message.message,
        "timestamp": format_timestamp(message.timestamp),
    }
    scenario = fields.pop("scenario", None)
    if scenario is not None:
        payload["scenario"] = scenario
    payload["fields"] = {key: _field_value(value) for key, value in fields.items()}
    return payload


def _field_value(value: object) -> object:
    # Stacks belong to the result stream; a log line keeps only the summary of an error.
    if isinstance(value, ErrorInfo):
        return {"type": value.type, "message": value.message, "where": value.where}
    return to_plain(value)
