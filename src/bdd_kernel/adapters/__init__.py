from .log_sinks import JsonlLogSink, StdoutLogSink
from .result_sinks import InMemoryResultSink, JsonlResultSink, StdoutResultSink, record_to_dict

__all__ = [
    "InMemoryResultSink",
    "JsonlLogSink",
    "JsonlResultSink",
    "StdoutLogSink",
    "StdoutResultSink",
    "record_to_dict",
]
