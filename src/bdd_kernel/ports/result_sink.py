from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from bdd_kernel.kernel.results import ResultRecord


# ResultSink is the reporting collaborator: records arrive as phases complete, never batched.
@runtime_checkable
class ResultSink(Protocol):
    def emit(self, record: ResultRecord) -> None:
        """Consume one result record."""
        raise NotImplementedError("ResultSink is a port; use a concrete adapter.")

    def flush(self) -> None:
        """Flush buffered output if supported."""
        raise NotImplementedError("ResultSink is a port; use a concrete adapter.")

    def close(self) -> None:
        """Close the sink and release resources."""
        raise NotImplementedError("ResultSink is a port; use a concrete adapter.")
