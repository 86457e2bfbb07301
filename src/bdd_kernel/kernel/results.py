from __future__ import annotations

import traceback
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from bdd_kernel.kernel.definitions import HookPhase


class StepStatus(str, Enum):
    PASSED = "passed"
    SKIPPED = "skipped"
    PENDING = "pending"
    FAILED = "failed"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


# failed > pending > skipped > passed
_SEVERITY = {
    StepStatus.PASSED: 0,
    StepStatus.SKIPPED: 1,
    StepStatus.PENDING: 2,
    StepStatus.FAILED: 3,
}


def worst(statuses: Iterable[StepStatus], default: StepStatus = StepStatus.PASSED) -> StepStatus:
    result = default
    for status in statuses:
        if status.severity > result.severity:
            result = status
    return result


class ExecutorState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING_BEFORE_HOOKS = "running_before_hooks"
    RUNNING_STEP = "running_step"
    RUNNING_AFTER_HOOKS = "running_after_hooks"
    FINALIZED = "finalized"
    ABORTED = "aborted"


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    # ErrorInfo records what a user callable (or the kernel) raised.
    type: str
    message: str
    where: str
    stack: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, where: str, *, with_stack: bool = True) -> ErrorInfo:
        stack = "".join(traceback.format_exception(exc)) if with_stack else None
        return cls(type=type(exc).__name__, message=str(exc), where=where, stack=stack)


@dataclass(frozen=True, slots=True)
class PhaseEvent:
    # Emitted on every executor state transition.
    scenario_id: str
    state: ExecutorState
    step_index: int | None = None
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class StepResult:
    scenario_id: str
    index: int
    text: str
    status: StepStatus
    line: int | None = None
    pattern: str | None = None
    undefined: bool = False
    error: ErrorInfo | None = None
    duration_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class HookResult:
    phase: HookPhase
    name: str
    status: StepStatus
    scenario_id: str | None = None
    error: ErrorInfo | None = None
    duration_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class ScenarioResult:
    scenario_id: str
    name: str
    feature: str
    status: StepStatus
    state: ExecutorState
    steps: tuple[StepResult, ...] = ()
    hooks: tuple[HookResult, ...] = ()
    error: ErrorInfo | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    duration_ms: float = 0.0

    @property
    def after_scenario_hooks(self) -> tuple[HookResult, ...]:
        return tuple(hook for hook in self.hooks if hook.phase is HookPhase.AFTER_SCENARIO)


@dataclass(frozen=True, slots=True)
class FeatureResult:
    name: str
    status: StepStatus
    scenarios: tuple[ScenarioResult, ...] = ()
    hooks: tuple[HookResult, ...] = ()
    path: str | None = None


@dataclass(frozen=True, slots=True)
class SuiteResult:
    status: StepStatus
    features: tuple[FeatureResult, ...] = ()
    hooks: tuple[HookResult, ...] = ()
    aborted: bool = False
    strict: bool = False

    @property
    def scenarios(self) -> tuple[ScenarioResult, ...]:
        return tuple(scenario for feature in self.features for scenario in feature.scenarios)

    @property
    def exit_code(self) -> int:
        # Pending only fails the run in strict mode; an aborted run never exits cleanly.
        if self.aborted or self.status is StepStatus.FAILED:
            return 1
        if self.status is StepStatus.PENDING and self.strict:
            return 1
        return 0


ResultRecord = PhaseEvent | StepResult | HookResult | ScenarioResult | FeatureResult | SuiteResult
