from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from bdd_kernel.kernel.context import ContextNode, ContextSpec, compose, resolve
from bdd_kernel.kernel.definitions import Hook, HookPhase, StepDefinition
from bdd_kernel.kernel.errors import (
    AmbiguousMatchError,
    ArgumentCoercionError,
    CompositionError,
    PendingStep,
    SetupError,
    StepFailure,
)
from bdd_kernel.kernel.matcher import PatternMatcher
from bdd_kernel.kernel.registry import CapabilityRegistry
from bdd_kernel.kernel.results import (
    ErrorInfo,
    ExecutorState,
    HookResult,
    PhaseEvent,
    ResultRecord,
    ScenarioResult,
    StepResult,
    StepStatus,
    worst,
)
from bdd_kernel.kernel.scenario import Feature, Scenario, ScenarioStep
from bdd_kernel.kernel.scope import ScenarioScope, StepScope
from bdd_kernel.observability.logging import KernelLogger

ContinuePolicy = Literal["skip_rest", "continue"]


@dataclass(frozen=True, slots=True)
class ExecutionPolicy:
    # What a failed or undefined step costs the rest of its scenario.
    after_failure: ContinuePolicy = "skip_rest"
    after_undefined: ContinuePolicy = "skip_rest"
    undefined_status: Literal["pending", "failed"] = "pending"
    capture_stack: bool = True


class AbortSignal:
    # Suite-level interrupt: stops new steps/scenarios, never the after-hooks.
    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def request(self, reason: str = "abort requested") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    def reset(self) -> None:
        self._reason = None
        self._event.clear()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason


@dataclass(frozen=True, slots=True)
class DispatchTable:
    # Flat per-scenario table: every reachable definition paired with the instance it runs on.
    root: ContextNode
    definitions: tuple[StepDefinition, ...]
    targets: tuple[object, ...]

    @classmethod
    def build(cls, registry: CapabilityRegistry, root: ContextNode) -> DispatchTable:
        definitions = registry.definitions
        targets = tuple(_owner_instance(root, definition.owner) for definition in definitions)
        return cls(root=root, definitions=definitions, targets=targets)

    def target(self, order: int) -> object:
        return self.targets[order]

    def hook_target(self, hook: Hook) -> object:
        return _owner_instance(self.root, hook.owner)

    def binds(self, hook: Hook) -> bool:
        # False only on a partial graph whose owner context was never constructed.
        return hook.owner is None or self.root.arena.has(hook.owner)


def _owner_instance(root: ContextNode, owner: str | None) -> object:
    # Module-level definitions run against the root context.
    if owner is None:
        return root.instance
    return resolve(root, owner).instance


@dataclass
class _ScenarioRun:
    # Mutable bookkeeping for one scenario; never outlives run().
    scenario_id: str
    steps: list[StepResult] = field(default_factory=list)
    hooks: list[HookResult] = field(default_factory=list)
    first_error: ErrorInfo | None = None
    interrupted: bool = False

    def note_error(self, error: ErrorInfo | None) -> None:
        # The first failure is the reported cause; later ones never overwrite it.
        if error is not None and self.first_error is None:
            self.first_error = error


@dataclass(frozen=True, slots=True)
class ScenarioExecutor:
    # Drives one scenario: compose -> before hooks -> steps -> after hooks -> finalize.
    registry: CapabilityRegistry
    root_spec: ContextSpec
    matcher: PatternMatcher = field(default_factory=PatternMatcher)
    policy: ExecutionPolicy = field(default_factory=ExecutionPolicy)
    emit: Callable[[ResultRecord], None] | None = None
    logger: KernelLogger = field(default_factory=KernelLogger)
    abort: AbortSignal | None = None

    def run(
        self,
        scenario: Scenario,
        *,
        feature: Feature | None = None,
        scenario_id: str | None = None,
    ) -> ScenarioResult:
        sid = scenario_id or scenario.name
        tags = feature.effective_tags(scenario) if feature is not None else scenario.tags
        started = time.perf_counter()
        run = _ScenarioRun(scenario_id=sid)

        self._transition(sid, ExecutorState.INITIALIZING)
        try:
            root = compose(self.root_spec)
            table = DispatchTable.build(self.registry, root)
        except Exception as exc:  # noqa: BLE001 - setup failure is contained to this scenario
            partial = exc.partial if isinstance(exc, CompositionError) else None
            return self._abort_setup(
                scenario,
                feature,
                sid,
                tags,
                SetupError(scenario.name, exc),
                started,
                partial if isinstance(partial, ContextNode) else None,
            )

        scope = ScenarioScope(scenario_id=sid, scenario=scenario, feature=feature, tags=tags)

        try:
            self._transition(sid, ExecutorState.RUNNING_BEFORE_HOOKS)
            ready = self._run_hooks(HookPhase.BEFORE_SCENARIO, table, scope, run, stop_on_failure=True)

            # Strictly sequential: a step starts only once the previous result is final.
            skip_rest = not ready
            for index, step in enumerate(scenario.steps):
                if skip_rest or self._abort_requested(run):
                    self._record_step(run, _skipped(sid, index, step))
                    continue
                self._transition(sid, ExecutorState.RUNNING_STEP, step_index=index)
                result = self._run_step(index, step, table, scope, run)
                if self._stops_scenario(result):
                    skip_rest = True
        except KeyboardInterrupt:
            # Interrupt outside user code (emission, bookkeeping): stop stepping, clean up below.
            self._interrupt(run, "executor")
            self._skip_remaining(scenario, run)
        finally:
            # Guaranteed cleanup: after-scenario hooks run exactly once whatever happened above.
            self._run_after_scenario(scenario, feature, sid, tags, table, run, started)

        final_state = ExecutorState.ABORTED if self._abort_requested(run) else ExecutorState.FINALIZED
        result = self._result(scenario, feature, sid, tags, run, final_state, started)
        self._transition(sid, final_state)
        self._emit(result)
        if result.status is StepStatus.FAILED:
            self.logger.warning("scenario failed", scenario=sid, error=result.error)
        return result

    def _run_step(
        self,
        index: int,
        step: ScenarioStep,
        table: DispatchTable,
        scope: ScenarioScope,
        run: _ScenarioRun,
    ) -> StepResult:
        started = time.perf_counter()
        step_scope = StepScope(scenario=scope, step=step, index=index)
        pattern: str | None = None
        undefined = False
        error: ErrorInfo | None = None

        if not self._run_hooks(HookPhase.BEFORE_STEP, table, step_scope, run, stop_on_failure=True):
            status = StepStatus.FAILED
            error = run.hooks[-1].error
        else:
            status, pattern, undefined, error = self._dispatch(step, table, run)

        provisional = StepResult(
            scenario_id=run.scenario_id,
            index=index,
            text=step.text,
            line=step.line,
            status=status,
            pattern=pattern,
            undefined=undefined,
            error=error,
        )
        after_scope = StepScope(scenario=scope, step=step, index=index, result=provisional)
        if not self._run_hooks(HookPhase.AFTER_STEP, table, after_scope, run, stop_on_failure=False):
            if status is not StepStatus.FAILED:
                status = StepStatus.FAILED
                error = next(hook.error for hook in reversed(run.hooks) if hook.status is StepStatus.FAILED)

        result = StepResult(
            scenario_id=run.scenario_id,
            index=index,
            text=step.text,
            line=step.line,
            status=status,
            pattern=pattern,
            undefined=undefined,
            error=error,
            duration_ms=_elapsed_ms(started),
        )
        self._record_step(run, result)
        return result

    def _dispatch(
        self,
        step: ScenarioStep,
        table: DispatchTable,
        run: _ScenarioRun,
    ) -> tuple[StepStatus, str | None, bool, ErrorInfo | None]:
        try:
            matched = self.matcher.match(step.text, table.definitions)
        except (AmbiguousMatchError, ArgumentCoercionError) as exc:
            return StepStatus.FAILED, None, False, ErrorInfo.from_exception(exc, "matcher", with_stack=False)

        if matched is None:
            status = StepStatus.FAILED if self.policy.undefined_status == "failed" else StepStatus.PENDING
            self.logger.info("undefined step", scenario=run.scenario_id, step=step.text, line=step.line)
            return status, None, True, None

        definition = matched.definition
        args: list[object] = [table.target(matched.order), *matched.args]
        if step.argument is not None:
            args.append(step.argument)
        status, error = self._invoke(definition.func, args, str(definition.location), run)
        return status, definition.pattern, False, error

    def _run_hooks(
        self,
        phase: HookPhase,
        table: DispatchTable,
        scope: object,
        run: _ScenarioRun,
        *,
        stop_on_failure: bool,
    ) -> bool:
        ok = True
        tags = _scope_tags(scope)
        for hook in self.registry.lookup(phase, tags):
            if not table.binds(hook):
                continue
            started = time.perf_counter()
            status, error = self._invoke(hook.func, [table.hook_target(hook), scope], hook.name, run)
            record = HookResult(
                phase=phase,
                name=hook.name,
                status=status,
                scenario_id=run.scenario_id,
                error=error,
                duration_ms=_elapsed_ms(started),
            )
            run.hooks.append(record)
            run.note_error(error)
            self._emit(record)
            if status is StepStatus.FAILED:
                ok = False
                if stop_on_failure:
                    break
        return ok

    def _invoke(
        self,
        func: Callable[..., object],
        args: Sequence[object],
        where: str,
        run: _ScenarioRun,
    ) -> tuple[StepStatus, ErrorInfo | None]:
        # User code may block; the executor waits for it to return or raise.
        try:
            func(*args)
        except PendingStep as exc:
            return StepStatus.PENDING, ErrorInfo.from_exception(exc, where, with_stack=False)
        except Exception as exc:  # noqa: BLE001 - contained as StepFailure, never propagated
            failure = StepFailure(where, exc)
            self.logger.debug(str(failure), scenario=run.scenario_id)
            return StepStatus.FAILED, ErrorInfo.from_exception(
                failure.cause, failure.where, with_stack=self.policy.capture_stack
            )
        except KeyboardInterrupt as exc:
            # Interrupt stops further steps but the after-hooks still get to clean up.
            self._interrupt(run, where)
            return StepStatus.FAILED, ErrorInfo.from_exception(exc, where, with_stack=False)
        return StepStatus.PASSED, None

    def _interrupt(self, run: _ScenarioRun, where: str) -> None:
        run.interrupted = True
        if self.abort is not None:
            self.abort.request("interrupted")
        self.logger.warning("interrupted", scenario=run.scenario_id, where=where)

    def _run_after_scenario(
        self,
        scenario: Scenario,
        feature: Feature | None,
        sid: str,
        tags: frozenset[str],
        table: DispatchTable,
        run: _ScenarioRun,
        started: float,
    ) -> None:
        self._transition(sid, ExecutorState.RUNNING_AFTER_HOOKS)
        provisional = self._result(scenario, feature, sid, tags, run, ExecutorState.RUNNING_AFTER_HOOKS, started)
        after_scope = ScenarioScope(scenario_id=sid, scenario=scenario, feature=feature, tags=tags, result=provisional)
        self._run_hooks(HookPhase.AFTER_SCENARIO, table, after_scope, run, stop_on_failure=False)

    def _skip_remaining(self, scenario: Scenario, run: _ScenarioRun) -> None:
        # Steps are recorded in order, so everything past the last record never ran.
        for index in range(len(run.steps), len(scenario.steps)):
            self._record_step(run, _skipped(run.scenario_id, index, scenario.steps[index]))

    def _stops_scenario(self, result: StepResult) -> bool:
        if result.undefined or result.status is StepStatus.PENDING:
            return self.policy.after_undefined == "skip_rest"
        if result.status is StepStatus.FAILED:
            return self.policy.after_failure == "skip_rest"
        return False

    def _abort_requested(self, run: _ScenarioRun) -> bool:
        return run.interrupted or (self.abort is not None and self.abort.requested)

    def _record_step(self, run: _ScenarioRun, result: StepResult) -> None:
        run.steps.append(result)
        run.note_error(result.error if result.status is StepStatus.FAILED else None)
        self._emit(result)

    def _abort_setup(
        self,
        scenario: Scenario,
        feature: Feature | None,
        sid: str,
        tags: frozenset[str],
        setup: SetupError,
        started: float,
        partial: ContextNode | None = None,
    ) -> ScenarioResult:
        # No step runs on a half-built graph; every step is reported as skipped.
        self.logger.error("context setup failed", scenario=sid, cause=str(setup.cause))
        run = _ScenarioRun(scenario_id=sid)
        run.note_error(ErrorInfo.from_exception(setup, "compose", with_stack=self.policy.capture_stack))
        for index, step in enumerate(scenario.steps):
            self._record_step(run, _skipped(sid, index, step))
        if partial is not None:
            # Contexts that did get constructed still get their after-scenario cleanup.
            table = DispatchTable(root=partial, definitions=(), targets=())
            self._run_after_scenario(scenario, feature, sid, tags, table, run, started)
        result = self._result(scenario, feature, sid, tags, run, ExecutorState.ABORTED, started)
        self._transition(sid, ExecutorState.ABORTED)
        self._emit(result)
        return result

    def _result(
        self,
        scenario: Scenario,
        feature: Feature | None,
        sid: str,
        tags: frozenset[str],
        run: _ScenarioRun,
        state: ExecutorState,
        started: float,
    ) -> ScenarioResult:
        statuses = [hook.status for hook in run.hooks] + [step.status for step in run.steps]
        status = worst(statuses)
        if run.first_error is not None and state is ExecutorState.ABORTED:
            status = StepStatus.FAILED
        return ScenarioResult(
            scenario_id=sid,
            name=scenario.name,
            feature=feature.name if feature is not None else "",
            status=status,
            state=state,
            steps=tuple(run.steps),
            hooks=tuple(run.hooks),
            error=run.first_error,
            tags=tags,
            duration_ms=_elapsed_ms(started),
        )

    def _transition(self, sid: str, state: ExecutorState, *, step_index: int | None = None) -> None:
        self._emit(PhaseEvent(scenario_id=sid, state=state, step_index=step_index))

    def _emit(self, record: ResultRecord) -> None:
        if self.emit is not None:
            self.emit(record)


def _skipped(sid: str, index: int, step: ScenarioStep) -> StepResult:
    return StepResult(scenario_id=sid, index=index, text=step.text, line=step.line, status=StepStatus.SKIPPED)


def _scope_tags(scope: object) -> frozenset[str]:
    if isinstance(scope, StepScope):
        return scope.scenario.tags
    if isinstance(scope, ScenarioScope):
        return scope.tags
    return frozenset()


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
