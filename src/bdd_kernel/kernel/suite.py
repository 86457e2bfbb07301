from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from bdd_kernel.kernel.context import ContextSpec
from bdd_kernel.kernel.definitions import HookPhase
from bdd_kernel.kernel.executor import AbortSignal, ExecutionPolicy, ScenarioExecutor
from bdd_kernel.kernel.matcher import PatternMatcher
from bdd_kernel.kernel.registry import CapabilityRegistry
from bdd_kernel.kernel.results import (
    ErrorInfo,
    ExecutorState,
    FeatureResult,
    HookResult,
    ResultRecord,
    ScenarioResult,
    StepResult,
    StepStatus,
    SuiteResult,
    worst,
)
from bdd_kernel.kernel.scenario import Feature
from bdd_kernel.kernel.scope import FeatureScope, SuiteScope
from bdd_kernel.observability.logging import KernelLogger
from bdd_kernel.ports.result_sink import ResultSink


@dataclass
class SuiteRunner:
    # Runs features in order; scenarios of one feature may run on a thread pool.
    # Every scenario gets its own context graph, the frozen registry is the only shared state.
    registry: CapabilityRegistry
    root_spec: ContextSpec
    matcher: PatternMatcher = field(default_factory=PatternMatcher)
    policy: ExecutionPolicy = field(default_factory=ExecutionPolicy)
    result_sink: ResultSink | None = None
    logger: KernelLogger = field(default_factory=KernelLogger)
    workers: int = 1
    strict: bool = False
    abort: AbortSignal = field(default_factory=AbortSignal)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError("SuiteRunner.workers must be >= 1")
        if not self.registry.frozen:
            # Execution only ever reads the registry; freezing makes that explicit.
            self.registry.freeze()

    def executor(self) -> ScenarioExecutor:
        return ScenarioExecutor(
            registry=self.registry,
            root_spec=self.root_spec,
            matcher=self.matcher,
            policy=self.policy,
            emit=self._emit,
            logger=self.logger,
            abort=self.abort,
        )

    def run(self, features: Iterable[Feature]) -> SuiteResult:
        feature_list = tuple(features)
        executor = self.executor()
        # An abort only covers the run it was requested in; the runner can be run again.
        self.abort.reset()
        self.logger.info("suite started", features=len(feature_list), workers=self.workers)

        ready, suite_hooks = self._run_hooks(HookPhase.BEFORE_SUITE, SuiteScope(features=feature_list), None)
        feature_results: list[FeatureResult] = []
        after_hooks: list[HookResult] = []
        try:
            self._run_features(feature_list, ready, executor, feature_results)
        except KeyboardInterrupt:
            # Interrupt outside any hook or step: remaining features are reported as not run.
            self.abort.request("interrupted")
            self.logger.warning("interrupted", features_done=len(feature_results))
            for feature in feature_list[len(feature_results) :]:
                feature_results.append(self._feature_not_run(feature))
        finally:
            # After-suite hooks release what before-suite acquired, even on abort or a failing sink.
            provisional = self._suite_result(feature_results, suite_hooks)
            _, after_hooks = self._run_hooks(
                HookPhase.AFTER_SUITE,
                SuiteScope(features=feature_list, result=provisional),
                None,
            )

        result = self._suite_result(feature_results, suite_hooks + after_hooks)
        self._emit(result)
        if self.result_sink is not None:
            self.result_sink.flush()
        self.logger.info(
            "suite finished",
            status=result.status,
            aborted=result.aborted,
            exit_code=result.exit_code,
        )
        return result

    def _run_features(
        self,
        feature_list: tuple[Feature, ...],
        ready: bool,
        executor: ScenarioExecutor,
        feature_results: list[FeatureResult],
    ) -> None:
        pool = ThreadPoolExecutor(max_workers=self.workers) if self.workers > 1 else None
        try:
            for feature in feature_list:
                if not ready or self.abort.requested:
                    feature_results.append(self._feature_not_run(feature))
                    continue
                feature_results.append(self._run_feature(feature, executor, pool))
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

    def _run_feature(
        self,
        feature: Feature,
        executor: ScenarioExecutor,
        pool: ThreadPoolExecutor | None,
    ) -> FeatureResult:
        ready, hooks = self._run_hooks(HookPhase.BEFORE_FEATURE, FeatureScope(feature=feature), feature.tags)
        if not ready:
            scenarios = [self._scenario_not_run(feature, index) for index in range(len(feature.scenarios))]
        elif pool is None:
            scenarios = [self._run_scenario(feature, index, executor) for index in range(len(feature.scenarios))]
        else:
            futures = [
                pool.submit(self._run_scenario, feature, index, executor) for index in range(len(feature.scenarios))
            ]
            scenarios = self._collect(futures)

        provisional = FeatureResult(
            name=feature.name,
            path=feature.path,
            status=_feature_status(scenarios, hooks),
            scenarios=tuple(scenarios),
            hooks=tuple(hooks),
        )
        _, after = self._run_hooks(
            HookPhase.AFTER_FEATURE,
            FeatureScope(feature=feature, result=provisional),
            feature.tags,
        )
        hooks = hooks + after
        result = FeatureResult(
            name=feature.name,
            path=feature.path,
            status=_feature_status(scenarios, hooks),
            scenarios=tuple(scenarios),
            hooks=tuple(hooks),
        )
        self._emit(result)
        return result

    def _run_scenario(self, feature: Feature, index: int, executor: ScenarioExecutor) -> ScenarioResult:
        # Checked when the scenario is picked up, so queued work drains quickly after an abort.
        if self.abort.requested:
            return self._scenario_not_run(feature, index)
        return executor.run(feature.scenarios[index], feature=feature, scenario_id=feature.scenario_id(index))

    def _collect(self, futures: list[Future[ScenarioResult]]) -> list[ScenarioResult]:
        results: list[ScenarioResult] = []
        for future in futures:
            while True:
                try:
                    results.append(future.result())
                    break
                except KeyboardInterrupt:
                    # Keep waiting: in-flight scenarios still have after-hooks to run.
                    self.abort.request("interrupted")
        return results

    def _run_hooks(
        self,
        phase: HookPhase,
        scope: SuiteScope | FeatureScope,
        tags: frozenset[str] | None,
    ) -> tuple[bool, list[HookResult]]:
        # Suite/feature hooks are not bound to a context instance; they only receive the scope.
        ok = True
        records: list[HookResult] = []
        for hook in self.registry.lookup(phase, tags):
            started = time.perf_counter()
            status, error = self._invoke(hook.func, scope, hook.name)
            record = HookResult(
                phase=phase,
                name=hook.name,
                status=status,
                error=error,
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )
            records.append(record)
            self._emit(record)
            if status is StepStatus.FAILED:
                ok = False
                self.logger.error("hook failed", phase=phase, hook=hook.name, error=error)
                if phase.is_before:
                    break
        return ok, records

    def _invoke(self, func: Callable[..., object], scope: object, where: str) -> tuple[StepStatus, ErrorInfo | None]:
        try:
            func(scope)
        except Exception as exc:  # noqa: BLE001 - recorded on the hook result
            return StepStatus.FAILED, ErrorInfo.from_exception(exc, where, with_stack=self.policy.capture_stack)
        except KeyboardInterrupt as exc:
            self.abort.request("interrupted")
            return StepStatus.FAILED, ErrorInfo.from_exception(exc, where, with_stack=False)
        return StepStatus.PASSED, None

    def _scenario_not_run(self, feature: Feature, index: int) -> ScenarioResult:
        scenario = feature.scenarios[index]
        sid = feature.scenario_id(index)
        steps = tuple(
            StepResult(scenario_id=sid, index=step_index, text=step.text, line=step.line, status=StepStatus.SKIPPED)
            for step_index, step in enumerate(scenario.steps)
        )
        result = ScenarioResult(
            scenario_id=sid,
            name=scenario.name,
            feature=feature.name,
            status=StepStatus.SKIPPED,
            state=ExecutorState.ABORTED,
            steps=steps,
            tags=feature.effective_tags(scenario),
        )
        self._emit(result)
        return result

    def _feature_not_run(self, feature: Feature) -> FeatureResult:
        scenarios = tuple(self._scenario_not_run(feature, index) for index in range(len(feature.scenarios)))
        result = FeatureResult(name=feature.name, path=feature.path, status=StepStatus.SKIPPED, scenarios=scenarios)
        self._emit(result)
        return result

    def _suite_result(self, features: list[FeatureResult], hooks: list[HookResult]) -> SuiteResult:
        statuses = [feature.status for feature in features] + [hook.status for hook in hooks]
        return SuiteResult(
            status=worst(statuses),
            features=tuple(features),
            hooks=tuple(hooks),
            aborted=self.abort.requested,
            strict=self.strict,
        )

    def _emit(self, record: ResultRecord) -> None:
        # Sinks see one record at a time even when scenarios run concurrently.
        if self.result_sink is None:
            return
        with self._lock:
            self.result_sink.emit(record)


def _feature_status(scenarios: list[ScenarioResult], hooks: list[HookResult]) -> StepStatus:
    return worst([scenario.status for scenario in scenarios] + [hook.status for hook in hooks])
