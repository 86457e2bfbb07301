from __future__ import annotations

import importlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from bdd_kernel.adapters.log_sinks import JsonlLogSink, StdoutLogSink
from bdd_kernel.adapters.result_sinks import InMemoryResultSink, JsonlResultSink, StdoutResultSink
from bdd_kernel.config.models import ContextDecl, LoggingConfig, ResultsConfig, RunnerConfig
from bdd_kernel.config.validator import ConfigError, parse_runner_config
from bdd_kernel.kernel.context import BehaviorContext, ContextSpec
from bdd_kernel.kernel.definitions import StepDefinition
from bdd_kernel.kernel.discovery import build_registry
from bdd_kernel.kernel.executor import ExecutionPolicy
from bdd_kernel.kernel.matcher import PatternMatcher
from bdd_kernel.kernel.registry import CapabilityRegistry
from bdd_kernel.kernel.results import SuiteResult
from bdd_kernel.kernel.scenario import Feature
from bdd_kernel.kernel.suite import SuiteRunner
from bdd_kernel.observability.logging import KernelLogger, LogSink
from bdd_kernel.ports.result_sink import ResultSink


@dataclass(frozen=True, slots=True)
class SuiteRuntime:
    # Bundle of everything bootstrap produced; registry is already frozen.
    registry: CapabilityRegistry
    root_spec: ContextSpec
    runner: SuiteRunner
    result_sink: ResultSink | None = None
    log_sink: LogSink | None = None

    def run(self, features: Iterable[Feature]) -> SuiteResult:
        return self.runner.run(features)

    def close(self) -> None:
        if self.result_sink is not None:
            self.result_sink.close()
        close = getattr(self.log_sink, "close", None)
        if callable(close):
            close()


def import_object(path: str) -> object:
    # "package.module:Outer.Inner" -> object.
    module_name, sep, qualname = path.partition(":")
    if not sep or not module_name or not qualname:
        raise ConfigError(f"Import path must look like 'package.module:Name': {path}")
    try:
        target: object = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import module '{module_name}': {exc}") from exc
    for part in qualname.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigError(f"Module '{module_name}' has no attribute '{qualname}'") from exc
    return target


def context_spec_from_decl(decl: ContextDecl) -> ContextSpec:
    factory = import_object(decl.class_path)
    if not callable(factory):
        raise ConfigError(f"Context '{decl.alias}' ({decl.class_path}) is not callable")
    return ContextSpec(
        factory=factory,
        alias=decl.alias,
        params=dict(decl.params),
        capabilities=frozenset(decl.capabilities),
        subcontexts=tuple(context_spec_from_decl(child) for child in decl.subcontexts),
    )


def import_modules(names: Iterable[str]) -> list[ModuleType]:
    modules: list[ModuleType] = []
    for name in names:
        try:
            modules.append(importlib.import_module(name))
        except ImportError as exc:
            raise ConfigError(f"Cannot import step module '{name}': {exc}") from exc
    return modules


def build_runtime(
    config: RunnerConfig | Mapping[str, object] | None = None,
    *,
    root_spec: ContextSpec | None = None,
    modules: Iterable[ModuleType] | None = None,
    result_sink: ResultSink | None = None,
    log_sink: LogSink | None = None,
) -> SuiteRuntime:
    # Composition root: config -> contexts + step modules -> frozen registry -> runner.
    # Every configuration error is raised from here, before any scenario executes.
    cfg = parse_runner_config(dict(config) if isinstance(config, Mapping) else (config or RunnerConfig()))

    if root_spec is None:
        root_spec = (
            context_spec_from_decl(cfg.contexts) if cfg.contexts is not None else ContextSpec(factory=BehaviorContext)
        )
    step_modules = list(modules) if modules is not None else import_modules(cfg.step_modules)

    if log_sink is None:
        log_sink = _build_log_sink(cfg.logging)
    logger = KernelLogger(sink=log_sink, level=cfg.logging.level)

    registry = build_registry(root_spec, step_modules)
    logger.info(
        "registry ready",
        definitions=len(registry.definitions),
        hooks=len(registry.hooks()),
        contexts=[spec.alias for spec, _ in root_spec.walk()],
    )

    if result_sink is None:
        result_sink = _build_result_sink(cfg.results)

    execution = cfg.execution

    def _warn_ambiguous(text: str, tied: list[StepDefinition]) -> None:
        logger.warning(
            "ambiguous step resolved by registration order",
            step=text,
            patterns=[definition.pattern for definition in tied],
        )

    matcher = PatternMatcher(
        ambiguity=execution.ambiguity,
        auto_coerce=execution.auto_coerce,
        on_ambiguous=_warn_ambiguous,
    )
    policy = ExecutionPolicy(
        after_failure=execution.after_failure,
        after_undefined=execution.after_undefined,
        undefined_status=execution.undefined,
        capture_stack=execution.capture_stack,
    )
    runner = SuiteRunner(
        registry=registry,
        root_spec=root_spec,
        matcher=matcher,
        policy=policy,
        result_sink=result_sink,
        logger=logger,
        workers=execution.workers,
        strict=execution.strict,
    )
    return SuiteRuntime(
        registry=registry,
        root_spec=root_spec,
        runner=runner,
        result_sink=result_sink,
        log_sink=log_sink,
    )


def run_features(
    config: RunnerConfig | Mapping[str, object] | None,
    features: Iterable[Feature],
    **overrides: object,
) -> int:
    # Convenience entry for embedding callers: build, run, close, return the exit code.
    runtime = build_runtime(config, **overrides)  # type: ignore[arg-type]
    try:
        return runtime.run(features).exit_code
    finally:
        runtime.close()


def _build_log_sink(logging: LoggingConfig) -> LogSink | None:
    if logging.sink == "stdout":
        return StdoutLogSink()
    if logging.sink == "jsonl":
        assert logging.path is not None  # validated by config model
        return JsonlLogSink(Path(logging.path))
    return None


def _build_result_sink(results: ResultsConfig) -> ResultSink | None:
    if results.sink == "memory":
        return InMemoryResultSink(include_phases=results.include_phases)
    if results.sink == "stdout":
        return StdoutResultSink(include_phases=results.include_phases)
    if results.sink == "jsonl":
        assert results.path is not None  # validated by config model
        return JsonlResultSink(
            path=Path(results.path),
            write_mode=results.write_mode,
            flush_every_n=results.flush_every_n,
            fsync_every_n=results.fsync_every_n,
            include_phases=results.include_phases,
        )
    return None
