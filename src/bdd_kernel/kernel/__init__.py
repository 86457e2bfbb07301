from .annotations import (
    after_feature,
    after_scenario,
    after_step,
    after_suite,
    before_feature,
    before_scenario,
    before_step,
    before_suite,
    context,
    given,
    step,
    then,
    when,
)
from .context import BehaviorContext, ContextArena, ContextNode, ContextSpec, compose, resolve, resolve_by_capability
from .definitions import Hook, HookPhase, StepDefinition
from .discovery import build_registry, discover_context_definitions, discover_module_definitions
from .errors import (
    AmbiguousCapabilityError,
    AmbiguousMatchError,
    CompositionError,
    ConfigurationError,
    DuplicatePatternError,
    KernelError,
    NotFoundError,
    PendingStep,
    SetupError,
    StepFailure,
    UnknownSubcontextError,
)
from .executor import AbortSignal, ExecutionPolicy, ScenarioExecutor
from .matcher import CoercionTable, PatternMatcher, StepMatch
from .registry import CapabilityRegistry
from .results import (
    ErrorInfo,
    ExecutorState,
    FeatureResult,
    HookResult,
    PhaseEvent,
    ScenarioResult,
    StepResult,
    StepStatus,
    SuiteResult,
)
from .scenario import Feature, Scenario, ScenarioStep
from .suite import SuiteRunner

# Kernel exports are minimal and runtime-focused.
__all__ = [
    "AbortSignal",
    "AmbiguousCapabilityError",
    "AmbiguousMatchError",
    "BehaviorContext",
    "CapabilityRegistry",
    "CoercionTable",
    "CompositionError",
    "ConfigurationError",
    "ContextArena",
    "ContextNode",
    "ContextSpec",
    "DuplicatePatternError",
    "ErrorInfo",
    "ExecutionPolicy",
    "ExecutorState",
    "Feature",
    "FeatureResult",
    "Hook",
    "HookPhase",
    "HookResult",
    "KernelError",
    "NotFoundError",
    "PatternMatcher",
    "PendingStep",
    "PhaseEvent",
    "Scenario",
    "ScenarioExecutor",
    "ScenarioResult",
    "ScenarioStep",
    "SetupError",
    "StepDefinition",
    "StepFailure",
    "StepMatch",
    "StepResult",
    "StepStatus",
    "SuiteResult",
    "SuiteRunner",
    "UnknownSubcontextError",
    "after_feature",
    "after_scenario",
    "after_step",
    "after_suite",
    "before_feature",
    "before_scenario",
    "before_step",
    "before_suite",
    "build_registry",
    "compose",
    "context",
    "discover_context_definitions",
    "discover_module_definitions",
    "given",
    "resolve",
    "resolve_by_capability",
    "step",
    "then",
    "when",
]
