from __future__ import annotations

from dataclasses import dataclass, field

from bdd_kernel.kernel.results import FeatureResult, ScenarioResult, StepResult, SuiteResult
from bdd_kernel.kernel.scenario import Feature, Scenario, ScenarioStep

# Scopes are what hooks receive: read-only views of where the run currently is.


@dataclass(frozen=True, slots=True)
class SuiteScope:
    features: tuple[Feature, ...] = ()
    result: SuiteResult | None = None


@dataclass(frozen=True, slots=True)
class FeatureScope:
    feature: Feature
    result: FeatureResult | None = None


@dataclass(frozen=True, slots=True)
class ScenarioScope:
    scenario_id: str
    scenario: Scenario
    feature: Feature | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    result: ScenarioResult | None = None


@dataclass(frozen=True, slots=True)
class StepScope:
    scenario: ScenarioScope
    step: ScenarioStep
    index: int
    result: StepResult | None = None
