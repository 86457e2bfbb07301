from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from bdd_kernel.kernel.tags import normalize_tag


def _tags(values: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_tag(value) for value in values)


@dataclass(frozen=True, slots=True)
class ScenarioStep:
    # One parsed step line; argument carries a table or docstring when the parser found one.
    text: str
    line: int | None = None
    keyword: str | None = None
    argument: object | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text.strip():
            raise ValueError("ScenarioStep.text must be a non-empty string")


@dataclass(frozen=True, slots=True)
class Scenario:
    # Scenario is an immutable ordered list of parsed steps.
    name: str
    steps: Sequence[ScenarioStep]
    tags: frozenset[str] = field(default_factory=frozenset)
    line: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(_as_step(item) for item in self.steps))
        object.__setattr__(self, "tags", _tags(self.tags))

    @classmethod
    def of(cls, name: str, steps: Iterable[str | tuple[str, int | None]], *, tags: Iterable[str] = ()) -> Scenario:
        # Convenience for callers that only have (text, line) pairs.
        return cls(name=name, steps=[_as_step(item) for item in steps], tags=frozenset(tags))


@dataclass(frozen=True, slots=True)
class Feature:
    name: str
    scenarios: Sequence[Scenario]
    tags: frozenset[str] = field(default_factory=frozenset)
    path: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "scenarios", tuple(self.scenarios))
        object.__setattr__(self, "tags", _tags(self.tags))

    def scenario_id(self, index: int) -> str:
        # Source line when the parser supplied one, otherwise the 1-based position.
        scenario = self.scenarios[index]
        location = scenario.line if scenario.line is not None else f"#{index + 1}"
        return f"{self.path or self.name}:{location}"

    def effective_tags(self, scenario: Scenario) -> frozenset[str]:
        # Feature tags are inherited by every scenario.
        return self.tags | scenario.tags


def _as_step(item: ScenarioStep | str | tuple[str, int | None]) -> ScenarioStep:
    if isinstance(item, ScenarioStep):
        return item
    if isinstance(item, str):
        return ScenarioStep(text=item)
    text, line = item
    return ScenarioStep(text=text, line=line)
