from __future__ import annotations

import inspect
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from bdd_kernel.kernel.errors import InvalidDefinitionError
from bdd_kernel.kernel.tags import TagFilter


class HookPhase(str, Enum):
    BEFORE_SUITE = "before_suite"
    BEFORE_FEATURE = "before_feature"
    BEFORE_SCENARIO = "before_scenario"
    BEFORE_STEP = "before_step"
    AFTER_STEP = "after_step"
    AFTER_SCENARIO = "after_scenario"
    AFTER_FEATURE = "after_feature"
    AFTER_SUITE = "after_suite"

    @property
    def is_before(self) -> bool:
        return self.value.startswith("before_")

    @property
    def instance_bound(self) -> bool:
        # Scenario and step hooks run against a composed context; suite/feature hooks do not.
        return self in _INSTANCE_PHASES


_INSTANCE_PHASES = frozenset(
    {
        HookPhase.BEFORE_SCENARIO,
        HookPhase.AFTER_SCENARIO,
        HookPhase.BEFORE_STEP,
        HookPhase.AFTER_STEP,
    }
)

STEP_KEYWORDS = frozenset({"given", "when", "then", "step"})


@dataclass(frozen=True, slots=True)
class SourceLocation:
    module: str
    qualname: str
    line: int | None = None

    @classmethod
    def of(cls, func: Callable[..., object]) -> SourceLocation:
        target = inspect.unwrap(func)
        code = getattr(target, "__code__", None)
        return cls(
            module=getattr(target, "__module__", "") or "",
            qualname=getattr(target, "__qualname__", repr(target)),
            line=code.co_firstlineno if code is not None else None,
        )

    def __str__(self) -> str:
        suffix = f":{self.line}" if self.line is not None else ""
        return f"{self.module}.{self.qualname}{suffix}"


@dataclass(frozen=True, slots=True)
class StepDefinition:
    # One pattern-to-callable binding; immutable once registered.
    pattern: str
    func: Callable[..., object]
    owner: str | None = None
    priority: int = 0
    keyword: str = "step"
    types: tuple[str | None, ...] = ()
    location: SourceLocation | None = None
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)
    arity: int = field(init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.pattern, str) or not self.pattern:
            raise InvalidDefinitionError("StepDefinition.pattern must be a non-empty string")
        if self.keyword not in STEP_KEYWORDS:
            raise InvalidDefinitionError(f"Unknown step keyword: {self.keyword}")
        try:
            regex = re.compile(self.pattern)
        except re.error as exc:
            raise InvalidDefinitionError(f"Invalid step pattern '{self.pattern}': {exc}") from exc
        object.__setattr__(self, "regex", regex)
        object.__setattr__(self, "arity", regex.groups)
        if len(self.types) > regex.groups:
            raise InvalidDefinitionError(
                f"Step pattern '{self.pattern}' declares {len(self.types)} types for {regex.groups} captures"
            )
        if self.location is None:
            object.__setattr__(self, "location", SourceLocation.of(self.func))
        # Context (or self) comes first, then one positional argument per capture,
        # plus an optional trailing table or docstring argument.
        ensure_accepts(self.func, 1 + self.arity, where=f"step '{self.pattern}'", optional_extra=1)

    @property
    def key(self) -> tuple[str, int, int]:
        # Identity used for duplicate detection.
        return (self.pattern, self.arity, self.priority)


@dataclass(frozen=True, slots=True)
class Hook:
    phase: HookPhase
    func: Callable[..., object]
    owner: str | None = None
    tags: TagFilter | None = None
    location: SourceLocation | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.phase, HookPhase):
            object.__setattr__(self, "phase", HookPhase(self.phase))
        if isinstance(self.tags, str):
            object.__setattr__(self, "tags", TagFilter.parse(self.tags))
        if self.location is None:
            object.__setattr__(self, "location", SourceLocation.of(self.func))
        # Instance-bound hooks receive (context, scope); suite/feature hooks receive (scope).
        expected = 2 if self.phase.instance_bound else 1
        ensure_accepts(self.func, expected, where=f"{self.phase.value} hook {self.name}")

    @property
    def name(self) -> str:
        return self.location.qualname if self.location is not None else repr(self.func)

    def applies_to(self, tags: frozenset[str] | None) -> bool:
        # No active tag set means no filtering.
        if self.tags is None or tags is None:
            return True
        return self.tags.matches(tags)


def ensure_accepts(func: Callable[..., object], count: int, *, where: str, optional_extra: int = 0) -> None:
    # Fail at registration when the callable cannot take the positional arguments it will get.
    if not callable(func):
        raise InvalidDefinitionError(f"{where} is not callable")
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        # Builtins without introspectable signatures are accepted as-is.
        return
    try:
        signature.bind_partial(*([None] * count))
    except TypeError as exc:
        raise InvalidDefinitionError(f"{where} cannot accept {count} positional arguments: {exc}") from exc
    required = [
        parameter
        for parameter in signature.parameters.values()
        if parameter.default is inspect.Parameter.empty
        and parameter.kind is not inspect.Parameter.VAR_POSITIONAL
        and parameter.kind is not inspect.Parameter.VAR_KEYWORD
    ]
    if any(parameter.kind is inspect.Parameter.KEYWORD_ONLY for parameter in required):
        raise InvalidDefinitionError(f"{where} has required keyword-only parameters the kernel never passes")
    if len(required) > count + optional_extra:
        raise InvalidDefinitionError(
            f"{where} requires {len(required)} positional arguments but receives at most {count + optional_extra}"
        )
