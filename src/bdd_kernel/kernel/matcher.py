from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from bdd_kernel.kernel.definitions import StepDefinition
from bdd_kernel.kernel.errors import AmbiguousMatchError, ArgumentCoercionError

AmbiguityPolicy = Literal["error", "first"]
Coercer = Callable[[str], object]

_INT_RE = re.compile(r"[-+]?\d+")
_FLOAT_RE = re.compile(r"[-+]?(?:\d+\.\d*|\.\d+)(?:[eE][-+]?\d+)?")
_QUOTED_RE = re.compile(r"\"(.*)\"|'(.*)'", re.DOTALL)


def _number(value: str) -> int | float:
    if _INT_RE.fullmatch(value):
        return int(value)
    return float(value)


def _unquote(value: str) -> str:
    quoted = _QUOTED_RE.fullmatch(value)
    if quoted is None:
        return value
    return quoted.group(1) if quoted.group(1) is not None else quoted.group(2)


def _auto(value: str) -> object:
    # Numbers become int/float, quoted strings lose their quotes, anything else stays text.
    stripped = value.strip()
    if _INT_RE.fullmatch(stripped):
        return int(stripped)
    if _FLOAT_RE.fullmatch(stripped):
        return float(stripped)
    return _unquote(value)


_DEFAULT_COERCERS: dict[str, Coercer] = {
    "str": str,
    "int": int,
    "float": float,
    "number": _number,
    "string": _unquote,
    "auto": _auto,
}


@dataclass(frozen=True, slots=True)
class CoercionTable:
    # Named converters referenced by StepDefinition.types.
    coercers: Mapping[str, Coercer] = field(default_factory=lambda: dict(_DEFAULT_COERCERS))

    def with_coercer(self, name: str, coercer: Coercer) -> CoercionTable:
        merged = dict(self.coercers)
        merged[name] = coercer
        return CoercionTable(coercers=merged)

    def coerce(self, definition: StepDefinition, values: Sequence[str | None], *, auto: bool) -> tuple[object, ...]:
        coerced: list[object] = []
        for index, value in enumerate(values):
            if value is None:
                # Optional group that did not participate in the match.
                coerced.append(None)
                continue
            type_name = definition.types[index] if index < len(definition.types) else None
            if type_name is None:
                type_name = "auto" if auto else "str"
            coercer = self.coercers.get(type_name)
            if coercer is None:
                raise ArgumentCoercionError(definition.pattern, value, type_name)
            try:
                coerced.append(coercer(value))
            except (TypeError, ValueError) as exc:
                raise ArgumentCoercionError(definition.pattern, value, type_name, exc) from exc
        return tuple(coerced)


@dataclass(frozen=True, slots=True)
class StepMatch:
    definition: StepDefinition
    args: tuple[object, ...]
    # Position of the definition in registration order.
    order: int


@dataclass(frozen=True, slots=True)
class PatternMatcher:
    # Stateless after construction; safe to share between concurrently running scenarios.
    coercions: CoercionTable = field(default_factory=CoercionTable)
    ambiguity: AmbiguityPolicy = "error"
    auto_coerce: bool = True
    on_ambiguous: Callable[[str, list[StepDefinition]], None] | None = None

    def candidates(self, step_text: str, definitions: Sequence[StepDefinition]) -> list[tuple[int, StepDefinition, re.Match[str]]]:
        found: list[tuple[int, StepDefinition, re.Match[str]]] = []
        for order, definition in enumerate(definitions):
            matched = definition.regex.fullmatch(step_text)
            if matched is not None:
                found.append((order, definition, matched))
        return found

    def match(self, step_text: str, definitions: Sequence[StepDefinition]) -> StepMatch | None:
        # None means Undefined; the executor decides what that costs the scenario.
        found = self.candidates(step_text, definitions)
        if not found:
            return None
        top = max(definition.priority for _, definition, _ in found)
        best = [item for item in found if item[1].priority == top]
        if len(best) > 1:
            tied = [definition for _, definition, _ in best]
            if self.ambiguity == "error":
                raise AmbiguousMatchError(step_text, [definition.pattern for definition in tied])
            if self.on_ambiguous is not None:
                self.on_ambiguous(step_text, tied)
        # Registration order is the deterministic tie-break.
        order, definition, matched = best[0]
        args = self.coercions.coerce(definition, matched.groups(), auto=self.auto_coerce)
        return StepMatch(definition=definition, args=args, order=order)
