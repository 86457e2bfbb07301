from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from bdd_kernel.kernel.definitions import Hook, HookPhase, StepDefinition
from bdd_kernel.kernel.errors import DuplicatePatternError, RegistryFrozenError


@dataclass
class CapabilityRegistry:
    # Registry keeps step definitions and hooks in explicit registration order.
    # It is filled once at bootstrap and frozen before any scenario runs.
    _definitions: list[StepDefinition] = field(default_factory=list)
    _hooks: dict[HookPhase, list[Hook]] = field(default_factory=dict)
    _keys: dict[tuple[str, int, int], StepDefinition] = field(default_factory=dict)
    _frozen: bool = False

    def register(self, item: StepDefinition | Hook) -> None:
        if self._frozen:
            raise RegistryFrozenError("Registry is read-only once scenarios may run")
        if isinstance(item, StepDefinition):
            self._register_definition(item)
        elif isinstance(item, Hook):
            self._hooks.setdefault(item.phase, []).append(item)
        else:
            raise TypeError(f"Cannot register {type(item).__name__}; expected StepDefinition or Hook")

    def register_all(self, items: Iterable[StepDefinition | Hook]) -> None:
        for item in items:
            self.register(item)

    def _register_definition(self, definition: StepDefinition) -> None:
        # Same pattern and arity is only allowed when priority tells them apart.
        existing = self._keys.get(definition.key)
        if existing is not None:
            raise DuplicatePatternError(definition.pattern, definition.arity, definition.priority)
        self._keys[definition.key] = definition
        self._definitions.append(definition)

    def lookup(self, phase: HookPhase, tags: Iterable[str] | None = None) -> tuple[Hook, ...]:
        # Hooks come back in registration order; tag filters apply when tags are active.
        active = frozenset(tags) if tags is not None else None
        return tuple(hook for hook in self._hooks.get(HookPhase(phase), ()) if hook.applies_to(active))

    @property
    def definitions(self) -> tuple[StepDefinition, ...]:
        return tuple(self._definitions)

    def hooks(self) -> tuple[Hook, ...]:
        return tuple(hook for phase in HookPhase for hook in self._hooks.get(phase, ()))

    def owners(self) -> set[str]:
        # Context aliases referenced by registered definitions and hooks.
        found = {item.owner for item in self._definitions if item.owner is not None}
        found.update(hook.owner for hook in self.hooks() if hook.owner is not None)
        return found

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._definitions) + sum(len(items) for items in self._hooks.values())
