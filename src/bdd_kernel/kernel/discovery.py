from __future__ import annotations

import inspect
from collections.abc import Iterable
from types import ModuleType

from bdd_kernel.kernel.annotations import get_hook_meta, get_step_meta
from bdd_kernel.kernel.context import ContextSpec, validate
from bdd_kernel.kernel.definitions import Hook, StepDefinition
from bdd_kernel.kernel.errors import InvalidDefinitionError
from bdd_kernel.kernel.registry import CapabilityRegistry

Definition = StepDefinition | Hook


def _class_members(cls: type) -> dict[str, object]:
    # Base classes first so subclasses override by name while keeping declaration order.
    members: dict[str, object] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        members.update(klass.__dict__)
    return members


def discover_class_definitions(cls: type, *, owner: str) -> list[Definition]:
    found: list[Definition] = []
    for attr_name, value in _class_members(cls).items():
        is_static = isinstance(value, (staticmethod, classmethod))
        raw = value.__func__ if is_static else value
        steps = get_step_meta(raw) or get_step_meta(value)
        hooks = get_hook_meta(raw) or get_hook_meta(value)
        if not steps and not hooks:
            continue

        for meta in steps:
            if is_static or not inspect.isfunction(raw):
                raise InvalidDefinitionError(
                    f"{cls.__qualname__}.{attr_name}: step definitions must be plain methods"
                )
            found.append(
                StepDefinition(
                    pattern=meta.pattern,
                    func=raw,
                    owner=owner,
                    priority=meta.priority,
                    keyword=meta.keyword,
                    types=meta.types,
                )
            )

        for hook_meta in hooks:
            if hook_meta.phase.instance_bound:
                if is_static or not inspect.isfunction(raw):
                    raise InvalidDefinitionError(
                        f"{cls.__qualname__}.{attr_name}: {hook_meta.phase.value} hooks must be plain methods"
                    )
                func = raw
            else:
                # Suite/feature hooks run without an instance: static or class methods only.
                if not is_static:
                    raise InvalidDefinitionError(
                        f"{cls.__qualname__}.{attr_name}: {hook_meta.phase.value} hooks must be "
                        "staticmethods or classmethods"
                    )
                func = getattr(cls, attr_name)
            found.append(Hook(phase=hook_meta.phase, func=func, owner=owner, tags=hook_meta.tags))
    return found


def discover_context_definitions(root_spec: ContextSpec) -> list[Definition]:
    # Walks the declared context tree; definitions remember the alias they belong to.
    found: list[Definition] = []
    for spec in validate(root_spec):
        if isinstance(spec.factory, type):
            found.extend(discover_class_definitions(spec.factory, owner=spec.alias))
    return found


def discover_module_definitions(modules: Iterable[ModuleType]) -> list[Definition]:
    # Module-level step functions receive the root context as their first argument.
    found: list[Definition] = []
    seen: set[int] = set()
    for module in modules:
        for value in list(module.__dict__.values()):
            if not inspect.isfunction(value) or id(value) in seen:
                continue
            steps = get_step_meta(value)
            hooks = get_hook_meta(value)
            if not steps and not hooks:
                continue
            # Same function re-exported from several modules is registered once.
            seen.add(id(value))
            for meta in steps:
                found.append(
                    StepDefinition(
                        pattern=meta.pattern,
                        func=value,
                        priority=meta.priority,
                        keyword=meta.keyword,
                        types=meta.types,
                    )
                )
            for hook_meta in hooks:
                found.append(Hook(phase=hook_meta.phase, func=value, tags=hook_meta.tags))
    return found


def build_registry(root_spec: ContextSpec, modules: Iterable[ModuleType] = ()) -> CapabilityRegistry:
    # Bootstrap: every configuration error surfaces here, before any scenario runs.
    registry = CapabilityRegistry()
    registry.register_all(discover_context_definitions(root_spec))
    registry.register_all(discover_module_definitions(modules))
    registry.freeze()
    return registry
