from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from bdd_kernel.kernel.definitions import STEP_KEYWORDS, HookPhase

T = TypeVar("T")

STEP_META_ATTR = "__bdd_steps__"
HOOK_META_ATTR = "__bdd_hooks__"
CONTEXT_META_ATTR = "__bdd_context__"


@dataclass(frozen=True, slots=True)
class StepMeta:
    # Metadata attached by @given/@when/@then/@step for discovery.
    pattern: str
    keyword: str = "step"
    priority: int = 0
    types: tuple[str | None, ...] = ()

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ValueError("StepMeta.pattern must be a non-empty string")
        if self.keyword not in STEP_KEYWORDS:
            raise ValueError(f"StepMeta.keyword must be one of: {sorted(STEP_KEYWORDS)}")


@dataclass(frozen=True, slots=True)
class HookMeta:
    phase: HookPhase
    tags: str | None = None


@dataclass(frozen=True, slots=True)
class ContextMeta:
    # Capability tags a context class answers to in resolve_by_capability.
    capabilities: frozenset[str] = field(default_factory=frozenset)


def _append_meta(target: object, attr: str, meta: object) -> None:
    # A callable may carry several patterns or hook bindings; keep declaration order.
    existing = list(getattr(target, attr, ()))
    existing.append(meta)
    setattr(target, attr, tuple(existing))


def _step_decorator(keyword: str) -> Callable[..., Callable[[T], T]]:
    def _factory(
        pattern: str,
        *,
        priority: int = 0,
        types: Iterable[str | None] | None = None,
    ) -> Callable[[T], T]:
        meta = StepMeta(pattern=pattern, keyword=keyword, priority=priority, types=tuple(types or ()))

        def _decorate(target: T) -> T:
            _append_meta(target, STEP_META_ATTR, meta)
            return target

        return _decorate

    _factory.__name__ = keyword
    return _factory


given = _step_decorator("given")
when = _step_decorator("when")
then = _step_decorator("then")
step = _step_decorator("step")


def _hook_decorator(phase: HookPhase) -> Callable[..., object]:
    def _factory(target: object = None) -> object:
        # Usable bare (@before_scenario) or with a tag filter (@before_scenario("@db")).
        if target is not None and not isinstance(target, str):
            _append_meta(target, HOOK_META_ATTR, HookMeta(phase=phase))
            return target
        meta = HookMeta(phase=phase, tags=target)

        def _decorate(inner: T) -> T:
            _append_meta(inner, HOOK_META_ATTR, meta)
            return inner

        return _decorate

    _factory.__name__ = phase.value
    return _factory


before_suite = _hook_decorator(HookPhase.BEFORE_SUITE)
after_suite = _hook_decorator(HookPhase.AFTER_SUITE)
before_feature = _hook_decorator(HookPhase.BEFORE_FEATURE)
after_feature = _hook_decorator(HookPhase.AFTER_FEATURE)
before_scenario = _hook_decorator(HookPhase.BEFORE_SCENARIO)
after_scenario = _hook_decorator(HookPhase.AFTER_SCENARIO)
before_step = _hook_decorator(HookPhase.BEFORE_STEP)
after_step = _hook_decorator(HookPhase.AFTER_STEP)


def context(*, capabilities: Iterable[str] | None = None) -> Callable[[T], T]:
    meta = ContextMeta(capabilities=frozenset(capabilities or ()))

    def _decorate(target: T) -> T:
        setattr(target, CONTEXT_META_ATTR, meta)
        return target

    return _decorate


def get_step_meta(target: object) -> tuple[StepMeta, ...]:
    meta = getattr(target, STEP_META_ATTR, ())
    return tuple(item for item in meta if isinstance(item, StepMeta))


def get_hook_meta(target: object) -> tuple[HookMeta, ...]:
    meta = getattr(target, HOOK_META_ATTR, ())
    return tuple(item for item in meta if isinstance(item, HookMeta))


def get_context_meta(target: object) -> ContextMeta | None:
    meta = getattr(target, CONTEXT_META_ATTR, None)
    if isinstance(meta, ContextMeta):
        return meta
    return None
