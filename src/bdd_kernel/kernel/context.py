from __future__ import annotations

import weakref
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field

from bdd_kernel.kernel.annotations import get_context_meta
from bdd_kernel.kernel.errors import (
    AmbiguousCapabilityError,
    CompositionError,
    NotFoundError,
    UnknownSubcontextError,
)

ROOT_ALIAS = "main"

# A capability query is a context class, one capability tag, or a set of tags (all required).
Capability = type | str | Iterable[str]


@dataclass(frozen=True, slots=True)
class ContextSpec:
    # Declared context: factory, alias, opaque constructor params, nested subcontexts.
    factory: Callable[..., object]
    alias: str = ROOT_ALIAS
    params: Mapping[str, object] = field(default_factory=dict)
    capabilities: frozenset[str] = field(default_factory=frozenset)
    subcontexts: tuple[ContextSpec, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.alias, str) or not self.alias:
            raise CompositionError("Context alias must be a non-empty string")
        if not callable(self.factory):
            raise CompositionError(f"Context '{self.alias}' factory is not callable")
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        object.__setattr__(self, "subcontexts", tuple(self.subcontexts))

    def walk(self) -> Iterator[tuple[ContextSpec, ContextSpec | None]]:
        # Depth-first, parents before children; yields (spec, parent).
        stack: list[tuple[ContextSpec, ContextSpec | None]] = [(self, None)]
        while stack:
            spec, parent = stack.pop()
            yield spec, parent
            stack.extend((child, spec) for child in reversed(spec.subcontexts))

    @property
    def identity(self) -> str:
        module = getattr(self.factory, "__module__", "")
        name = getattr(self.factory, "__qualname__", repr(self.factory))
        return f"{module}.{name}" if module else name

    def effective_capabilities(self) -> frozenset[str]:
        meta = get_context_meta(self.factory)
        declared = meta.capabilities if meta is not None else frozenset()
        return self.capabilities | declared


@dataclass(slots=True)
class _NodeRecord:
    node_id: int
    alias: str
    instance: object
    capabilities: frozenset[str]
    parent_id: int | None


class ContextArena:
    # One arena per scenario: every node by integer id, alias index and root id stored once.
    def __init__(self) -> None:
        self._records: list[_NodeRecord] = []
        self._aliases: dict[str, int] = {}
        self.root_id = 0

    def add(
        self,
        *,
        alias: str,
        instance: object,
        capabilities: frozenset[str],
        parent_id: int | None,
    ) -> int:
        if alias in self._aliases:
            raise CompositionError(f"Duplicate context alias: {alias}")
        node_id = len(self._records)
        self._records.append(
            _NodeRecord(
                node_id=node_id,
                alias=alias,
                instance=instance,
                capabilities=capabilities,
                parent_id=parent_id,
            )
        )
        self._aliases[alias] = node_id
        return node_id

    def node(self, node_id: int) -> ContextNode:
        if node_id < 0 or node_id >= len(self._records):
            raise UnknownSubcontextError(f"#{node_id}")
        return ContextNode(arena=self, node_id=node_id)

    def record(self, node_id: int) -> _NodeRecord:
        return self._records[node_id]

    def find(self, alias: str) -> int:
        node_id = self._aliases.get(alias)
        if node_id is None:
            raise UnknownSubcontextError(alias)
        return node_id

    def has(self, alias: str) -> bool:
        return alias in self._aliases

    def nodes(self) -> list[ContextNode]:
        return [ContextNode(arena=self, node_id=record.node_id) for record in self._records]

    @property
    def root(self) -> ContextNode:
        return self.node(self.root_id)

    def __len__(self) -> int:
        return len(self._records)


@dataclass(frozen=True, slots=True)
class ContextNode:
    # Lightweight view over an arena record; parent/root are id lookups, not owned references.
    arena: ContextArena
    node_id: int

    @property
    def alias(self) -> str:
        return self.arena.record(self.node_id).alias

    @property
    def instance(self) -> object:
        return self.arena.record(self.node_id).instance

    @property
    def capabilities(self) -> frozenset[str]:
        return self.arena.record(self.node_id).capabilities

    @property
    def parent(self) -> ContextNode | None:
        parent_id = self.arena.record(self.node_id).parent_id
        return None if parent_id is None else self.arena.node(parent_id)

    @property
    def root(self) -> ContextNode:
        return self.arena.root

    @property
    def is_root(self) -> bool:
        return self.node_id == self.arena.root_id


class BehaviorContext:
    # Optional base for user contexts: graph navigation available once composition finishes.
    _bdd_arena: weakref.ref[ContextArena] | None = None
    _bdd_node_id: int | None = None

    def _bind_graph(self, arena: ContextArena, node_id: int) -> None:
        # Weak reference: the arena owns this instance, not the other way round.
        self._bdd_arena = weakref.ref(arena)
        self._bdd_node_id = node_id

    @property
    def context_node(self) -> ContextNode:
        arena = self._bdd_arena() if self._bdd_arena is not None else None
        if arena is None or self._bdd_node_id is None:
            raise RuntimeError(f"{type(self).__name__} is not attached to a live context graph")
        return arena.node(self._bdd_node_id)

    @property
    def main_context(self) -> object:
        return self.context_node.root.instance

    def get_subcontext(self, alias: str) -> object:
        return resolve(self.context_node, alias).instance

    def get_subcontext_by_capability(self, capability: Capability) -> object:
        return resolve_by_capability(self.context_node, capability).instance


def validate(root_spec: ContextSpec) -> list[ContextSpec]:
    # Structural check run at bootstrap so alias collisions surface before any scenario.
    seen: dict[str, ContextSpec] = {}
    ordered: list[ContextSpec] = []
    for spec, _parent in root_spec.walk():
        if spec.alias in seen:
            raise CompositionError(
                f"Subcontext alias '{spec.alias}' is declared by both "
                f"{seen[spec.alias].identity} and {spec.identity}"
            )
        seen[spec.alias] = spec
        ordered.append(spec)
    return ordered


def compose(root_spec: ContextSpec) -> ContextNode:
    # Fresh arena per call: nothing constructed here is shared with another scenario.
    validate(root_spec)
    arena = ContextArena()
    ids: dict[str, int] = {}
    for spec, parent in root_spec.walk():
        try:
            instance = spec.factory(**dict(spec.params))
        except Exception as exc:  # noqa: BLE001 - wrap with explicit error
            # Whatever was already built is handed back so its cleanup hooks can still run.
            partial = _attach(arena) if len(arena) else None
            raise CompositionError(
                f"Failed to construct context '{spec.alias}' ({spec.identity}): {exc}",
                partial=partial,
            ) from exc
        ids[spec.alias] = arena.add(
            alias=spec.alias,
            instance=instance,
            capabilities=spec.effective_capabilities(),
            parent_id=None if parent is None else ids[parent.alias],
        )
    return _attach(arena)


def _attach(arena: ContextArena) -> ContextNode:
    # The root is always constructed first, so it holds id 0.
    arena.root_id = 0
    for node in arena.nodes():
        instance = node.instance
        if isinstance(instance, BehaviorContext):
            instance._bind_graph(arena, node.node_id)
    return arena.root


def resolve(node: ContextNode, alias: str) -> ContextNode:
    # Any node reaches every alias of its composition, including siblings and the root.
    return node.arena.node(node.arena.find(alias))


def resolve_by_capability(node: ContextNode, capability: Capability) -> ContextNode:
    matches = [candidate for candidate in node.arena.nodes() if _provides(candidate, capability)]
    if not matches:
        raise NotFoundError(_describe(capability))
    if len(matches) > 1:
        raise AmbiguousCapabilityError(_describe(capability), [match.alias for match in matches])
    return matches[0]


def _provides(node: ContextNode, capability: Capability) -> bool:
    if isinstance(capability, type):
        return isinstance(node.instance, capability)
    if isinstance(capability, str):
        return capability in node.capabilities
    wanted = frozenset(capability)
    return bool(wanted) and wanted <= node.capabilities


def _describe(capability: Capability) -> object:
    if isinstance(capability, type):
        return capability.__name__
    if isinstance(capability, str):
        return capability
    return sorted(capability)
