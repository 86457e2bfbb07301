from __future__ import annotations

import gc

import pytest

from bdd_kernel.kernel.annotations import context
from bdd_kernel.kernel.context import (
    BehaviorContext,
    ContextSpec,
    compose,
    resolve,
    resolve_by_capability,
    validate,
)
from bdd_kernel.kernel.errors import (
    AmbiguousCapabilityError,
    CompositionError,
    NotFoundError,
    UnknownSubcontextError,
)


class FeatureContext(BehaviorContext):
    def __init__(self, base_url: str = "http://localhost") -> None:
        self.base_url = base_url


@context(capabilities=["database"])
class DatabaseContext(BehaviorContext):
    def __init__(self, dsn: str = "sqlite://") -> None:
        self.dsn = dsn
        self.rows: list[str] = []


class BrowserContext(BehaviorContext):
    pass


class BrokenContext:
    def __init__(self) -> None:
        raise RuntimeError("cannot connect")


def _spec() -> ContextSpec:
    return ContextSpec(
        factory=FeatureContext,
        params={"base_url": "http://example.test"},
        subcontexts=(
            ContextSpec(factory=DatabaseContext, alias="db", params={"dsn": "postgres://"}),
            ContextSpec(
                factory=BrowserContext,
                alias="browser",
                capabilities=frozenset({"ui"}),
                subcontexts=(ContextSpec(factory=BrowserContext, alias="popup"),),
            ),
        ),
    )


def test_compose_builds_root_and_every_subcontext() -> None:
    root = compose(_spec())
    assert root.is_root
    assert root.alias == "main"
    assert isinstance(root.instance, FeatureContext)
    assert root.instance.base_url == "http://example.test"
    assert [node.alias for node in root.arena.nodes()] == ["main", "db", "browser", "popup"]
    assert resolve(root, "db").instance.dsn == "postgres://"


def test_resolve_round_trip_from_any_node() -> None:
    # Aliases are reachable from the root and from sibling subcontexts alike.
    root = compose(_spec())
    db = resolve(root, "db")
    browser = resolve(root, "browser")
    assert db.node_id != browser.node_id
    assert resolve(db, "browser") == browser
    assert resolve(browser, "db") == db
    assert resolve(db, "main") == root


def test_nested_subcontext_points_back_to_root_by_id() -> None:
    root = compose(_spec())
    popup = resolve(root, "popup")
    assert popup.parent == resolve(root, "browser")
    assert popup.root == root
    assert not popup.is_root


def test_resolve_unknown_alias_fails() -> None:
    root = compose(_spec())
    with pytest.raises(UnknownSubcontextError):
        resolve(root, "missing")


def test_resolve_by_capability_class_tag_and_set() -> None:
    root = compose(_spec())
    assert resolve_by_capability(root, DatabaseContext).alias == "db"
    assert resolve_by_capability(root, "database").alias == "db"
    assert resolve_by_capability(root, {"ui"}).alias == "browser"


def test_resolve_by_capability_ambiguous_and_missing() -> None:
    root = compose(_spec())
    with pytest.raises(AmbiguousCapabilityError) as exc_info:
        resolve_by_capability(root, BrowserContext)
    assert exc_info.value.aliases == ["browser", "popup"]
    with pytest.raises(NotFoundError):
        resolve_by_capability(root, "payments")


def test_duplicate_alias_is_a_composition_error() -> None:
    spec = ContextSpec(
        factory=FeatureContext,
        subcontexts=(
            ContextSpec(factory=DatabaseContext, alias="db"),
            ContextSpec(factory=BrowserContext, alias="db"),
        ),
    )
    with pytest.raises(CompositionError):
        validate(spec)
    with pytest.raises(CompositionError):
        compose(spec)


def test_subcontext_alias_cannot_shadow_root() -> None:
    spec = ContextSpec(factory=FeatureContext, subcontexts=(ContextSpec(factory=BrowserContext, alias="main"),))
    with pytest.raises(CompositionError):
        validate(spec)


def test_constructor_failure_is_a_composition_error() -> None:
    spec = ContextSpec(factory=FeatureContext, subcontexts=(ContextSpec(factory=BrokenContext, alias="broken"),))
    with pytest.raises(CompositionError) as exc_info:
        compose(spec)
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_constructor_failure_hands_back_what_was_built() -> None:
    spec = ContextSpec(
        factory=FeatureContext,
        subcontexts=(
            ContextSpec(factory=DatabaseContext, alias="db"),
            ContextSpec(factory=BrokenContext, alias="broken"),
        ),
    )
    with pytest.raises(CompositionError) as exc_info:
        compose(spec)
    partial = exc_info.value.partial
    assert isinstance(partial.instance, FeatureContext)
    assert partial.arena.has("db")
    assert not partial.arena.has("broken")
    # Built contexts can still navigate the part of the graph that exists.
    assert isinstance(partial.instance.get_subcontext("db"), DatabaseContext)


def test_root_constructor_failure_has_no_partial_graph() -> None:
    with pytest.raises(CompositionError) as exc_info:
        compose(ContextSpec(factory=BrokenContext))
    assert exc_info.value.partial is None


def test_compose_is_fresh_per_call() -> None:
    # Two compositions never share instances: mutations stay in their own graph.
    first = compose(_spec())
    second = compose(_spec())
    resolve(first, "db").instance.rows.append("alice")
    assert resolve(second, "db").instance.rows == []
    assert first.instance is not second.instance


def test_behavior_context_navigation_helpers() -> None:
    root = compose(_spec())
    db = resolve(root, "db").instance
    assert db.main_context is root.instance
    assert db.get_subcontext("browser") is resolve(root, "browser").instance
    assert root.instance.get_subcontext_by_capability("database") is db


def test_behavior_context_does_not_keep_graph_alive() -> None:
    # Instances only hold a weak reference to their arena.
    root = compose(_spec())
    db = resolve(root, "db").instance
    del root
    gc.collect()
    with pytest.raises(RuntimeError):
        db.main_context


def test_unbound_behavior_context_cannot_navigate() -> None:
    with pytest.raises(RuntimeError):
        BrowserContext().get_subcontext("db")
