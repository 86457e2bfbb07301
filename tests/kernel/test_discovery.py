from __future__ import annotations

import types

import pytest

from bdd_kernel.kernel.annotations import (
    after_scenario,
    before_feature,
    before_scenario,
    before_suite,
    context,
    get_context_meta,
    get_hook_meta,
    get_step_meta,
    given,
    step,
    then,
    when,
)
from bdd_kernel.kernel.context import BehaviorContext, ContextSpec
from bdd_kernel.kernel.definitions import Hook, HookPhase, StepDefinition
from bdd_kernel.kernel.discovery import (
    build_registry,
    discover_class_definitions,
    discover_module_definitions,
)
from bdd_kernel.kernel.errors import (
    CompositionError,
    DuplicatePatternError,
    InvalidDefinitionError,
    RegistryFrozenError,
)


class Orders(BehaviorContext):
    @given(r"an order for (\d+) units")
    def order(self, units):
        self.units = units

    @when("the order ships", priority=2)
    def ship(self):
        self.shipped = True

    @then(r"(\d+) units are in transit", types=["int"])
    @then(r"(\d+) units left the warehouse", types=["int"])
    def in_transit(self, units):
        assert self.units == units

    @before_scenario("@orders")
    def reset(self, scope):
        self.units = 0

    @staticmethod
    @before_suite
    def boot(scope):
        return None

    @classmethod
    @before_feature
    def per_feature(cls, scope):
        return None

    def helper(self):
        return "not a step"


class ExpressOrders(Orders):
    @step("express shipping is selected")
    def express(self):
        self.express_shipping = True


def test_decorators_attach_metadata() -> None:
    metas = get_step_meta(Orders.in_transit)
    assert [meta.pattern for meta in metas] == [r"(\d+) units left the warehouse", r"(\d+) units are in transit"]
    assert metas[0].keyword == "then"
    assert metas[0].types == ("int",)
    assert get_hook_meta(Orders.reset)[0].tags == "@orders"
    assert get_hook_meta(Orders.reset)[0].phase is HookPhase.BEFORE_SCENARIO
    assert get_step_meta(Orders.helper) == ()


def test_bare_hook_decorator_has_no_tags() -> None:
    @after_scenario
    def cleanup(ctx, scope):
        return None

    (meta,) = get_hook_meta(cleanup)
    assert meta.phase is HookPhase.AFTER_SCENARIO
    assert meta.tags is None


def test_context_decorator_declares_capabilities() -> None:
    @context(capabilities=["storage", "sql"])
    class Db:
        pass

    meta = get_context_meta(Db)
    assert meta is not None
    assert meta.capabilities == frozenset({"storage", "sql"})
    assert get_context_meta(Orders) is None


def test_class_discovery_binds_owner_and_metadata() -> None:
    found = discover_class_definitions(Orders, owner="orders")
    steps = [item for item in found if isinstance(item, StepDefinition)]
    hooks = [item for item in found if isinstance(item, Hook)]

    assert [definition.pattern for definition in steps] == [
        r"an order for (\d+) units",
        "the order ships",
        r"(\d+) units left the warehouse",
        r"(\d+) units are in transit",
    ]
    assert all(definition.owner == "orders" for definition in steps)
    assert steps[1].priority == 2
    assert steps[1].keyword == "when"
    assert {hook.phase for hook in hooks} == {
        HookPhase.BEFORE_SCENARIO,
        HookPhase.BEFORE_SUITE,
        HookPhase.BEFORE_FEATURE,
    }
    reset = next(hook for hook in hooks if hook.phase is HookPhase.BEFORE_SCENARIO)
    assert reset.tags is not None
    assert reset.applies_to(frozenset({"orders"}))
    assert not reset.applies_to(frozenset({"billing"}))


def test_subclass_inherits_base_definitions() -> None:
    found = discover_class_definitions(ExpressOrders, owner="main")
    patterns = [item.pattern for item in found if isinstance(item, StepDefinition)]
    assert patterns[0] == r"an order for (\d+) units"
    assert patterns[-1] == "express shipping is selected"


def test_static_step_is_rejected() -> None:
    class Bad:
        @staticmethod
        @given("a static step")
        def nope(ctx):
            return None

    with pytest.raises(InvalidDefinitionError, match="plain methods"):
        discover_class_definitions(Bad, owner="main")


def test_instance_suite_hook_is_rejected() -> None:
    class Bad:
        @before_suite
        def boot(self, scope):
            return None

    with pytest.raises(InvalidDefinitionError, match="staticmethods or classmethods"):
        discover_class_definitions(Bad, owner="main")


def test_module_discovery_registers_free_functions_once() -> None:
    @given("a free step")
    def free_step(ctx):
        return None

    @after_scenario
    def free_hook(ctx, scope):
        return None

    first = types.ModuleType("steps_a")
    first.free_step = free_step
    first.free_hook = free_hook
    second = types.ModuleType("steps_b")
    second.free_step = free_step

    found = discover_module_definitions([first, second])
    assert len(found) == 2
    definition = next(item for item in found if isinstance(item, StepDefinition))
    assert definition.owner is None


def test_build_registry_walks_context_tree_and_freezes() -> None:
    class Warehouse(BehaviorContext):
        @given("stock is counted")
        def count(self):
            return None

    spec = ContextSpec(factory=Orders, subcontexts=(ContextSpec(factory=Warehouse, alias="warehouse"),))
    registry = build_registry(spec)
    assert registry.frozen
    assert registry.owners() == {"main", "warehouse"}
    assert registry.definitions[-1].owner == "warehouse"
    with pytest.raises(RegistryFrozenError):
        registry.register(StepDefinition(pattern="late", func=lambda ctx: None))


def test_same_class_under_two_aliases_is_a_duplicate() -> None:
    spec = ContextSpec(
        factory=BehaviorContext,
        subcontexts=(
            ContextSpec(factory=Orders, alias="left"),
            ContextSpec(factory=Orders, alias="right"),
        ),
    )
    with pytest.raises(DuplicatePatternError, match="an order for"):
        build_registry(spec)


def test_alias_collision_fails_bootstrap() -> None:
    spec = ContextSpec(
        factory=BehaviorContext,
        subcontexts=(
            ContextSpec(factory=BehaviorContext, alias="db"),
            ContextSpec(factory=BehaviorContext, alias="db"),
        ),
    )
    with pytest.raises(CompositionError, match="'db'"):
        build_registry(spec)
