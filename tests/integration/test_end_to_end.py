from __future__ import annotations

import json
import sys
import types
from pathlib import Path

import pytest

from bdd_kernel.adapters.result_sinks import InMemoryResultSink
from bdd_kernel.config.loader import load_runner_config
from bdd_kernel.config.validator import ConfigError
from bdd_kernel.kernel.annotations import given
from bdd_kernel.kernel.composition_root import build_runtime, run_features
from bdd_kernel.kernel.context import BehaviorContext, ContextSpec
from bdd_kernel.kernel.errors import ConfigurationError, DuplicatePatternError
from bdd_kernel.kernel.results import ExecutorState, ScenarioResult, StepStatus
from bdd_kernel.kernel.scenario import Feature, Scenario, ScenarioStep

# User code lives in plain modules imported by name, the way a project's step packages would be.
CONTEXTS_SOURCE = '''
from bdd_kernel.kernel.annotations import after_scenario, context, given, then, when
from bdd_kernel.kernel.context import BehaviorContext

CLEANUPS = []


class ShopContext(BehaviorContext):
    def __init__(self, currency="USD"):
        self.currency = currency
        self.cart = []

    @given(r"a product (\\w+) costing (\\d+)")
    def product(self, name, price):
        self.get_subcontext("catalog").prices[name] = price

    @when(r"I add (\\w+) to the cart")
    def add(self, name):
        self.cart.append(name)

    @then(r"the total is (\\d+) (\\w+)")
    def total(self, amount, currency):
        catalog = self.get_subcontext_by_capability("pricing")
        assert sum(catalog.prices[name] for name in self.cart) == amount
        assert currency == self.currency

    @after_scenario
    def cleanup(self, scope):
        CLEANUPS.append(scope.scenario_id)


@context(capabilities=["pricing"])
class Catalog(BehaviorContext):
    def __init__(self):
        self.prices = {}

    @then(r"the catalog lists (\\d+) products?")
    def listed(self, count):
        assert len(self.prices) == count
'''

STEPS_SOURCE = '''
from bdd_kernel.kernel.annotations import then


@then("the cart is empty")
def cart_is_empty(shop):
    assert shop.cart == []
'''


def _install(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, prefix: str) -> tuple[str, str]:
    contexts = f"{prefix}_contexts"
    steps = f"{prefix}_steps"
    (tmp_path / f"{contexts}.py").write_text(CONTEXTS_SOURCE, encoding="utf-8")
    (tmp_path / f"{steps}.py").write_text(STEPS_SOURCE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return contexts, steps


def _checkout_feature() -> Feature:
    good = Scenario(
        name="pay for two products",
        line=3,
        steps=[
            ScenarioStep(text="a product apple costing 2", line=4),
            ScenarioStep(text="a product pear costing 3", line=5),
            ScenarioStep(text="I add apple to the cart", line=6),
            ScenarioStep(text="I add pear to the cart", line=7),
            ScenarioStep(text="the total is 5 EUR", line=8),
            ScenarioStep(text="the catalog lists 2 products", line=9),
        ],
    )
    bad = Scenario(
        name="wrong total",
        line=11,
        steps=[
            ScenarioStep(text="a product plum costing 4", line=12),
            ScenarioStep(text="I add plum to the cart", line=13),
            ScenarioStep(text="the total is 9 EUR", line=14),
            ScenarioStep(text="the cart is empty", line=15),
        ],
    )
    empty = Scenario(name="nothing bought", line=17, steps=[ScenarioStep(text="the cart is empty", line=18)])
    return Feature(name="Checkout", path="features/checkout.feature", scenarios=[good, bad, empty])


def test_yaml_config_drives_full_run(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    contexts, steps = _install(tmp_path, monkeypatch, "e2e_yaml")
    config_path = tmp_path / "runner.yml"
    config_path.write_text(
        "\n".join(
            [
                "execution:",
                "  workers: 2",
                "contexts:",
                f"  class: {contexts}:ShopContext",
                "  params:",
                "    currency: EUR",
                "  subcontexts:",
                f"    - class: {contexts}:Catalog",
                "      alias: catalog",
                "step_modules:",
                f"  - {steps}",
                "logging:",
                "  sink: jsonl",
                f"  path: {tmp_path / 'logs' / 'kernel.jsonl'}",
                "results:",
                "  sink: jsonl",
                f"  path: {tmp_path / 'results.jsonl'}",
                "  include_phases: false",
            ]
        ),
        encoding="utf-8",
    )

    runtime = build_runtime(load_runner_config(config_path))
    try:
        result = runtime.run([_checkout_feature()])
    finally:
        runtime.close()

    good, bad, empty = result.scenarios
    assert good.status is StepStatus.PASSED
    assert [step.status for step in bad.steps] == [
        StepStatus.PASSED,
        StepStatus.PASSED,
        StepStatus.FAILED,
        StepStatus.SKIPPED,
    ]
    assert bad.error is not None
    assert bad.error.type == "AssertionError"
    assert empty.status is StepStatus.PASSED
    assert result.status is StepStatus.FAILED
    assert result.exit_code == 1

    cleanups = sys.modules[contexts].CLEANUPS
    assert sorted(cleanups) == [
        "features/checkout.feature:11",
        "features/checkout.feature:17",
        "features/checkout.feature:3",
    ]

    records = [json.loads(line) for line in (tmp_path / "results.jsonl").read_text(encoding="utf-8").splitlines()]
    kinds = [record["kind"] for record in records]
    assert "phase" not in kinds
    assert kinds.count("scenario") == 3
    assert kinds[-2:] == ["feature", "suite"]
    assert records[-1]["exit_code"] == 1

    logs = [json.loads(line) for line in (tmp_path / "logs" / "kernel.jsonl").read_text(encoding="utf-8").splitlines()]
    ready = next(line for line in logs if line["message"] == "registry ready")
    assert ready["fields"]["contexts"] == ["main", "catalog"]
    assert any(line["message"] == "scenario failed" for line in logs)


def test_run_features_returns_exit_code(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    contexts, steps = _install(tmp_path, monkeypatch, "e2e_exit")
    sink = InMemoryResultSink()
    config = {
        "contexts": {
            "class": f"{contexts}:ShopContext",
            "subcontexts": [{"class": f"{contexts}:Catalog", "alias": "catalog"}],
        },
        "step_modules": [steps],
    }
    passing = Feature(
        name="Totals",
        scenarios=[Scenario.of("one apple", ["a product apple costing 2", "I add apple to the cart", "the total is 2 USD"])],
    )
    assert run_features(config, [passing], result_sink=sink) == 0
    assert sink.closed
    assert [record.status for record in sink.of_type(ScenarioResult)] == [StepStatus.PASSED]


def test_default_root_context_serves_free_steps() -> None:
    seen: list[object] = []

    @given("anything at all")
    def anything(ctx):
        seen.append(ctx)

    module = types.ModuleType("free_steps")
    module.anything = anything
    runtime = build_runtime(modules=[module])
    result = runtime.run([Feature(name="Free", scenarios=[Scenario.of("free", ["anything at all"])])])
    assert result.status is StepStatus.PASSED
    assert isinstance(seen[0], BehaviorContext)


def test_unknown_step_module_fails_bootstrap() -> None:
    with pytest.raises(ConfigError, match="no_such_steps_module"):
        build_runtime({"step_modules": ["no_such_steps_module"]})


def test_unknown_context_class_fails_bootstrap(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    contexts, _ = _install(tmp_path, monkeypatch, "e2e_missing")
    with pytest.raises(ConfigError, match="Missing"):
        build_runtime({"contexts": {"class": f"{contexts}:Missing"}})


def test_duplicate_patterns_fail_before_any_scenario(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "e2e_dup_more_steps.py").write_text(STEPS_SOURCE.replace("cart_is_empty", "again"), encoding="utf-8")
    _, steps = _install(tmp_path, monkeypatch, "e2e_dup")
    with pytest.raises(DuplicatePatternError, match="the cart is empty"):
        build_runtime({"step_modules": [steps, "e2e_dup_more_steps"]})


def test_failing_context_factory_is_contained_per_scenario(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    contexts, _ = _install(tmp_path, monkeypatch, "e2e_params")
    # Unknown constructor params only fail when a scenario composes its graph.
    runtime = build_runtime({"contexts": {"class": f"{contexts}:Catalog", "params": {"size": 3}}})
    result = runtime.run([Feature(name="Broken", scenarios=[Scenario.of("s", ["the catalog lists 0 products"])])])
    scenario = result.scenarios[0]
    assert scenario.status is StepStatus.FAILED
    assert scenario.error is not None
    assert scenario.error.type == "SetupError"
    assert result.exit_code == 1


def test_empty_context_alias_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ContextSpec(factory=object, alias="")


def test_batched_jsonl_results_are_written_on_suite_flush(tmp_path: Path) -> None:
    path = tmp_path / "out" / "results.jsonl"
    runtime = build_runtime(
        {"results": {"sink": "jsonl", "path": str(path), "write_mode": "batch", "flush_every_n": 1000}},
        modules=[],
    )
    sink = runtime.result_sink
    sink.emit(
        ScenarioResult(
            scenario_id="a:1", name="a", feature="A", status=StepStatus.PASSED, state=ExecutorState.FINALIZED
        )
    )
    # Below the batch size nothing reaches the file until a flush.
    assert path.read_text(encoding="utf-8") == ""

    result = runtime.run([])
    runtime.close()
    kinds = [json.loads(line)["kind"] for line in path.read_text(encoding="utf-8").splitlines()]
    assert kinds == ["scenario", "suite"]
    assert result.status is StepStatus.PASSED
