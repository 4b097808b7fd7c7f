from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from automation_engine.contracts.condition import ConditionBase
from automation_engine.evaluation.evaluator import AutomationEvaluator
from automation_engine.evaluation.history import EvaluationHistory
from automation_engine.facts.snapshot import EntityFacts, TickFacts
from automation_engine.graph.entity_graph import EntityGraph, EntityNode
from automation_engine.partitions.definitions import StaticPartitionsDefinition
from automation_engine.runtime.driver import AutomationDriver, InMemoryRequestSink
from automation_engine.runtime.snapshot import TickResult
from automation_engine.utils.config import EvaluatorConfig

T0 = datetime(2024, 1, 3, 0, 5, tzinfo=timezone.utc)
KEYS = ("p1", "p2", "p3", "p4")
STATIC = StaticPartitionsDefinition(KEYS)


class CountingCondition(ConditionBase):
    """Operand stub: true for `keys` (None = whole candidate); counts invocations."""

    name = "counting"
    is_operand = True

    def __init__(self, keys: Iterable[Any] | None = None, tag: str = ""):
        self.keys = None if keys is None else set(keys)
        self.tag = tag
        self.calls = 0
        self.candidates: list[frozenset] = []

    def params(self) -> dict[str, Any]:
        return {"tag": self.tag} if self.tag else {}

    def compute(self, context):
        self.calls += 1
        self.candidates.append(context.candidate_subset.keys)
        if self.keys is None:
            return context.result(context.candidate_subset)
        return context.result(context.candidate_with_keys(self.keys))


class RaisingCondition(ConditionBase):
    """Non-operand node that blows up; escapes node containment."""

    name = "raising"

    def compute(self, context):
        raise RuntimeError("broken operator")


def facts(evaluation_time: datetime = T0, **entities: Any) -> TickFacts:
    built = {
        key: value if isinstance(value, EntityFacts) else EntityFacts.build(**value)
        for key, value in entities.items()
    }
    return TickFacts(evaluation_time=evaluation_time, entities=built)


def later(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def single_entity_graph(condition: ConditionBase, key: str = "a", partitions_def=STATIC) -> EntityGraph:
    return EntityGraph([EntityNode(key, partitions_def=partitions_def, condition=condition)])


def make_driver(graph: EntityGraph, config: EvaluatorConfig | None = None, **kw) -> AutomationDriver:
    return AutomationDriver(
        evaluator=AutomationEvaluator(graph, config),
        history=EvaluationHistory(),
        sink=InMemoryRequestSink(),
        **kw,
    )


def run_ticks(graph: EntityGraph, ticks: Iterable[TickFacts], config: EvaluatorConfig | None = None) -> list[TickResult]:
    driver = make_driver(graph, config)
    out = []
    for tick_facts in ticks:
        result = driver.tick(tick_facts)
        assert result is not None
        out.append(result)
    return out


def evaluate_once(condition: ConditionBase, tick_facts: TickFacts | None = None, partitions_def=STATIC):
    """Root ConditionResult of `condition` on a lone entity 'a'."""
    graph = single_entity_graph(condition, partitions_def=partitions_def)
    result = AutomationEvaluator(graph).evaluate(tick_facts or facts())
    return result.record("a").root_result


def requested(result: TickResult, key: str) -> set:
    return set(result.record(key).request_subset.keys)
