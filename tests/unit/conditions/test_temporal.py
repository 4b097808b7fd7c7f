from automation_engine.conditions.builders import initial_evaluation
from automation_engine.evaluation.evaluator import AutomationEvaluator
from automation_engine.evaluation.history import EvaluationHistory

from tests.helpers.fakes import CountingCondition, facts, later, make_driver, requested, single_entity_graph


def _step(driver, minutes):
    result = driver.tick(facts(later(minutes)))
    assert result is not None
    return requested(result, "a")


def test_newly_true_is_empty_on_first_evaluation():
    a = CountingCondition({"p1"})
    driver = make_driver(single_entity_graph(a.newly_true()))

    assert _step(driver, 0) == set()
    a.keys = {"p1", "p2"}
    assert _step(driver, 5) == {"p2"}
    assert _step(driver, 10) == set()
    a.keys = {"p1"}
    assert _step(driver, 15) == set()
    a.keys = {"p1", "p2"}
    assert _step(driver, 20) == {"p2"}


def test_since_compares_last_transition_ticks():
    trigger = CountingCondition({"p1"}, tag="t")
    reset = CountingCondition(set(), tag="r")
    driver = make_driver(single_entity_graph(trigger.since(reset)))

    assert _step(driver, 0) == {"p1"}

    reset.keys = {"p1"}
    assert _step(driver, 5) == set()

    trigger.keys, reset.keys = set(), set()
    assert _step(driver, 10) == set()

    trigger.keys = {"p1", "p2"}
    assert _step(driver, 15) == {"p1", "p2"}

    # both sides become true on the same tick: reset wins for p3
    trigger.keys, reset.keys = {"p3"}, {"p3"}
    assert _step(driver, 20) == {"p1", "p2"}


def test_since_is_false_when_neither_side_was_ever_true():
    driver = make_driver(single_entity_graph(CountingCondition(set()).since(CountingCondition(set(), tag="r"))))
    assert _step(driver, 0) == set()
    assert _step(driver, 5) == set()


def test_state_of_skipped_subtree_is_carried_forward():
    gate = CountingCondition(tag="gate")
    a = CountingCondition({"p1"}, tag="a")
    driver = make_driver(single_entity_graph(gate & a.newly_true()))

    assert _step(driver, 0) == set()

    gate.keys = set()
    a.keys = {"p1", "p2"}
    assert _step(driver, 5) == set()
    assert a.calls == 1
    assert "2" in driver.history.view().record("a").node_states

    gate.keys = None
    assert _step(driver, 10) == {"p2"}


def test_changed_tree_restarts_from_initial_evaluation():
    history = EvaluationHistory()
    before = AutomationEvaluator(single_entity_graph(initial_evaluation()))
    after = AutomationEvaluator(single_entity_graph(initial_evaluation().with_label("v2")))

    first = before.evaluate(facts(), history.view())
    history.commit(first)
    second = before.evaluate(facts(later(5)), history.view())
    history.commit(second)
    third = after.evaluate(facts(later(10)), history.view())

    assert requested(first, "a") == {"p1", "p2", "p3", "p4"}
    assert requested(second, "a") == set()
    assert requested(third, "a") == {"p1", "p2", "p3", "p4"}
