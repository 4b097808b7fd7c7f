from datetime import timedelta

from automation_engine.conditions.builders import (
    any_deps_match,
    code_version_changed,
    cron_tick_passed,
    execution_failed,
    in_latest_time_window,
    in_progress,
    initial_evaluation,
    missing,
    newly_requested,
    newly_updated,
    will_be_requested,
)
from automation_engine.evaluation.evaluator import AutomationEvaluator
from automation_engine.graph.entity_graph import EntityGraph, EntityNode
from automation_engine.partitions.definitions import UNPARTITIONED, DailyPartitionsDefinition

from tests.helpers.fakes import (
    KEYS,
    CountingCondition,
    evaluate_once,
    facts,
    later,
    make_driver,
    requested,
    run_ticks,
    single_entity_graph,
)

DAILY = DailyPartitionsDefinition("2024-01-01")


def test_missing_excludes_materialized_and_in_progress():
    root = evaluate_once(missing(), facts(a={"materialized": ["p1"], "in_progress": ["p2"]}))
    assert root.true_subset.keys == {"p3", "p4"}


def test_in_progress_and_execution_failed():
    tick = facts(a={"in_progress": ["p2"], "failed": ["p4"]})
    assert evaluate_once(in_progress(), tick).true_subset.keys == {"p2"}
    assert evaluate_once(execution_failed(), tick).true_subset.keys == {"p4"}


def test_newly_updated_compares_with_previous_tick():
    results = run_ticks(
        single_entity_graph(newly_updated()),
        [
            facts(a={"last_updated": {"p1": 1.0, "p2": 1.0}}),
            facts(later(5), a={"last_updated": {"p1": 2.0, "p2": 1.0, "p3": 1.0}}),
            facts(later(10), a={"last_updated": {"p1": 2.0, "p2": 1.0, "p3": 1.0}}),
        ],
    )
    assert requested(results[0], "a") == set()
    assert requested(results[1], "a") == {"p1", "p3"}
    assert requested(results[2], "a") == set()


def test_code_version_changed():
    results = run_ticks(
        single_entity_graph(code_version_changed()),
        [
            facts(a={"code_version": "v1"}),
            facts(later(5), a={"code_version": "v1"}),
            facts(later(10), a={"code_version": "v2"}),
        ],
    )
    assert [requested(r, "a") for r in results] == [set(), set(), set(KEYS)]


def _gated_ticks(gate, condition, entity_facts):
    driver = make_driver(single_entity_graph(gate & condition))
    out = []
    for i, (open_, a) in enumerate(entity_facts):
        gate.keys = None if open_ else set()
        out.append(requested(driver.tick(facts(later(5 * i), a=a)), "a"))
    return out


def test_newly_updated_behind_closed_gate_diffs_against_previous_tick():
    gate = CountingCondition(tag="gate")
    out = _gated_ticks(
        gate,
        newly_updated(),
        [
            (True, {"last_updated": {"p1": 1.0}}),
            (False, {"last_updated": {"p1": 2.0}}),
            (True, {"last_updated": {"p1": 2.0}}),
            (True, {"last_updated": {"p1": 3.0}}),
        ],
    )
    assert out == [set(), set(), set(), {"p1"}]


def test_code_version_changed_behind_closed_gate_diffs_against_previous_tick():
    gate = CountingCondition(tag="gate")
    out = _gated_ticks(
        gate,
        code_version_changed(),
        [
            (True, {"code_version": "v1"}),
            (False, {"code_version": "v2"}),
            (True, {"code_version": "v2"}),
            (True, {"code_version": "v3"}),
        ],
    )
    assert out == [set(), set(), set(), set(KEYS)]


def test_newly_requested_reads_the_immediately_preceding_tick():
    results = run_ticks(
        single_entity_graph(missing() & ~newly_requested()),
        [facts(), facts(later(5)), facts(later(10))],
    )
    assert requested(results[0], "a") == set(KEYS)
    assert requested(results[1], "a") == set()
    assert requested(results[2], "a") == set(KEYS)


def test_cron_tick_passed_between_evaluations():
    results = run_ticks(
        single_entity_graph(cron_tick_passed("0 * * * *"), partitions_def=UNPARTITIONED),
        [facts(), facts(later(25)), facts(later(57))],
    )
    assert [requested(r, "a") for r in results] == [set(), set(), {None}]


def test_in_latest_time_window():
    assert evaluate_once(in_latest_time_window(), partitions_def=DAILY).true_subset.keys == {"2024-01-02"}

    narrow = in_latest_time_window(timedelta(hours=1))
    assert evaluate_once(narrow, partitions_def=DAILY).true_subset.keys == {"2024-01-02"}

    wide = in_latest_time_window(timedelta(days=2))
    assert evaluate_once(wide, partitions_def=DAILY).true_subset.keys == {"2024-01-01", "2024-01-02"}


def test_in_latest_time_window_keeps_non_time_partitions():
    assert evaluate_once(in_latest_time_window()).true_subset.keys == set(KEYS)


def _request_chain():
    return EntityGraph(
        [
            EntityNode("up", UNPARTITIONED, condition=missing()),
            EntityNode("down", UNPARTITIONED, deps={"up": None}, condition=any_deps_match(will_be_requested())),
        ]
    )


def test_will_be_requested_sees_same_tick_requests():
    evaluator = AutomationEvaluator(_request_chain())

    result = evaluator.evaluate(facts())
    assert requested(result, "up") == {None}
    assert requested(result, "down") == {None}

    result = evaluator.evaluate(facts(up={"materialized": [None]}))
    assert requested(result, "down") == set()


def test_will_be_requested_is_empty_for_untargeted_entities():
    result = AutomationEvaluator(_request_chain()).evaluate(facts(), targets=["down"])
    assert set(result.records) == {"down"}
    assert requested(result, "down") == set()


def test_initial_evaluation_only_on_first_tick():
    results = run_ticks(single_entity_graph(initial_evaluation()), [facts(), facts(later(5))])
    assert requested(results[0], "a") == set(KEYS)
    assert requested(results[1], "a") == set()
