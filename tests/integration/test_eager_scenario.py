import asyncio
import importlib.util
import json
from pathlib import Path

from automation_engine.conditions.builders import eager
from automation_engine.evaluation.evaluator import AutomationEvaluator
from automation_engine.facts.loader import FactsLoader
from automation_engine.graph.entity_graph import EntityGraph, EntityNode
from automation_engine.graph.loader import GraphLoader
from automation_engine.partitions.definitions import UNPARTITIONED
from automation_engine.utils.config import load_scenario

from tests.helpers.fakes import facts, later, make_driver, requested

ROOT = Path(__file__).resolve().parents[2]
SCENARIO = ROOT / "scenarios" / "eager_daily.json"


def test_eager_unpartitioned_entity_two_ticks():
    driver = make_driver(EntityGraph([EntityNode("A", UNPARTITIONED, condition=eager())]))

    first = driver.tick(facts())
    second = driver.tick(facts(later(5), A={"materialized": [None], "last_updated": {None: 1.0}}))

    assert requested(first, "A") == {None}
    assert first.requests["A"].bool_value is True
    assert requested(second, "A") == set()
    assert driver.sink.requests == [{"A": [None]}, {}]


def test_bundled_scenario_through_driver():
    scenario = load_scenario(SCENARIO)
    graph = GraphLoader.from_config(scenario.entities)
    driver = make_driver(graph, scenario.sensor.evaluator)

    results = [driver.tick(FactsLoader.from_config(tick, graph)) for tick in scenario.ticks]

    assert [requested(r, "daily_orders") for r in results] == [
        {"2024-01-01", "2024-01-02"},
        set(),
        {"2024-01-02"},
    ]
    # no phantom partitions: every request lies inside the entity's space for that tick
    for result in results:
        for key, subset in result.requests.items():
            space = graph.partitions_def(key).space(result.evaluation_time)
            assert subset.keys <= space.key_set


def test_offline_app_prints_json_lines(tmp_path, capsys):
    log_config = tmp_path / "logging.json"
    log_config.write_text(
        json.dumps({"profiles": {"default": {"level": "WARNING", "handlers": {"console": {"enabled": False}}}}}),
        encoding="utf-8",
    )
    spec = importlib.util.spec_from_file_location("run_evaluation", ROOT / "apps" / "run_evaluation.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    code = asyncio.run(
        module.main(["--scenario", str(SCENARIO), "--log-config", str(log_config)])
    )
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]

    assert code == 0
    assert [line["tick"] for line in lines] == [0, 1, 2]
    assert lines[2]["requests"]["daily_orders"] == {"entity": "daily_orders", "partitions": ["2024-01-02"]}


def test_eager_waits_for_in_progress_parent():
    graph = EntityGraph(
        [
            EntityNode("up", UNPARTITIONED),
            EntityNode("down", UNPARTITIONED, deps={"up": None}, condition=eager()),
        ]
    )
    evaluator = AutomationEvaluator(graph)
    done = {"materialized": [None], "last_updated": {None: 1.0}}
    driver = make_driver(graph)

    driver.tick(facts(up={"materialized": [None], "last_updated": {None: 1.0}}, down=done))
    running = driver.tick(
        facts(later(5), up={"materialized": [None], "in_progress": [None], "last_updated": {None: 2.0}}, down=done)
    )
    settled = driver.tick(facts(later(10), up={"materialized": [None], "last_updated": {None: 3.0}}, down=done))

    assert requested(running, "down") == set()
    assert requested(settled, "down") == {None}
    assert evaluator.eligible_entities() == ("down",)
