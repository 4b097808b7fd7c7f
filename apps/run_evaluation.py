from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from automation_engine.evaluation.evaluator import AutomationEvaluator
from automation_engine.evaluation.history import EvaluationHistory
from automation_engine.exceptions.core import ConfigurationError
from automation_engine.facts.loader import FactsLoader
from automation_engine.graph.loader import GraphLoader
from automation_engine.runtime.driver import AutomationDriver, InMemoryRequestSink
from automation_engine.utils.config import load_scenario
from automation_engine.utils.logger import get_logger, init_logging, log_info

ROOT = Path(__file__).resolve().parents[1]


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a JSON scenario through the automation evaluator")
    parser.add_argument("--scenario", required=True, help="Path to a scenario JSON file")
    parser.add_argument("--log-config", default=str(ROOT / "configs" / "logging.json"))
    parser.add_argument("--log-profile", default=None)
    parser.add_argument("--history", action="store_true", help="Print the evaluation history table at the end")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    scenario = load_scenario(args.scenario)
    init_logging(args.log_config, sensor=scenario.sensor.name, profile=args.log_profile)
    logger = get_logger(__name__)

    try:
        graph = GraphLoader.from_config(scenario.entities)
        evaluator = AutomationEvaluator(graph, scenario.sensor.evaluator)
    except ConfigurationError as exc:
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return 2

    sink = InMemoryRequestSink()
    driver = AutomationDriver(
        evaluator=evaluator,
        history=EvaluationHistory(max_ticks=scenario.sensor.history_max_ticks),
        sink=sink,
        targets=scenario.sensor.targets,
    )
    log_info(logger, "Scenario loaded", entities=len(graph), ticks=len(scenario.ticks))

    facts = [FactsLoader.from_config(tick, graph) for tick in scenario.ticks]
    results = await driver.run(facts)

    for result in results:
        line = {
            "tick": result.tick_index,
            "evaluation_time": result.evaluation_time.isoformat(),
            "requests": {key: subset.to_dict() for key, subset in sorted(result.requests.items())},
            "warnings": {key: list(w) for key, w in sorted(result.warnings.items())},
        }
        print(json.dumps(line))
    for err in driver.errors:
        print(json.dumps({"error": str(err)}), file=sys.stderr)

    if args.history:
        print(driver.history.to_frame().to_string(index=False))
    return 1 if driver.errors else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
