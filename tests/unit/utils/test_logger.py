from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from automation_engine.partitions.definitions import StaticPartitionsDefinition
from automation_engine.partitions.subset import PartitionSubset
from automation_engine.utils.logger import (
    CATEGORY_EVALUATION,
    ContextFilter,
    JsonFormatter,
    _debug_module_matches,
    get_logger,
    init_logging,
    log_evaluation,
    log_exception,
    safe_jsonable,
)


def test_safe_jsonable_handles_common_types() -> None:
    space = StaticPartitionsDefinition(["p1", "p2"]).space()
    payload = {
        "path": Path("foo/bar"),
        "created": datetime(2020, 1, 1, 0, 0, 0),
        "aware": datetime(2021, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2))),
        "tuple": ("x", 1),
        "exc": ValueError("boom"),
        "set": {"b", "a"},
        "subset": PartitionSubset.from_keys("a", space, ["p2", "p1"]),
    }

    out = safe_jsonable(payload)
    json.dumps(out)
    assert out["path"] == "foo/bar"
    assert "2020" in out["created"]
    assert out["aware"] == "2021-01-02T01:04:05+00:00"
    assert out["tuple"] == ["x", 1]
    assert out["set"] == ["a", "b"]
    assert out["subset"] == {"entity": "a", "partitions": ["p1", "p2"]}


def test_debug_module_matching() -> None:
    assert _debug_module_matches("automation_engine.evaluation.evaluator", "evaluator")
    assert _debug_module_matches("automation_engine.evaluation.evaluator", "automation_engine.evaluation")
    assert not _debug_module_matches("automation_engine.conditions.operands", "evaluator")


def test_init_logging_dictconfig_applied(tmp_path: Path) -> None:
    config = {
        "active_profile": "default",
        "profiles": {
            "default": {
                "level": "DEBUG",
                "debug": {"enabled": True, "modules": ["evaluator"]},
                "handlers": {"console": {"enabled": True, "level": "DEBUG"}},
                "format": {"json": True},
            }
        },
    }
    config_path = tmp_path / "logging.json"
    config_path.write_text(json.dumps(config), encoding="utf-8")

    init_logging(config_path=str(config_path), sensor="nightly")
    logger = get_logger("automation_engine.test")

    assert logging.getLogger().level == logging.DEBUG
    assert logger.getEffectiveLevel() == logging.DEBUG

    root_handlers = logging.getLogger().handlers
    assert root_handlers
    assert any(isinstance(h.formatter, JsonFormatter) for h in root_handlers)
    assert any(any(isinstance(f, ContextFilter) for f in h.filters) for h in root_handlers)


def test_json_formatter_lifts_category(caplog) -> None:
    logger = get_logger("automation_engine.test.category")
    with caplog.at_level(logging.INFO, logger="automation_engine.test.category"):
        log_evaluation(logger, "Entity evaluated", entity="orders", requested=2)

    record = caplog.records[-1]
    line = json.loads(JsonFormatter().format(record))
    assert line["event"] == "Entity evaluated"
    assert line["category"] == CATEGORY_EVALUATION
    assert line["context"]["entity"] == "orders"


def test_context_filter_tags_sensor_and_profile(tmp_path: Path) -> None:
    config_path = tmp_path / "logging.json"
    config_path.write_text(
        json.dumps({"profiles": {"default": {"handlers": {"console": {"enabled": False}}}}}),
        encoding="utf-8",
    )
    init_logging(config_path=str(config_path), sensor="nightly")

    record = logging.LogRecord("automation_engine.test", logging.INFO, __file__, 1, "plain call", None, None)
    assert ContextFilter().filter(record)
    assert record.context == {"sensor": "nightly", "profile": "default"}


def test_log_exception_carries_traceback(caplog) -> None:
    logger = get_logger("automation_engine.test.exception")
    with caplog.at_level(logging.ERROR, logger="automation_engine.test.exception"):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            log_exception(logger, "Entity evaluation failed", entity="orders")

    line = json.loads(JsonFormatter().format(caplog.records[-1]))
    assert line["level"] == "ERROR"
    assert "RuntimeError: boom" in line["exc"]
    assert line["context"]["entity"] == "orders"
