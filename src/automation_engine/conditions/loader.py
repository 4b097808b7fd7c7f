# conditions/loader.py
from __future__ import annotations

from typing import Any, Callable

from automation_engine.contracts.condition import ConditionBase
from automation_engine.utils.config import ConditionConfig
from automation_engine.utils.logger import get_logger, log_debug

# Importing the concrete modules registers every built-in condition.
from . import builders, custom, dependencies, operands, operators  # noqa: F401
from .registry import CONDITION_REGISTRY, build_condition

# Named composite policies usable as a condition "type" in config
CONDITION_PRESETS: dict[str, Callable[..., ConditionBase]] = {
    "eager": builders.eager,
    "on_cron": builders.on_cron,
    "any_deps_updated": builders.any_deps_updated,
    "any_deps_missing": builders.any_deps_missing,
    "any_deps_in_progress": builders.any_deps_in_progress,
    "newly_missing": builders.newly_missing,
}


class ConditionLoader:
    _logger = get_logger(__name__)

    @staticmethod
    def from_config(cfg: ConditionConfig | dict[str, Any]) -> ConditionBase:
        """
        Build a condition tree from config.

        cfg example:
        {
            "type": "and",
            "children": [
                {"type": "in_latest_time_window"},
                {"type": "any_deps_match", "params": {"ignore": ["raw"]},
                 "children": [{"type": "newly_updated"}]}
            ],
            "label": "latest_deps_updated"
        }
        """
        if not isinstance(cfg, ConditionConfig):
            cfg = ConditionConfig.model_validate(cfg)

        children = [ConditionLoader.from_config(child) for child in cfg.children]
        if cfg.type in CONDITION_REGISTRY:
            node = build_condition(cfg.type, children, **cfg.params)
        elif cfg.type in CONDITION_PRESETS:
            if children:
                raise ValueError(f"Preset '{cfg.type}' takes no child conditions")
            node = CONDITION_PRESETS[cfg.type](**cfg.params)
        elif cfg.type == "since_last_handled":
            if len(children) != 1:
                raise ValueError("'since_last_handled' takes exactly one child condition")
            node = builders.since_last_handled(children[0])
        else:
            raise ValueError(
                f"Condition '{cfg.type}' not found. "
                f"Available: {sorted(set(CONDITION_REGISTRY) | set(CONDITION_PRESETS))}"
            )

        if cfg.label:
            node = node.with_label(cfg.label)
        log_debug(ConditionLoader._logger, "ConditionLoader built node", type=cfg.type, node=node.description())
        return node
