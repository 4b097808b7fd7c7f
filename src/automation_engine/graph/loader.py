# graph/loader.py
from __future__ import annotations

from typing import Iterable

from automation_engine.conditions.loader import ConditionLoader
from automation_engine.exceptions.core import ConfigurationError
from automation_engine.partitions.definitions import (
    UNPARTITIONED,
    DailyPartitionsDefinition,
    HourlyPartitionsDefinition,
    PartitionsDefinition,
    StaticPartitionsDefinition,
    TimeWindowPartitionsDefinition,
)
from automation_engine.partitions.mappings import PartitionMapping, build_partition_mapping
from automation_engine.utils.config import DepConfig, EntityConfig, PartitionsConfig
from automation_engine.utils.logger import get_logger, log_debug
from .entity_graph import EntityGraph, EntityKind, EntityNode


def build_partitions_def(cfg: PartitionsConfig) -> PartitionsDefinition:
    if cfg.type == "unpartitioned":
        return UNPARTITIONED
    if cfg.type == "static":
        return StaticPartitionsDefinition(cfg.keys)
    if cfg.start is None:
        raise ConfigurationError(f"'{cfg.type}' partitions require 'start'")
    if cfg.type == "daily":
        return DailyPartitionsDefinition(cfg.start, timezone=cfg.timezone, end_offset=cfg.end_offset)
    if cfg.type == "hourly":
        return HourlyPartitionsDefinition(cfg.start, timezone=cfg.timezone, end_offset=cfg.end_offset)
    if cfg.freq is None or cfg.fmt is None:
        raise ConfigurationError("'time_window' partitions require 'freq' and 'fmt'")
    return TimeWindowPartitionsDefinition(
        cfg.start, cfg.freq, cfg.fmt, timezone=cfg.timezone, end_offset=cfg.end_offset
    )


def _dep_mapping(dep: str | DepConfig) -> tuple[str, PartitionMapping | None]:
    if isinstance(dep, str):
        return dep, None
    if dep.mapping is None:
        return dep.key, None
    try:
        return dep.key, build_partition_mapping(dep.mapping, **dep.params)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid mapping for dependency '{dep.key}': {exc}") from exc


class GraphLoader:
    _logger = get_logger(__name__)

    @staticmethod
    def from_config(entities: Iterable[EntityConfig | dict]) -> EntityGraph:
        """
        Build an EntityGraph from entity configs.

        entity example:
        {
            "key": "daily_orders",
            "partitions": {"type": "daily", "start": "2024-01-01"},
            "deps": ["raw_orders", {"key": "fx_rates", "mapping": "last"}],
            "condition": {"type": "eager"}
        }
        """
        nodes = []
        for cfg in entities:
            if not isinstance(cfg, EntityConfig):
                cfg = EntityConfig.model_validate(cfg)
            deps = dict(_dep_mapping(dep) for dep in cfg.deps)
            condition = ConditionLoader.from_config(cfg.condition) if cfg.condition is not None else None
            nodes.append(
                EntityNode(
                    key=cfg.key,
                    partitions_def=build_partitions_def(cfg.partitions),
                    deps=deps,
                    condition=condition,
                    kind=EntityKind(cfg.kind),
                )
            )
        graph = EntityGraph(nodes)
        log_debug(GraphLoader._logger, "GraphLoader built graph", entities=len(graph))
        return graph
