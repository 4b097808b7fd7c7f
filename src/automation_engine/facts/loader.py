# facts/loader.py
from __future__ import annotations

from automation_engine.graph.entity_graph import EntityGraph
from automation_engine.partitions.definitions import UNPARTITIONED_KEY
from automation_engine.utils.config import EntityFactsConfig, TickFactsConfig
from .snapshot import EntityFacts, TickFacts


def _entity_facts(cfg: EntityFactsConfig, *, partitioned: bool) -> EntityFacts:
    if partitioned:
        last_updated = cfg.last_updated if isinstance(cfg.last_updated, dict) else {}
        return EntityFacts.build(
            materialized=cfg.materialized,
            in_progress=cfg.in_progress,
            failed=cfg.failed,
            last_updated=last_updated,
            code_version=cfg.code_version,
        )

    # Unpartitioned: any listed key means "the" partition.
    def flag(values: list) -> list:
        return [UNPARTITIONED_KEY] if values else []

    if isinstance(cfg.last_updated, dict):
        stamp = max(cfg.last_updated.values(), default=None)
    else:
        stamp = cfg.last_updated
    return EntityFacts.build(
        materialized=flag(cfg.materialized),
        in_progress=flag(cfg.in_progress),
        failed=flag(cfg.failed),
        last_updated={} if stamp is None else {UNPARTITIONED_KEY: stamp},
        code_version=cfg.code_version,
    )


class FactsLoader:
    @staticmethod
    def from_config(cfg: TickFactsConfig | dict, graph: EntityGraph) -> TickFacts:
        """
        cfg example:
        {
            "evaluation_time": "2024-01-03T00:05:00+00:00",
            "entities": {
                "raw_orders": {"materialized": ["2024-01-01"], "last_updated": {"2024-01-01": 1704100000}},
                "fx_rates": {"materialized": [null], "last_updated": 1704100000}
            }
        }
        """
        if not isinstance(cfg, TickFactsConfig):
            cfg = TickFactsConfig.model_validate(cfg)
        entities = {
            key: _entity_facts(facts, partitioned=key in graph and graph.partitions_def(key).is_partitioned)
            for key, facts in cfg.entities.items()
        }
        return TickFacts(evaluation_time=cfg.evaluation_time, entities=entities)
