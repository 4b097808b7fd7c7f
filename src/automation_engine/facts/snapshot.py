from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from automation_engine.partitions.definitions import PartitionKey


def _keys(values: Iterable[Any] | None) -> frozenset[PartitionKey]:
    return frozenset(values or ())


@dataclass(frozen=True)
class EntityFacts:
    """
    Pre-fetched facts about one entity, as of the tick's evaluation time.

    Semantics:
      - `materialized`: partitions with at least one completed materialization
        (or executed check).
      - `in_progress`: partitions targeted by an unfinished run.
      - `failed`: partitions whose latest run failed.
      - `last_updated`: partition -> timestamp (or storage id) of the latest update.
      - Unpartitioned entities use the key `None`.
    """

    materialized: frozenset[PartitionKey] = field(default_factory=frozenset)
    in_progress: frozenset[PartitionKey] = field(default_factory=frozenset)
    failed: frozenset[PartitionKey] = field(default_factory=frozenset)
    last_updated: Mapping[PartitionKey, float] = field(default_factory=dict)
    code_version: str | None = None

    @classmethod
    def build(
        cls,
        *,
        materialized: Iterable[Any] | None = None,
        in_progress: Iterable[Any] | None = None,
        failed: Iterable[Any] | None = None,
        last_updated: Mapping[Any, float] | None = None,
        code_version: str | None = None,
    ) -> EntityFacts:
        return cls(
            materialized=_keys(materialized),
            in_progress=_keys(in_progress),
            failed=_keys(failed),
            last_updated=dict(last_updated or {}),
            code_version=code_version,
        )


EMPTY_FACTS = EntityFacts()


@dataclass(frozen=True)
class TickFacts:
    """
    Immutable snapshot of external facts for one evaluation pass.

    Facts are fetched before evaluation starts; the evaluation phase never
    performs I/O.
    """

    evaluation_time: datetime
    entities: Mapping[str, EntityFacts] = field(default_factory=dict)

    def for_entity(self, key: str) -> EntityFacts:
        return self.entities.get(key, EMPTY_FACTS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluation_time": self.evaluation_time.isoformat(),
            "entities": sorted(self.entities),
        }
