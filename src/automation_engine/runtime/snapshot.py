from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from automation_engine.evaluation.result import EntityEvaluationRecord
from automation_engine.facts.snapshot import TickFacts
from automation_engine.partitions.subset import PartitionSubset

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class TickResult:
    """
    Immutable output of a single evaluation tick.

    Semantics:
      - `records` holds one record per evaluated (or skipped) entity.
      - `requests` is the run-request payload: entity -> non-empty request subset.
      - Produced only by a completed tick; abandoned ticks produce nothing.
      - `facts` is the snapshot the tick was evaluated against; the next tick
        diffs its own facts against it.
    """

    tick_index: int
    evaluation_time: datetime
    records: Mapping[str, EntityEvaluationRecord]
    facts: TickFacts | None = None

    @property
    def requests(self) -> dict[str, PartitionSubset]:
        return {
            key: rec.request_subset
            for key, rec in self.records.items()
            if not rec.request_subset.is_empty
        }

    @property
    def warnings(self) -> dict[str, tuple[str, ...]]:
        return {key: rec.warnings for key, rec in self.records.items() if rec.warnings}

    def record(self, key: str) -> EntityEvaluationRecord:
        return self.records[key]

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "tick": self.tick_index,
            "evaluation_time": self.evaluation_time.isoformat(),
            "requests": {key: subset.to_dict() for key, subset in sorted(self.requests.items())},
            "records": {key: rec.to_dict() for key, rec in sorted(self.records.items())},
        }
