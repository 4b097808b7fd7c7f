from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from automation_engine.partitions.definitions import PartitionKey
from automation_engine.partitions.subset import PartitionSubset


@dataclass(frozen=True)
class ConditionResult:
    """
    Outcome of one condition node for one target entity in one tick.

    `true_subset` is always a subset of `candidate_subset`.
    """

    node_id: int
    state_key: str
    entity_key: str
    description: str
    label: str | None
    candidate_subset: PartitionSubset
    true_subset: PartitionSubset
    child_results: tuple["ConditionResult", ...] = ()
    skipped: bool = False
    error: str | None = None

    def iter_results(self):
        yield self
        for child in self.child_results:
            yield from child.iter_results()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "node_id": self.node_id,
            "state_key": self.state_key,
            "entity": self.entity_key,
            "description": self.description,
            "candidate_size": len(self.candidate_subset),
            "true_size": len(self.true_subset),
        }
        if self.label is not None:
            out["label"] = self.label
        if self.skipped:
            out["skipped"] = True
        if self.error is not None:
            out["error"] = self.error
        if self.child_results:
            out["children"] = [c.to_dict() for c in self.child_results]
        return out


class EntityStatus(Enum):
    EVALUATED = "evaluated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class EntityEvaluationRecord:
    """
    Per (entity, tick) record: the request subset, the node results for
    display, and the node state carried into the next tick.

    Written once when the entity finishes evaluating; superseded, never
    mutated, by the next tick's record.
    """

    entity_key: str
    tick_index: int
    evaluation_time: datetime
    status: EntityStatus
    request_subset: PartitionSubset
    tree_fingerprint: str | None = None
    root_result: ConditionResult | None = None
    node_states: Mapping[str, Any] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @property
    def requested_keys(self) -> frozenset[PartitionKey]:
        return self.request_subset.keys

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity_key,
            "tick": self.tick_index,
            "evaluation_time": self.evaluation_time.isoformat(),
            "status": self.status.value,
            "request": self.request_subset.to_dict(),
            "tree_fingerprint": self.tree_fingerprint,
            "root": self.root_result.to_dict() if self.root_result is not None else None,
            "warnings": list(self.warnings),
        }
