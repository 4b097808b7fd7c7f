from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

import pandas as pd

from automation_engine.evaluation.result import EntityEvaluationRecord
from automation_engine.facts.snapshot import EntityFacts, TickFacts
from automation_engine.runtime.snapshot import TickResult
from automation_engine.utils.logger import get_logger, log_debug


@dataclass(frozen=True)
class PriorStateView:
    """
    Read-only view of everything committed before the current tick.

    `records` holds the latest record of every entity ever evaluated, which
    is not necessarily from the immediately preceding tick.
    `facts` is the fact snapshot of the immediately preceding tick.
    """

    tick_index: int | None = None
    evaluation_time: datetime | None = None
    records: Mapping[str, EntityEvaluationRecord] = field(default_factory=lambda: MappingProxyType({}))
    facts: TickFacts | None = None

    @classmethod
    def empty(cls) -> PriorStateView:
        return cls()

    @property
    def next_tick_index(self) -> int:
        return 0 if self.tick_index is None else self.tick_index + 1

    def record(self, key: str) -> EntityEvaluationRecord | None:
        return self.records.get(key)

    def record_from_previous_tick(self, key: str) -> EntityEvaluationRecord | None:
        rec = self.records.get(key)
        if rec is None or rec.tick_index != self.tick_index:
            return None
        return rec

    def previous_facts(self, key: str) -> EntityFacts | None:
        if self.facts is None:
            return None
        return self.facts.for_entity(key)


class EvaluationHistory:
    """
    Append-only log of committed ticks.

    Semantics:
      - `commit()` is the only write path and takes a whole TickResult, so a
        partially evaluated tick can never leak into the next tick's view.
      - `view()` snapshots the latest record per entity; the snapshot is not
        affected by later commits.
      - `max_ticks` bounds how many full TickResults are retained for display;
        the latest-record-per-entity state is always kept.
    """

    _logger = get_logger(__name__)

    def __init__(self, max_ticks: int | None = None):
        self._ticks: deque[TickResult] = deque(maxlen=max_ticks)
        self._latest: dict[str, EntityEvaluationRecord] = {}
        self._last_tick: TickResult | None = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._ticks)

    @property
    def ticks(self) -> tuple[TickResult, ...]:
        return tuple(self._ticks)

    @property
    def next_tick_index(self) -> int:
        return 0 if self._last_tick is None else self._last_tick.tick_index + 1

    def commit(self, result: TickResult) -> None:
        with self._lock:
            if result.tick_index != self.next_tick_index:
                raise ValueError(
                    f"Out-of-order commit: expected tick {self.next_tick_index}, got {result.tick_index}"
                )
            self._ticks.append(result)
            self._latest.update(result.records)
            self._last_tick = result
        log_debug(self._logger, "EvaluationHistory committed tick", tick=result.tick_index, entities=len(result.records))

    def view(self) -> PriorStateView:
        with self._lock:
            if self._last_tick is None:
                return PriorStateView.empty()
            return PriorStateView(
                tick_index=self._last_tick.tick_index,
                evaluation_time=self._last_tick.evaluation_time,
                records=MappingProxyType(dict(self._latest)),
                facts=self._last_tick.facts,
            )

    def records_for(self, entity_key: str) -> list[EntityEvaluationRecord]:
        return [t.records[entity_key] for t in self._ticks if entity_key in t.records]

    def node_state(self, entity_key: str, state_key: str, tick_index: int) -> Any:
        """Look up a stored node state by (entity, node, tick) among retained ticks."""
        for t in self._ticks:
            if t.tick_index == tick_index:
                rec = t.records.get(entity_key)
                if rec is None:
                    break
                return rec.node_states.get(state_key)
        raise KeyError(f"No retained state for ({entity_key!r}, {state_key!r}, tick {tick_index})")

    def to_frame(self) -> pd.DataFrame:
        """One row per (tick, entity) for history display."""
        rows = [
            {
                "tick": t.tick_index,
                "evaluation_time": t.evaluation_time,
                "entity": key,
                "status": rec.status.value,
                "requested": len(rec.request_subset),
                "warnings": len(rec.warnings),
            }
            for t in self._ticks
            for key, rec in sorted(t.records.items())
        ]
        columns = ["tick", "evaluation_time", "entity", "status", "requested", "warnings"]
        return pd.DataFrame(rows, columns=columns)
