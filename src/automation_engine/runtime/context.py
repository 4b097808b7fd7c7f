from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from automation_engine.evaluation.history import PriorStateView
from automation_engine.facts.snapshot import TickFacts
from automation_engine.graph.entity_graph import EntityGraph


@dataclass(frozen=True)
class TickContext:
    """
    Immutable per-tick context.

    Semantics:
      - Represents one evaluation pass over the graph.
      - Owned by the evaluator; passed to conditions for read-only access.

    Non-responsibilities:
      - Does NOT hold any current-tick results.
      - Does NOT advance time.
      - Does NOT write history.
    """

    tick_index: int
    facts: TickFacts
    graph: EntityGraph
    prior: PriorStateView

    @property
    def evaluation_time(self) -> datetime:
        return self.facts.evaluation_time

    @property
    def previous_evaluation_time(self) -> datetime | None:
        return self.prior.evaluation_time
