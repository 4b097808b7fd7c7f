from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol

from automation_engine.contracts.condition import ConditionBase, ConditionTree
from automation_engine.evaluation.result import ConditionResult, EntityEvaluationRecord
from automation_engine.exceptions.core import MissingPriorStateError, OperandEvaluationError
from automation_engine.facts.snapshot import EntityFacts
from automation_engine.partitions.definitions import PartitionKey, PartitionSpace
from automation_engine.partitions.subset import PartitionSubset
from automation_engine.runtime.context import TickContext
from automation_engine.utils.logger import get_logger, log_warn

_logger = get_logger(__name__)


class TickResolver(Protocol):
    """Current-tick services the evaluator exposes to conditions."""

    def space_for(self, entity_key: str) -> PartitionSpace:
        ...

    def request_subset_for(self, entity_key: str) -> PartitionSubset:
        ...

    def downstream_trees(self, entity_key: str) -> list[tuple[str, ConditionTree]]:
        ...


class EntityEvaluationSession:
    """
    Mutable scratchpad for evaluating one entity's tree in one tick.

    Confined to the thread evaluating that entity. Holds the node states
    written this tick and the warnings raised by contained node errors.
    """

    def __init__(
        self,
        *,
        root_key: str,
        tick: TickContext,
        tree: ConditionTree,
        resolver: TickResolver,
        slow_condition_warn_seconds: float | None = None,
    ):
        self.root_key = root_key
        self.tick = tick
        self.tree = tree
        self.resolver = resolver
        self.slow_condition_warn_seconds = slow_condition_warn_seconds
        self.prior_record: EntityEvaluationRecord | None = tick.prior.record(root_key)
        self.tree_changed = (
            self.prior_record is not None and self.prior_record.tree_fingerprint != tree.fingerprint
        )
        self.node_states: dict[str, Any] = {}
        self.warnings: list[str] = []

    @property
    def is_initial_evaluation(self) -> bool:
        return self.prior_record is None or self.tree_changed

    def prior_state(self, state_key: str) -> Any:
        if self.is_initial_evaluation:
            raise MissingPriorStateError(f"No prior record for '{self.root_key}'")
        states = self.prior_record.node_states  # type: ignore[union-attr]
        if state_key not in states:
            raise MissingPriorStateError(f"No prior state for '{self.root_key}' node {state_key}")
        return states[state_key]

    def carried_states(self) -> dict[str, Any]:
        """States for the record: this tick's writes over the still-valid prior ones."""
        if self.is_initial_evaluation:
            return dict(self.node_states)
        merged = dict(self.prior_record.node_states)  # type: ignore[union-attr]
        merged.update(self.node_states)
        return merged

    def warn(self, message: str) -> None:
        self.warnings.append(message)


class EvaluationContext:
    """
    Context for evaluating one node against one target entity.

    `candidate_subset` is the scope still under consideration. A child
    context's candidate is always a subset of its parent's (for the same
    target entity); AND narrows it, OR and NOT pass it through.
    """

    __slots__ = ("session", "tree", "node_id", "entity_key", "candidate_subset", "scope")

    def __init__(
        self,
        *,
        session: EntityEvaluationSession,
        tree: ConditionTree,
        node_id: int,
        entity_key: str,
        candidate_subset: PartitionSubset,
        scope: str = "",
    ):
        self.session = session
        self.tree = tree
        self.node_id = node_id
        self.entity_key = entity_key
        self.candidate_subset = candidate_subset
        self.scope = scope

    @classmethod
    def root(cls, session: EntityEvaluationSession, candidate_subset: PartitionSubset) -> EvaluationContext:
        return cls(
            session=session,
            tree=session.tree,
            node_id=0,
            entity_key=session.root_key,
            candidate_subset=candidate_subset,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    @property
    def condition(self) -> ConditionBase:
        return self.tree.nodes[self.node_id]

    @property
    def state_key(self) -> str:
        return f"{self.scope}{self.node_id}"

    @property
    def tick(self) -> TickContext:
        return self.session.tick

    @property
    def evaluation_time(self) -> datetime:
        return self.session.tick.evaluation_time

    @property
    def previous_evaluation_time(self) -> datetime | None:
        return self.session.tick.previous_evaluation_time

    @property
    def facts(self) -> EntityFacts:
        return self.session.tick.facts.for_entity(self.entity_key)

    @property
    def is_initial_evaluation(self) -> bool:
        return self.session.is_initial_evaluation

    # ------------------------------------------------------------------
    # Subsets
    # ------------------------------------------------------------------
    @property
    def space(self) -> PartitionSpace:
        return self.session.resolver.space_for(self.entity_key)

    def empty_subset(self) -> PartitionSubset:
        return PartitionSubset.empty(self.entity_key, self.space)

    def subset_from_keys(self, keys: Iterable[PartitionKey]) -> PartitionSubset:
        return PartitionSubset.from_keys(self.entity_key, self.space, keys)

    def candidate_with_keys(self, keys: Iterable[PartitionKey]) -> PartitionSubset:
        """Candidate partitions that are also in `keys`."""
        wanted = keys if isinstance(keys, (set, frozenset)) else frozenset(keys)
        return self.subset_from_keys(k for k in self.candidate_subset if k in wanted)

    def request_subset_for(self, entity_key: str) -> PartitionSubset:
        return self.session.resolver.request_subset_for(entity_key)

    # ------------------------------------------------------------------
    # Child contexts
    # ------------------------------------------------------------------
    def for_child(self, index: int, candidate_subset: PartitionSubset | None = None) -> EvaluationContext:
        candidate = self.candidate_subset if candidate_subset is None else candidate_subset
        return EvaluationContext(
            session=self.session,
            tree=self.tree,
            node_id=self.tree.child_id(self.node_id, index),
            entity_key=self.entity_key,
            candidate_subset=candidate,
            scope=self.scope,
        )

    def for_dependency(self, index: int, entity_key: str, candidate_subset: PartitionSubset) -> EvaluationContext:
        """Evaluate child `index` with another entity as target; state is scoped by that entity."""
        return EvaluationContext(
            session=self.session,
            tree=self.tree,
            node_id=self.tree.child_id(self.node_id, index),
            entity_key=entity_key,
            candidate_subset=candidate_subset,
            scope=f"{self.scope}{self.node_id}>{entity_key}/",
        )

    def for_tree(self, tag: str, tree: ConditionTree) -> EvaluationContext:
        """Evaluate a foreign condition tree against the current target entity."""
        return EvaluationContext(
            session=self.session,
            tree=tree,
            node_id=0,
            entity_key=self.entity_key,
            candidate_subset=self.candidate_subset,
            scope=f"{self.scope}{self.node_id}~{tag}/",
        )

    # ------------------------------------------------------------------
    # Cross-tick state
    # ------------------------------------------------------------------
    def previous_state(self) -> Any:
        """State this node stored on the previous evaluation; raises MissingPriorStateError."""
        return self.session.prior_state(self.state_key)

    def write_state(self, value: Any) -> None:
        self.session.node_states[self.state_key] = value

    def previous_tick_record(self) -> EntityEvaluationRecord | None:
        """Target entity's record from the immediately preceding tick, if any."""
        return self.session.tick.prior.record_from_previous_tick(self.entity_key)

    def previous_facts(self) -> EntityFacts | None:
        """
        Target entity's facts as of the immediately preceding tick.

        None on the root entity's initial evaluation or when no tick was
        committed before.
        """
        if self.session.is_initial_evaluation:
            return None
        return self.session.tick.prior.previous_facts(self.entity_key)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    def result(
        self,
        true_subset: PartitionSubset,
        child_results: tuple[ConditionResult, ...] = (),
    ) -> ConditionResult:
        node = self.condition
        return ConditionResult(
            node_id=self.node_id,
            state_key=self.state_key,
            entity_key=self.entity_key,
            description=node.description(),
            label=node.label,
            candidate_subset=self.candidate_subset,
            true_subset=true_subset.intersect(self.candidate_subset),
            child_results=child_results,
        )

    def skipped_result(self) -> ConditionResult:
        node = self.condition
        return ConditionResult(
            node_id=self.node_id,
            state_key=self.state_key,
            entity_key=self.entity_key,
            description=node.description(),
            label=node.label,
            candidate_subset=self.candidate_subset,
            true_subset=self.empty_subset(),
            skipped=True,
        )

    def error_result(self, exc: BaseException) -> ConditionResult:
        node = self.condition
        error = OperandEvaluationError(self.entity_key, node.description(), exc)
        self.session.warn(str(error))
        log_warn(
            _logger,
            "Condition node raised; treated as false",
            entity=self.session.root_key,
            target=self.entity_key,
            node=node.description(),
            state_key=self.state_key,
            err_type=type(exc).__name__,
            err=str(exc),
        )
        return ConditionResult(
            node_id=self.node_id,
            state_key=self.state_key,
            entity_key=self.entity_key,
            description=node.description(),
            label=node.label,
            candidate_subset=self.candidate_subset,
            true_subset=self.empty_subset(),
            error=str(error),
        )

    def warn(self, message: str) -> None:
        self.session.warn(message)
