from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Any, Callable, Iterable

import networkx as nx

from automation_engine.contracts.condition import ConditionTree
from automation_engine.evaluation.analysis import ConditionIndex
from automation_engine.evaluation.context import EntityEvaluationSession, EvaluationContext
from automation_engine.evaluation.history import PriorStateView
from automation_engine.evaluation.result import EntityEvaluationRecord, EntityStatus
from automation_engine.exceptions.core import ConfigurationError, TickAbandonedError
from automation_engine.facts.snapshot import TickFacts
from automation_engine.graph.entity_graph import EntityGraph
from automation_engine.partitions.definitions import PartitionSpace
from automation_engine.partitions.subset import PartitionSubset
from automation_engine.runtime.context import TickContext
from automation_engine.runtime.snapshot import TickResult
from automation_engine.utils.config import EvaluatorConfig
from automation_engine.utils.logger import (
    get_logger,
    log_configuration,
    log_debug,
    log_evaluation,
    log_exception,
)
from automation_engine.utils.timer import timed_block

PENDING = "pending"
EVALUATING = "evaluating"
DONE = "done"

CUSTOM_NOT_PERMITTED = "custom conditions are not permitted in this execution context"


class AutomationEvaluator:
    """
    Evaluates every targeted entity's condition for one tick.

    Semantics:
      - Static checks (condition references, cycles) run in __init__, so a
        misconfigured graph fails before any tick begins.
      - `evaluate()` is a function of (graph, facts, prior view); it never
        writes history. Committing the TickResult is the driver's job.
      - Node errors are contained at the node, entity errors at the entity
        boundary. ConfigurationError and TickAbandonedError abort the pass.
    """

    _logger = get_logger(__name__)

    def __init__(self, graph: EntityGraph, config: EvaluatorConfig | None = None):
        self.graph = graph
        self.config = config or EvaluatorConfig()
        self.index = ConditionIndex(graph)
        self.reference_graph = self.index.reference_graph()
        self._custom = frozenset(key for key in self.index.trees if self.index.uses_custom_code(key))

        order_graph = nx.compose(graph.digraph, self.reference_graph)
        if not nx.is_directed_acyclic_graph(order_graph):
            raise ConfigurationError(f"Condition references conflict with dependencies: {nx.find_cycle(order_graph)}")
        self._order_graph = order_graph
        self._order = tuple(nx.lexicographical_topological_sort(order_graph))

        log_debug(
            self._logger,
            "AutomationEvaluator ready",
            entities=len(graph),
            conditioned=len(self.index.trees),
            custom=sorted(self._custom),
        )

    # ------------------------------------------------------------------
    # Static views
    # ------------------------------------------------------------------
    def tree(self, key: str) -> ConditionTree | None:
        return self.index.tree(key)

    def uses_custom_code(self, key: str) -> bool:
        return key in self._custom

    def eligible_entities(self, targets: Iterable[str] | None = None) -> tuple[str, ...]:
        """Targeted entities with a condition, in evaluation order."""
        if targets is None:
            wanted = set(self.graph.keys)
        else:
            wanted = set(targets)
            unknown = sorted(wanted - set(self.graph.keys))
            if unknown:
                raise ConfigurationError(f"Unknown target entities: {unknown}")
        return tuple(key for key in self._order if key in wanted and key in self.index.trees)

    def generations(self, keys: Iterable[str]) -> list[list[str]]:
        sub = self._order_graph.subgraph(keys)
        return [sorted(level) for level in nx.topological_generations(sub)]

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def evaluate(
        self,
        facts: TickFacts,
        prior: PriorStateView | None = None,
        *,
        tick_index: int | None = None,
        targets: Iterable[str] | None = None,
        should_abandon: Callable[[], bool] | None = None,
    ) -> TickResult:
        prior = prior if prior is not None else PriorStateView.empty()
        tick_index = prior.next_tick_index if tick_index is None else int(tick_index)
        tick = TickContext(tick_index=tick_index, facts=facts, graph=self.graph, prior=prior)

        eligible = self.eligible_entities(targets)
        self._admit(eligible, tick_index)

        run = _TickRun(self, tick, eligible, should_abandon)
        with timed_block("tick_evaluation", tick=tick_index, entities=len(eligible)):
            records = run.execute()

        ordered = {key: records[key] for key in eligible if key in records}
        return TickResult(
            tick_index=tick_index,
            evaluation_time=facts.evaluation_time,
            records=MappingProxyType(ordered),
            facts=facts,
        )

    def _admit(self, eligible: tuple[str, ...], tick_index: int) -> None:
        cap = self.config.max_entities
        if len(eligible) > cap:
            log_configuration(
                self._logger,
                "Entity cap exceeded; pass rejected",
                tick=tick_index,
                reason="max_entities",
                eligible=len(eligible),
                max_entities=cap,
            )
            raise ConfigurationError(f"{len(eligible)} eligible entities exceed the cap of {cap} per evaluation pass")

        if self.config.allow_custom_conditions or self.config.custom_condition_policy != "fail":
            return
        offenders = [key for key in eligible if key in self._custom]
        if offenders:
            log_configuration(
                self._logger,
                "Custom conditions not permitted; pass rejected",
                tick=tick_index,
                reason="custom_condition",
                entities=offenders,
            )
            raise ConfigurationError(f"Custom conditions are not permitted here; used by {offenders}")

    # ------------------------------------------------------------------
    # Per entity
    # ------------------------------------------------------------------
    def _evaluate_entity(self, run: "_TickRun", key: str) -> EntityEvaluationRecord:
        tick = run.tick
        tree = self.index.trees[key]
        space = run.space_for(key)

        if key in self._custom and not self.config.allow_custom_conditions:
            log_configuration(self._logger, "Entity skipped", entity=key, tick=tick.tick_index, reason="custom_condition")
            return EntityEvaluationRecord(
                entity_key=key,
                tick_index=tick.tick_index,
                evaluation_time=tick.evaluation_time,
                status=EntityStatus.SKIPPED,
                request_subset=PartitionSubset.empty(key, space),
                tree_fingerprint=tree.fingerprint,
                node_states=MappingProxyType(_surviving_states(tick.prior.record(key), tree)),
                warnings=(CUSTOM_NOT_PERMITTED,),
            )

        session = EntityEvaluationSession(
            root_key=key,
            tick=tick,
            tree=tree,
            resolver=run,
            slow_condition_warn_seconds=self.config.slow_condition_warn_seconds,
        )
        candidate = PartitionSubset.all(key, space)
        try:
            root = tree.root.evaluate(EvaluationContext.root(session, candidate))
        except (ConfigurationError, TickAbandonedError):
            raise
        except Exception as exc:
            log_exception(
                self._logger,
                "Entity evaluation failed; no request emitted",
                entity=key,
                tick=tick.tick_index,
                err_type=type(exc).__name__,
                err=str(exc),
            )
            return EntityEvaluationRecord(
                entity_key=key,
                tick_index=tick.tick_index,
                evaluation_time=tick.evaluation_time,
                status=EntityStatus.ERROR,
                request_subset=PartitionSubset.empty(key, space),
                tree_fingerprint=tree.fingerprint,
                node_states=MappingProxyType(_surviving_states(session.prior_record, tree)),
                warnings=tuple(session.warnings) + (f"{type(exc).__name__}: {exc}",),
            )

        record = EntityEvaluationRecord(
            entity_key=key,
            tick_index=tick.tick_index,
            evaluation_time=tick.evaluation_time,
            status=EntityStatus.EVALUATED,
            request_subset=root.true_subset,
            tree_fingerprint=tree.fingerprint,
            root_result=root,
            node_states=MappingProxyType(session.carried_states()),
            warnings=tuple(session.warnings),
        )
        log_evaluation(
            self._logger,
            "Entity evaluated",
            entity=key,
            tick=tick.tick_index,
            requested=len(record.request_subset),
            candidate_size=len(candidate),
            warnings=len(record.warnings),
            initial=session.is_initial_evaluation,
        )
        return record


def _surviving_states(prior_record: EntityEvaluationRecord | None, tree: ConditionTree) -> dict[str, Any]:
    if prior_record is None or prior_record.tree_fingerprint != tree.fingerprint:
        return {}
    return dict(prior_record.node_states)


class _TickRun:
    """
    Per-tick evaluation state; implements the TickResolver protocol.

    Each entity moves PENDING -> EVALUATING -> DONE exactly once. A condition
    that needs another entity's current request evaluates it on demand;
    concurrent callers wait for the owner instead of evaluating twice.
    """

    def __init__(
        self,
        evaluator: AutomationEvaluator,
        tick: TickContext,
        eligible: tuple[str, ...],
        should_abandon: Callable[[], bool] | None,
    ):
        self.evaluator = evaluator
        self.tick = tick
        self.eligible = eligible
        self.should_abandon = should_abandon
        self.records: dict[str, EntityEvaluationRecord] = {}
        self._states = {key: PENDING for key in eligible}
        self._events = {key: threading.Event() for key in eligible}
        self._owners: dict[str, int] = {}
        self._spaces: dict[str, PartitionSpace] = {}
        self._lock = threading.RLock()

    # ---- TickResolver ----
    def space_for(self, entity_key: str) -> PartitionSpace:
        with self._lock:
            space = self._spaces.get(entity_key)
            if space is None:
                space = self.tick.graph.partitions_def(entity_key).space(self.tick.evaluation_time)
                self._spaces[entity_key] = space
            return space

    def request_subset_for(self, entity_key: str) -> PartitionSubset:
        if entity_key not in self._states:
            return PartitionSubset.empty(entity_key, self.space_for(entity_key))
        return self.ensure(entity_key).request_subset

    def downstream_trees(self, entity_key: str) -> list[tuple[str, ConditionTree]]:
        return self.evaluator.index.downstream_conditions(entity_key)

    # ---- state machine ----
    def ensure(self, key: str) -> EntityEvaluationRecord:
        me = threading.get_ident()
        with self._lock:
            state = self._states[key]
            if state == DONE:
                return self.records[key]
            if state == EVALUATING:
                if self._owners[key] == me:
                    raise ConfigurationError(f"Entity '{key}' reached its own evaluation through a condition reference")
                waiter = self._events[key]
            else:
                self._states[key] = EVALUATING
                self._owners[key] = me
                waiter = None

        if waiter is not None:
            waiter.wait()
            with self._lock:
                record = self.records.get(key)
            if record is None:
                raise TickAbandonedError(f"Evaluation of '{key}' did not complete")
            return record

        try:
            self._check_abandon(key)
            record = self.evaluator._evaluate_entity(self, key)
            with self._lock:
                self.records[key] = record
                self._states[key] = DONE
            return record
        finally:
            self._events[key].set()

    def _check_abandon(self, key: str) -> None:
        if self.should_abandon is not None and self.should_abandon():
            raise TickAbandonedError(f"Tick {self.tick.tick_index} abandoned before evaluating '{key}'")

    def execute(self) -> dict[str, EntityEvaluationRecord]:
        workers = self.evaluator.config.max_workers
        if workers <= 1 or len(self.eligible) <= 1:
            for key in self.eligible:
                self.ensure(key)
            return self.records

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="automation-eval") as pool:
            for generation in self.evaluator.generations(self.eligible):
                list(pool.map(self.ensure, generation))
        return self.records
