from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable

from automation_engine.contracts.condition import ConditionBase
from automation_engine.evaluation.context import EvaluationContext
from automation_engine.evaluation.result import ConditionResult
from automation_engine.graph.entity_graph import EntityGraph
from automation_engine.partitions.subset import PartitionSubset
from .registry import register_condition


def _selection(keys: Iterable[str] | str | None) -> frozenset[str] | None:
    if keys is None:
        return None
    if isinstance(keys, str):
        return frozenset([keys])
    return frozenset(keys)


@dataclass(frozen=True, repr=False)
class DepsConditionBase(ConditionBase):
    """
    Shared machinery for conditions evaluated on parent entities.

    `allow` / `ignore` are static selections over the dependency graph:
    participating parents = parents ∩ allow − ignore.
    """

    operand: ConditionBase
    allow_keys: frozenset[str] | None = None
    ignore_keys: frozenset[str] = frozenset()

    walks_dependencies = True

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return (self.operand,)

    @classmethod
    def from_parts(cls, children, params):
        if len(children) != 1:
            raise ValueError(f"'{cls.name}' takes exactly one child condition, got {len(children)}")
        return cls(
            children[0],
            allow_keys=_selection(params.get("allow")),
            ignore_keys=_selection(params.get("ignore")) or frozenset(),
        )

    def params(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.allow_keys is not None:
            out["allow"] = sorted(self.allow_keys)
        if self.ignore_keys:
            out["ignore"] = sorted(self.ignore_keys)
        return out

    def allow(self, keys: Iterable[str] | str) -> "DepsConditionBase":
        selected = _selection(keys) or frozenset()
        merged = selected if self.allow_keys is None else self.allow_keys | selected
        return replace(self, allow_keys=merged)

    def ignore(self, keys: Iterable[str] | str) -> "DepsConditionBase":
        return replace(self, ignore_keys=self.ignore_keys | (_selection(keys) or frozenset()))

    def participating_parents(self, graph: EntityGraph, entity_key: str) -> tuple[str, ...]:
        parents = graph.parents(entity_key)
        if self.allow_keys is not None:
            parents = tuple(p for p in parents if p in self.allow_keys)
        return tuple(p for p in parents if p not in self.ignore_keys)

    def _evaluate_parents(self, context: EvaluationContext):
        """Yield (parent, parent-side result, result mapped onto the target entity)."""
        graph = context.tick.graph
        for parent in self.participating_parents(graph, context.entity_key):
            mapping = graph.mapping(parent, context.entity_key)
            parent_space = context.session.resolver.space_for(parent)
            parent_candidate = mapping.map_to_upstream(context.candidate_subset, parent, parent_space)
            parent_result = self.operand.evaluate(context.for_dependency(0, parent, parent_candidate))
            mapped = mapping.map_to_downstream(parent_result.true_subset, context.entity_key, context.space)
            yield parent, parent_result, mapped.intersect(context.candidate_subset)


@register_condition("any_deps_match")
@dataclass(frozen=True, repr=False)
class AnyDepsMatchCondition(DepsConditionBase):
    """Partitions mapped from at least one participating parent partition matching the operand."""

    def compute(self, context: EvaluationContext) -> ConditionResult:
        true_subset = context.empty_subset()
        child_results: list[ConditionResult] = []
        for _parent, parent_result, mapped in self._evaluate_parents(context):
            child_results.append(parent_result)
            true_subset = true_subset.union(mapped)
        return context.result(true_subset, tuple(child_results))


@register_condition("all_deps_match")
@dataclass(frozen=True, repr=False)
class AllDepsMatchCondition(DepsConditionBase):
    """
    Partitions for which every participating parent has at least one mapped
    partition matching the operand. Vacuously true with no participating parents.
    """

    def compute(self, context: EvaluationContext) -> ConditionResult:
        true_subset: PartitionSubset = context.candidate_subset
        child_results: list[ConditionResult] = []
        for _parent, parent_result, mapped in self._evaluate_parents(context):
            child_results.append(parent_result)
            true_subset = true_subset.intersect(mapped)
        return context.result(true_subset, tuple(child_results))


@register_condition("any_downstream_conditions")
@dataclass(frozen=True, repr=False)
class AnyDownstreamConditionsCondition(ConditionBase):
    """
    True where any condition declared on a downstream entity is true when
    evaluated against this entity.

    Downstream results are never read; each downstream condition is
    evaluated here as an independent tree. Downstream conditions that
    themselves contain this operator are excluded, which bounds recursion.
    """

    walks_downstream = True

    @classmethod
    def from_parts(cls, children, params):
        if children:
            raise ValueError("'any_downstream_conditions' takes no child conditions")
        return cls()

    def compute(self, context: EvaluationContext) -> ConditionResult:
        true_subset = context.empty_subset()
        child_results: list[ConditionResult] = []
        for tag, tree in context.session.resolver.downstream_trees(context.entity_key):
            result = tree.root.evaluate(context.for_tree(tag, tree))
            child_results.append(result)
            true_subset = true_subset.union(result.true_subset)
        return context.result(true_subset, tuple(child_results))
