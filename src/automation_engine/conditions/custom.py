from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable

from automation_engine.contracts.condition import ConditionBase
from automation_engine.evaluation.context import EvaluationContext
from automation_engine.evaluation.result import ConditionResult
from automation_engine.partitions.subset import PartitionSubset
from automation_engine.utils.timer import timed_block
from .registry import get_custom_predicate, register_condition

CustomPredicate = Callable[[EvaluationContext], Any]


@register_condition("custom")
@dataclass(frozen=True, repr=False)
class CustomCondition(ConditionBase):
    """
    Extension point for externally supplied predicates.

    `predicate(context)` may return a PartitionSubset of the target entity,
    a bool (whole candidate / nothing) or an iterable of partition keys.
    The result is always clipped to the candidate. Exceptions are contained
    at this node by ConditionBase.evaluate.
    """

    predicate: CustomPredicate = field(compare=False)
    predicate_name: str

    is_operand = True
    is_custom = True

    @classmethod
    def from_parts(cls, children, params):
        if children:
            raise ValueError("'custom' takes no child conditions")
        name = str(params["predicate"])
        return cls(get_custom_predicate(name), name)

    def params(self) -> dict[str, Any]:
        return {"predicate": self.predicate_name}

    def compute(self, context: EvaluationContext) -> ConditionResult:
        with timed_block("custom_condition", entity=context.entity_key, predicate=self.predicate_name) as watch:
            raw = self.predicate(context)

        limit = context.session.slow_condition_warn_seconds
        if limit is not None and watch.elapsed_s > limit:
            context.warn(
                f"custom condition '{self.predicate_name}' took {watch.elapsed_s:.3f}s (limit {limit:.3f}s)"
            )
        return context.result(self._coerce(context, raw))

    def _coerce(self, context: EvaluationContext, raw: Any) -> PartitionSubset:
        if isinstance(raw, PartitionSubset):
            if raw.entity_key != context.entity_key:
                raise TypeError(
                    f"custom condition '{self.predicate_name}' returned a subset of "
                    f"'{raw.entity_key}' while evaluating '{context.entity_key}'"
                )
            return context.candidate_with_keys(raw.keys)
        if isinstance(raw, bool):
            return context.candidate_subset if raw else context.empty_subset()
        if isinstance(raw, Iterable) and not isinstance(raw, (str, bytes)):
            return context.candidate_with_keys(frozenset(raw))
        raise TypeError(
            f"custom condition '{self.predicate_name}' returned {type(raw).__name__}; "
            "expected PartitionSubset, bool or iterable of partition keys"
        )


def custom_condition(predicate: CustomPredicate, name: str | None = None) -> CustomCondition:
    return CustomCondition(predicate, name or getattr(predicate, "__name__", "custom"))
