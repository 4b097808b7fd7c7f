from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from automation_engine.contracts.condition import ConditionBase
from automation_engine.evaluation.context import EvaluationContext
from automation_engine.evaluation.result import ConditionResult
from automation_engine.exceptions.core import MissingPriorStateError
from automation_engine.partitions.definitions import PartitionKey
from .registry import register_condition


def _single(name: str, children: tuple[ConditionBase, ...]) -> ConditionBase:
    if len(children) != 1:
        raise ValueError(f"'{name}' takes exactly one child condition, got {len(children)}")
    return children[0]


@register_condition("and")
@dataclass(frozen=True, repr=False)
class AndCondition(ConditionBase):
    """
    Left-to-right conjunction with candidate narrowing.

    Each operand sees the previous operand's true subset as its candidate.
    Once the running result is empty, later operands are not invoked.
    """

    operands: tuple[ConditionBase, ...]

    def __post_init__(self):
        if len(self.operands) < 1:
            raise ValueError("'and' requires at least one operand")

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return self.operands

    @classmethod
    def from_parts(cls, children, params):
        return cls(tuple(children))

    def description(self) -> str:
        return f"and[{len(self.operands)}]"

    def compute(self, context: EvaluationContext) -> ConditionResult:
        candidate = context.candidate_subset
        child_results: list[ConditionResult] = []
        for i in range(len(self.operands)):
            child_ctx = context.for_child(i, candidate)
            result = self.operands[i].evaluate(child_ctx)
            child_results.append(result)
            candidate = result.true_subset
        return context.result(candidate, tuple(child_results))


@register_condition("or")
@dataclass(frozen=True, repr=False)
class OrCondition(ConditionBase):
    """Union of every operand, each evaluated against the unrestricted candidate."""

    operands: tuple[ConditionBase, ...]

    def __post_init__(self):
        if len(self.operands) < 1:
            raise ValueError("'or' requires at least one operand")

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return self.operands

    @classmethod
    def from_parts(cls, children, params):
        return cls(tuple(children))

    def description(self) -> str:
        return f"or[{len(self.operands)}]"

    def compute(self, context: EvaluationContext) -> ConditionResult:
        true_subset = context.empty_subset()
        child_results: list[ConditionResult] = []
        for i in range(len(self.operands)):
            result = self.operands[i].evaluate(context.for_child(i))
            child_results.append(result)
            true_subset = true_subset.union(result.true_subset)
        return context.result(true_subset, tuple(child_results))


@register_condition("not")
@dataclass(frozen=True, repr=False)
class NotCondition(ConditionBase):
    """Complement within the candidate subset, never within the full space."""

    operand: ConditionBase

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return (self.operand,)

    @classmethod
    def from_parts(cls, children, params):
        return cls(_single("not", children))

    def compute(self, context: EvaluationContext) -> ConditionResult:
        result = self.operand.evaluate(context.for_child(0))
        return context.result(context.candidate_subset.subtract(result.true_subset), (result,))


@register_condition("newly_true")
@dataclass(frozen=True, repr=False)
class NewlyTrueCondition(ConditionBase):
    """
    True where the operand is true now and was not on the previous evaluation.

    State: the operand's true keys. Without prior state the result is
    empty; this evaluation only establishes the baseline.
    """

    operand: ConditionBase

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return (self.operand,)

    @classmethod
    def from_parts(cls, children, params):
        return cls(_single("newly_true", children))

    def compute(self, context: EvaluationContext) -> ConditionResult:
        result = self.operand.evaluate(context.for_child(0))
        current = result.true_subset.keys
        try:
            previous: frozenset[PartitionKey] = context.previous_state()
        except MissingPriorStateError:
            context.write_state(current)
            return context.result(context.empty_subset(), (result,))

        # Partitions outside this tick's candidate keep their previous status.
        outside = frozenset(k for k in previous if k not in context.candidate_subset)
        context.write_state(current | outside)
        newly = result.true_subset.keys - previous
        return context.result(context.subset_from_keys(newly), (result,))


@dataclass(frozen=True)
class SinceState:
    """Per-partition tick index of the last false->true transition of each side."""

    trigger_ticks: Mapping[PartitionKey, int]
    reset_ticks: Mapping[PartitionKey, int]
    trigger_true: frozenset[PartitionKey]
    reset_true: frozenset[PartitionKey]


@register_condition("since")
@dataclass(frozen=True, repr=False)
class SinceCondition(ConditionBase):
    """
    True where `trigger` last became true strictly after `reset` last did.

    A side "becomes true" for a partition on a tick where it is true and was
    not true on the previous evaluation (no prior state counts as false).
    Transition ticks are carried forward until overwritten. A partition
    for which neither side ever became true is false.
    """

    trigger: ConditionBase
    reset: ConditionBase

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return (self.trigger, self.reset)

    @classmethod
    def from_parts(cls, children, params):
        if len(children) != 2:
            raise ValueError(f"'since' takes exactly two child conditions, got {len(children)}")
        return cls(children[0], children[1])

    def compute(self, context: EvaluationContext) -> ConditionResult:
        trigger_result = self.trigger.evaluate(context.for_child(0))
        reset_result = self.reset.evaluate(context.for_child(1))
        tick = context.tick.tick_index

        try:
            prior: SinceState = context.previous_state()
        except MissingPriorStateError:
            prior = SinceState({}, {}, frozenset(), frozenset())

        candidate = context.candidate_subset
        trigger_ticks = _advance(prior.trigger_ticks, prior.trigger_true, trigger_result.true_subset.keys, tick)
        reset_ticks = _advance(prior.reset_ticks, prior.reset_true, reset_result.true_subset.keys, tick)

        context.write_state(
            SinceState(
                trigger_ticks=trigger_ticks,
                reset_ticks=reset_ticks,
                trigger_true=_carry(prior.trigger_true, trigger_result.true_subset.keys, candidate),
                reset_true=_carry(prior.reset_true, reset_result.true_subset.keys, candidate),
            )
        )

        true_keys = (
            k
            for k in candidate
            if k in trigger_ticks and trigger_ticks[k] > reset_ticks.get(k, -1)
        )
        return context.result(context.subset_from_keys(true_keys), (trigger_result, reset_result))


def _advance(
    ticks: Mapping[PartitionKey, int],
    was_true: frozenset[PartitionKey],
    now_true: frozenset[PartitionKey],
    tick: int,
) -> dict[PartitionKey, int]:
    out = dict(ticks)
    for k in now_true:
        if k not in was_true:
            out[k] = tick
    return out


def _carry(was_true: frozenset[PartitionKey], now_true: frozenset[PartitionKey], candidate) -> frozenset[PartitionKey]:
    return now_true | frozenset(k for k in was_true if k not in candidate)


@register_condition("label")
@dataclass(frozen=True, repr=False)
class LabelCondition(ConditionBase):
    """Pass-through node carrying a display label."""

    operand: ConditionBase
    text: str

    @property
    def children(self) -> tuple[ConditionBase, ...]:
        return (self.operand,)

    @property
    def label(self) -> str | None:
        return self.text

    @classmethod
    def from_parts(cls, children, params):
        return cls(_single("label", children), str(params["text"]))

    def params(self) -> dict[str, Any]:
        return {"text": self.text}

    def compute(self, context: EvaluationContext) -> ConditionResult:
        result = self.operand.evaluate(context.for_child(0))
        return context.result(result.true_subset, (result,))
