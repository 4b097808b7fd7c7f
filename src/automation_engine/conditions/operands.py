"""
Built-in operand conditions.

Each operand is a pure function of (target entity, tick facts, what the
previous committed tick saw and requested). None of them look at other
condition nodes or keep node state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from croniter import croniter

from automation_engine.contracts.condition import ConditionBase
from automation_engine.evaluation.context import EvaluationContext
from automation_engine.evaluation.result import ConditionResult
from automation_engine.exceptions.core import ConfigurationError
from automation_engine.partitions.definitions import TimeWindowPartitionsDefinition, to_timestamp
from .registry import register_condition


class OperandBase(ConditionBase):
    is_operand = True


@register_condition("missing")
@dataclass(frozen=True, repr=False)
class MissingCondition(OperandBase):
    """No completed materialization and not currently in progress."""

    def compute(self, context: EvaluationContext) -> ConditionResult:
        facts = context.facts
        done = facts.materialized | facts.in_progress
        return context.result(context.subset_from_keys(k for k in context.candidate_subset if k not in done))


@register_condition("in_progress")
@dataclass(frozen=True, repr=False)
class InProgressCondition(OperandBase):
    def compute(self, context: EvaluationContext) -> ConditionResult:
        return context.result(context.candidate_with_keys(context.facts.in_progress))


@register_condition("execution_failed")
@dataclass(frozen=True, repr=False)
class ExecutionFailedCondition(OperandBase):
    def compute(self, context: EvaluationContext) -> ConditionResult:
        return context.result(context.candidate_with_keys(context.facts.failed))


@register_condition("newly_updated")
@dataclass(frozen=True, repr=False)
class NewlyUpdatedCondition(OperandBase):
    """
    `last_updated` moved since the immediately preceding tick.

    Diffs against the committed fact snapshot of that tick, whether or not
    this node ran then.
    """

    def compute(self, context: EvaluationContext) -> ConditionResult:
        previous = context.previous_facts()
        if previous is None:
            return context.result(context.empty_subset())

        before = previous.last_updated
        changed = {k for k, ts in context.facts.last_updated.items() if before.get(k) != ts}
        return context.result(context.candidate_with_keys(changed))


@register_condition("newly_requested")
@dataclass(frozen=True, repr=False)
class NewlyRequestedCondition(OperandBase):
    """Requested by the immediately preceding tick."""

    def compute(self, context: EvaluationContext) -> ConditionResult:
        record = context.previous_tick_record()
        if record is None:
            return context.result(context.empty_subset())
        return context.result(context.candidate_with_keys(record.requested_keys))


@register_condition("code_version_changed")
@dataclass(frozen=True, repr=False)
class CodeVersionChangedCondition(OperandBase):
    def compute(self, context: EvaluationContext) -> ConditionResult:
        previous = context.previous_facts()
        if previous is None or previous.code_version == context.facts.code_version:
            return context.result(context.empty_subset())
        return context.result(context.candidate_subset)


@register_condition("cron_tick_passed")
@dataclass(frozen=True, repr=False)
class CronTickPassedCondition(OperandBase):
    """A tick of `cron_schedule` fell in (previous evaluation, this evaluation]."""

    cron_schedule: str
    cron_timezone: str = "UTC"

    def __post_init__(self):
        if not croniter.is_valid(self.cron_schedule):
            raise ConfigurationError(f"Invalid cron schedule: {self.cron_schedule!r}")

    def params(self) -> dict[str, Any]:
        return {"cron_schedule": self.cron_schedule, "cron_timezone": self.cron_timezone}

    def compute(self, context: EvaluationContext) -> ConditionResult:
        previous = context.previous_evaluation_time
        if previous is None:
            return context.result(context.empty_subset())

        start = to_timestamp(previous, self.cron_timezone).to_pydatetime()
        now = to_timestamp(context.evaluation_time, self.cron_timezone).to_pydatetime()
        next_tick = croniter(self.cron_schedule, start).get_next(datetime)
        if next_tick <= now:
            return context.result(context.candidate_subset)
        return context.result(context.empty_subset())


@register_condition("in_latest_time_window")
@dataclass(frozen=True, repr=False)
class InLatestTimeWindowCondition(OperandBase):
    """
    Time-window entities: the latest partition, or every partition whose
    window ends within `lookback_delta` of the evaluation time.
    Other entities: the whole candidate.
    """

    lookback_delta: timedelta | None = None

    @classmethod
    def from_parts(cls, children, params):
        params = dict(params)
        seconds = params.pop("lookback_seconds", None)
        if seconds is not None:
            params["lookback_delta"] = timedelta(seconds=float(seconds))
        return super().from_parts(children, params)

    def params(self) -> dict[str, Any]:
        if self.lookback_delta is None:
            return {}
        return {"lookback_seconds": self.lookback_delta.total_seconds()}

    def compute(self, context: EvaluationContext) -> ConditionResult:
        space = context.space
        partitions_def = space.partitions_def
        if not isinstance(partitions_def, TimeWindowPartitionsDefinition) or space.window_starts is None:
            return context.result(context.candidate_subset)
        if not len(space):
            return context.result(context.empty_subset())

        if self.lookback_delta is None:
            keep = frozenset(space.keys[-1:])
        else:
            threshold = to_timestamp(context.evaluation_time, partitions_def.timezone) - self.lookback_delta
            i = int(space.window_starts.searchsorted(threshold - partitions_def.freq, side="right"))
            keep = frozenset(space.keys[i:])
        return context.result(context.candidate_with_keys(keep))


@register_condition("will_be_requested")
@dataclass(frozen=True, repr=False)
class WillBeRequestedCondition(OperandBase):
    """Part of the target entity's request subset in this same tick."""

    reads_current_requests = True

    def compute(self, context: EvaluationContext) -> ConditionResult:
        requested = context.request_subset_for(context.entity_key)
        return context.result(context.candidate_subset.intersect(requested))


@register_condition("initial_evaluation")
@dataclass(frozen=True, repr=False)
class InitialEvaluationCondition(OperandBase):
    """True on the first evaluation of the entity, or after its condition changed."""

    def compute(self, context: EvaluationContext) -> ConditionResult:
        if context.is_initial_evaluation:
            return context.result(context.candidate_subset)
        return context.result(context.empty_subset())
