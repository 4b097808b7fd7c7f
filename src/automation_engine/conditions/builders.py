"""
Condition factories.

Leaf factories return fresh operand nodes; composite factories assemble the
commonly used policies (`eager`, `on_cron`, ...) from them with `&`, `|`
and `~`. Every call returns a new tree, so the same factory can be used on
many entities without sharing evaluation state.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable

from automation_engine.contracts.condition import ConditionBase
from .custom import CustomPredicate, custom_condition
from .dependencies import AllDepsMatchCondition, AnyDepsMatchCondition, AnyDownstreamConditionsCondition
from .operands import (
    CodeVersionChangedCondition,
    CronTickPassedCondition,
    ExecutionFailedCondition,
    InitialEvaluationCondition,
    InLatestTimeWindowCondition,
    InProgressCondition,
    MissingCondition,
    NewlyRequestedCondition,
    NewlyUpdatedCondition,
    WillBeRequestedCondition,
)


# ----------------------------------------------------------------------
# Operands
# ----------------------------------------------------------------------
def missing() -> ConditionBase:
    return MissingCondition()


def in_progress() -> ConditionBase:
    return InProgressCondition()


def execution_failed() -> ConditionBase:
    return ExecutionFailedCondition()


def newly_updated() -> ConditionBase:
    return NewlyUpdatedCondition()


def newly_requested() -> ConditionBase:
    return NewlyRequestedCondition()


def code_version_changed() -> ConditionBase:
    return CodeVersionChangedCondition()


def cron_tick_passed(cron_schedule: str, cron_timezone: str = "UTC") -> ConditionBase:
    return CronTickPassedCondition(cron_schedule, cron_timezone)


def in_latest_time_window(lookback_delta: timedelta | None = None) -> ConditionBase:
    return InLatestTimeWindowCondition(lookback_delta)


def will_be_requested() -> ConditionBase:
    return WillBeRequestedCondition()


def initial_evaluation() -> ConditionBase:
    return InitialEvaluationCondition()


def custom(predicate: CustomPredicate, name: str | None = None) -> ConditionBase:
    return custom_condition(predicate, name)


# ----------------------------------------------------------------------
# Dependency operators
# ----------------------------------------------------------------------
def any_deps_match(
    condition: ConditionBase,
    *,
    allow: Iterable[str] | None = None,
    ignore: Iterable[str] | None = None,
) -> AnyDepsMatchCondition:
    out = AnyDepsMatchCondition(condition)
    if allow is not None:
        out = out.allow(allow)
    if ignore is not None:
        out = out.ignore(ignore)
    return out


def all_deps_match(
    condition: ConditionBase,
    *,
    allow: Iterable[str] | None = None,
    ignore: Iterable[str] | None = None,
) -> AllDepsMatchCondition:
    out = AllDepsMatchCondition(condition)
    if allow is not None:
        out = out.allow(allow)
    if ignore is not None:
        out = out.ignore(ignore)
    return out


def any_downstream_conditions() -> ConditionBase:
    return AnyDownstreamConditionsCondition()


# ----------------------------------------------------------------------
# Composites
# ----------------------------------------------------------------------
def newly_missing() -> ConditionBase:
    return missing().newly_true().with_label("newly_missing")


def any_deps_updated() -> AnyDepsMatchCondition:
    return any_deps_match(newly_updated() | will_be_requested())


def any_deps_missing() -> AnyDepsMatchCondition:
    return any_deps_match(missing() & ~will_be_requested())


def any_deps_in_progress() -> AnyDepsMatchCondition:
    return any_deps_match(in_progress())


def since_last_handled(condition: ConditionBase) -> ConditionBase:
    """`condition` became true after the partition was last requested or updated."""
    handled = newly_requested() | newly_updated() | initial_evaluation()
    return condition.since(handled.with_label("handled"))


def eager() -> ConditionBase:
    """
    Request a partition when it is missing, or when a parent updated and
    no parent is missing or still running.
    """
    deps_ready = (
        any_deps_updated().with_label("any_deps_updated")
        & (~any_deps_missing()).with_label("no_deps_missing")
        & (~any_deps_in_progress()).with_label("no_deps_in_progress")
    )
    return (missing() | deps_ready).with_label("eager")


def on_cron(cron_schedule: str, cron_timezone: str = "UTC") -> ConditionBase:
    """
    Request the latest partition once per cron tick, after every parent
    has updated since that tick.
    """
    tick = cron_tick_passed(cron_schedule, cron_timezone)
    tick_since_request = tick.since(newly_requested()).with_label("cron_tick_since_request")
    deps_updated = all_deps_match(
        newly_updated().since(cron_tick_passed(cron_schedule, cron_timezone))
    ).with_label("all_deps_updated_since_cron")
    return (in_latest_time_window() & tick_since_request & deps_updated).with_label(f"on_cron({cron_schedule})")
