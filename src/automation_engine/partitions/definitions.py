from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Sequence

import pandas as pd
from pandas.tseries.frequencies import to_offset

PartitionKey = str | None

# Unpartitioned entities have exactly one implicit partition.
UNPARTITIONED_KEY: PartitionKey = None


def to_timestamp(value: Any, tz: str = "UTC") -> pd.Timestamp:
    """Coerce datetime / str / epoch seconds to a tz-aware pandas Timestamp."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = pd.Timestamp(float(value), unit="s", tz="UTC")
    else:
        ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize(tz)
    return ts.tz_convert(tz)


class PartitionSpace:
    """
    The partitions of one entity as they exist at one evaluation time.

    Semantics:
      - Immutable; cut once per (entity, tick) and shared by every subset
        produced for that entity during the tick.
      - `keys` keeps definition order; `key_set` serves O(1) membership.
    """

    __slots__ = ("partitions_def", "keys", "key_set", "window_starts", "_positions")

    def __init__(
        self,
        partitions_def: "PartitionsDefinition",
        keys: Sequence[PartitionKey],
        window_starts: pd.DatetimeIndex | None = None,
    ):
        self.partitions_def = partitions_def
        self.keys: tuple[PartitionKey, ...] = tuple(keys)
        self.key_set: frozenset[PartitionKey] = frozenset(self.keys)
        self.window_starts = window_starts
        self._positions: dict[PartitionKey, int] | None = None

    @property
    def is_partitioned(self) -> bool:
        return self.partitions_def.is_partitioned

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, key: object) -> bool:
        return key in self.key_set

    def position(self, key: PartitionKey) -> int:
        if self._positions is None:
            self._positions = {k: i for i, k in enumerate(self.keys)}
        return self._positions[key]

    def __repr__(self) -> str:
        return f"PartitionSpace({self.partitions_def!r}, n={len(self.keys)})"


class PartitionsDefinition(ABC):
    """Declares how an entity's materializable domain is subdivided."""

    is_partitioned: bool = True

    @abstractmethod
    def get_partition_keys(self, current_time: datetime | None = None) -> Sequence[PartitionKey]:
        ...

    def space(self, current_time: datetime | None = None) -> PartitionSpace:
        return PartitionSpace(self, self.get_partition_keys(current_time))

    def describe(self) -> str:
        return type(self).__name__


class UnpartitionedDefinition(PartitionsDefinition):
    is_partitioned = False

    def get_partition_keys(self, current_time: datetime | None = None) -> Sequence[PartitionKey]:
        return (UNPARTITIONED_KEY,)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, UnpartitionedDefinition)

    def __hash__(self) -> int:
        return hash(UnpartitionedDefinition)

    def __repr__(self) -> str:
        return "UnpartitionedDefinition()"


UNPARTITIONED = UnpartitionedDefinition()


class StaticPartitionsDefinition(PartitionsDefinition):
    def __init__(self, keys: Iterable[str]):
        keys = tuple(str(k) for k in keys)
        if len(set(keys)) != len(keys):
            raise ValueError(f"Duplicate partition keys in {keys!r}")
        if not keys:
            raise ValueError("StaticPartitionsDefinition requires at least one key")
        self._keys = keys

    def get_partition_keys(self, current_time: datetime | None = None) -> Sequence[PartitionKey]:
        return self._keys

    def __eq__(self, other: object) -> bool:
        return isinstance(other, StaticPartitionsDefinition) and other._keys == self._keys

    def __hash__(self) -> int:
        return hash(self._keys)

    def __repr__(self) -> str:
        return f"StaticPartitionsDefinition(n={len(self._keys)})"


class TimeWindowPartitionsDefinition(PartitionsDefinition):
    """
    Consecutive fixed-frequency windows starting at `start`.

    A window [s, s + freq) exists as of time T once s + freq <= T;
    `end_offset` adds (or removes, if negative) trailing windows.
    """

    def __init__(
        self,
        start: Any,
        freq: str,
        fmt: str,
        timezone: str = "UTC",
        end_offset: int = 0,
    ):
        self.timezone = timezone
        self.start = to_timestamp(start, timezone)
        self.freq = to_offset(freq)
        self.fmt = fmt
        self.end_offset = int(end_offset)

    def window_starts(self, current_time: datetime | None) -> pd.DatetimeIndex:
        if current_time is None:
            raise ValueError(f"{type(self).__name__} requires current_time to list partitions")
        now = to_timestamp(current_time, self.timezone)
        starts = pd.date_range(start=self.start, end=now, freq=self.freq)
        complete = starts[starts + self.freq <= now]
        n = max(len(complete) + self.end_offset, 0)
        return pd.date_range(start=self.start, periods=n, freq=self.freq)

    def get_partition_keys(self, current_time: datetime | None = None) -> Sequence[PartitionKey]:
        return tuple(self.window_starts(current_time).strftime(self.fmt))

    def space(self, current_time: datetime | None = None) -> PartitionSpace:
        starts = self.window_starts(current_time)
        return PartitionSpace(self, tuple(starts.strftime(self.fmt)), window_starts=starts)

    def time_window(self, key: str) -> tuple[pd.Timestamp, pd.Timestamp]:
        start = pd.Timestamp(datetime.strptime(key, self.fmt)).tz_localize(self.timezone)
        return start, start + self.freq

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, TimeWindowPartitionsDefinition)
            and other.start == self.start
            and other.freq == self.freq
            and other.fmt == self.fmt
            and other.end_offset == self.end_offset
        )

    def __hash__(self) -> int:
        return hash((self.start, self.freq, self.fmt, self.end_offset))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(start={self.start.isoformat()}, freq={self.freq.freqstr})"


class DailyPartitionsDefinition(TimeWindowPartitionsDefinition):
    def __init__(self, start_date: Any, timezone: str = "UTC", end_offset: int = 0):
        super().__init__(start_date, freq="D", fmt="%Y-%m-%d", timezone=timezone, end_offset=end_offset)


class HourlyPartitionsDefinition(TimeWindowPartitionsDefinition):
    def __init__(self, start_date: Any, timezone: str = "UTC", end_offset: int = 0):
        super().__init__(start_date, freq="h", fmt="%Y-%m-%d-%H:%M", timezone=timezone, end_offset=end_offset)


def same_definition(a: PartitionsDefinition, b: PartitionsDefinition) -> bool:
    return type(a) is type(b) and a == b
