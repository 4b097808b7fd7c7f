from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Mapping

import pandas as pd

from .definitions import (
    PartitionKey,
    PartitionsDefinition,
    PartitionSpace,
    TimeWindowPartitionsDefinition,
    same_definition,
)
from .subset import PartitionSubset


class PartitionMapping(ABC):
    """
    Relates partitions of a parent entity to partitions of a child entity.

    Both directions are required:
      - `map_to_downstream` projects a parent-side result onto the child
        (used to lift dependency results onto the evaluated entity).
      - `map_to_upstream` projects a child-side candidate onto the parent
        (used to scope the parent-side evaluation).
    """

    @abstractmethod
    def map_to_downstream(
        self, upstream: PartitionSubset, downstream_key: str, downstream_space: PartitionSpace
    ) -> PartitionSubset:
        ...

    @abstractmethod
    def map_to_upstream(
        self, downstream: PartitionSubset, upstream_key: str, upstream_space: PartitionSpace
    ) -> PartitionSubset:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class IdentityPartitionMapping(PartitionMapping):
    """Same key on both sides; keys missing on the other side are dropped."""

    def map_to_downstream(self, upstream, downstream_key, downstream_space):
        return PartitionSubset.from_keys(downstream_key, downstream_space, upstream.keys)

    def map_to_upstream(self, downstream, upstream_key, upstream_space):
        return PartitionSubset.from_keys(upstream_key, upstream_space, downstream.keys)


class AllPartitionMapping(PartitionMapping):
    """Every child partition depends on every parent partition."""

    def map_to_downstream(self, upstream, downstream_key, downstream_space):
        return PartitionSubset.from_bool(downstream_key, downstream_space, not upstream.is_empty)

    def map_to_upstream(self, downstream, upstream_key, upstream_space):
        return PartitionSubset.from_bool(upstream_key, upstream_space, not downstream.is_empty)


class LastPartitionMapping(PartitionMapping):
    """Every child partition depends on the parent's most recent partition."""

    def map_to_downstream(self, upstream, downstream_key, downstream_space):
        last = upstream.space.keys[-1] if len(upstream.space) else None
        hit = bool(len(upstream.space)) and upstream.contains(last)
        return PartitionSubset.from_bool(downstream_key, downstream_space, hit)

    def map_to_upstream(self, downstream, upstream_key, upstream_space):
        if downstream.is_empty or not len(upstream_space):
            return PartitionSubset.empty(upstream_key, upstream_space)
        return PartitionSubset.from_keys(upstream_key, upstream_space, [upstream_space.keys[-1]])


class StaticPartitionMapping(PartitionMapping):
    """Explicit parent-key → child-key(s) table."""

    def __init__(self, downstream_by_upstream: Mapping[str, str | Iterable[str]]):
        table: dict[PartitionKey, frozenset[PartitionKey]] = {}
        for up, down in downstream_by_upstream.items():
            table[up] = frozenset([down]) if isinstance(down, str) else frozenset(down)
        self._down = table
        inverse: dict[PartitionKey, set[PartitionKey]] = {}
        for up, downs in table.items():
            for d in downs:
                inverse.setdefault(d, set()).add(up)
        self._up = {k: frozenset(v) for k, v in inverse.items()}

    def map_to_downstream(self, upstream, downstream_key, downstream_space):
        keys: set[PartitionKey] = set()
        for k in upstream:
            keys.update(self._down.get(k, ()))
        return PartitionSubset.from_keys(downstream_key, downstream_space, keys)

    def map_to_upstream(self, downstream, upstream_key, upstream_space):
        keys: set[PartitionKey] = set()
        for k in downstream:
            keys.update(self._up.get(k, ()))
        return PartitionSubset.from_keys(upstream_key, upstream_space, keys)

    def __repr__(self) -> str:
        return f"StaticPartitionMapping(n={len(self._down)})"


def _overlapping_keys(space: PartitionSpace, lo: pd.Timestamp, hi: pd.Timestamp) -> tuple[PartitionKey, ...]:
    """Keys of windows in `space` intersecting [lo, hi)."""
    starts = space.window_starts
    if starts is None or not len(starts):
        return ()
    freq = space.partitions_def.freq  # type: ignore[attr-defined]
    i = int(starts.searchsorted(lo - freq, side="right"))
    j = int(starts.searchsorted(hi, side="left"))
    return space.keys[i:j]


class TimeWindowPartitionMapping(PartitionMapping):
    """
    Maps time windows by overlap.

    A child window [s, e) depends on the parent windows intersecting
    [s + start_offset * f, e + end_offset * f), with f the parent frequency.
    """

    def __init__(self, start_offset: int = 0, end_offset: int = 0):
        self.start_offset = int(start_offset)
        self.end_offset = int(end_offset)

    @staticmethod
    def _defs(upstream_space: PartitionSpace, downstream_space: PartitionSpace):
        up_def, down_def = upstream_space.partitions_def, downstream_space.partitions_def
        if not isinstance(up_def, TimeWindowPartitionsDefinition) or not isinstance(
            down_def, TimeWindowPartitionsDefinition
        ):
            raise TypeError("TimeWindowPartitionMapping requires time-window partitions on both sides")
        return up_def, down_def

    def map_to_downstream(self, upstream, downstream_key, downstream_space):
        up_def, down_def = self._defs(upstream.space, downstream_space)
        keys: set[PartitionKey] = set()
        for k in upstream:
            us, ue = up_def.time_window(k)
            lo = us - self.end_offset * up_def.freq
            hi = ue - self.start_offset * up_def.freq
            keys.update(_overlapping_keys(downstream_space, lo, hi))
        return PartitionSubset.from_keys(downstream_key, downstream_space, keys)

    def map_to_upstream(self, downstream, upstream_key, upstream_space):
        up_def, down_def = self._defs(upstream_space, downstream.space)
        keys: set[PartitionKey] = set()
        for k in downstream:
            ds, de = down_def.time_window(k)
            lo = ds + self.start_offset * up_def.freq
            hi = de + self.end_offset * up_def.freq
            keys.update(_overlapping_keys(upstream_space, lo, hi))
        return PartitionSubset.from_keys(upstream_key, upstream_space, keys)

    def __repr__(self) -> str:
        return f"TimeWindowPartitionMapping(start_offset={self.start_offset}, end_offset={self.end_offset})"


def default_partition_mapping(
    upstream_def: PartitionsDefinition, downstream_def: PartitionsDefinition
) -> PartitionMapping:
    if same_definition(upstream_def, downstream_def):
        return IdentityPartitionMapping()
    if isinstance(upstream_def, TimeWindowPartitionsDefinition) and isinstance(
        downstream_def, TimeWindowPartitionsDefinition
    ):
        return TimeWindowPartitionMapping()
    return AllPartitionMapping()


PARTITION_MAPPING_REGISTRY: dict[str, type[PartitionMapping]] = {
    "identity": IdentityPartitionMapping,
    "all": AllPartitionMapping,
    "last": LastPartitionMapping,
    "static": StaticPartitionMapping,
    "time_window": TimeWindowPartitionMapping,
}


def build_partition_mapping(name: str, **params) -> PartitionMapping:
    if name not in PARTITION_MAPPING_REGISTRY:
        raise ValueError(f"Partition mapping '{name}' not found in registry.")
    return PARTITION_MAPPING_REGISTRY[name](**params)
