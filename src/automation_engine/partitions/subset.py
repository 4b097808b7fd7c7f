from __future__ import annotations

from typing import Iterable, Iterator

from .definitions import UNPARTITIONED_KEY, PartitionKey, PartitionSpace


class PartitionSubset:
    """
    Immutable set of partitions of one entity at one tick.

    Semantics:
      - Bound to the `PartitionSpace` it was cut from; never contains a key
        outside that space.
      - union / intersect / subtract cost O(size of the operands), never
        O(size of the space). Only `complement()` walks the full space.
      - Equality is set equality within the same entity.
      - For unpartitioned entities the subset degenerates to a boolean
        (`bool_value`).
    """

    __slots__ = ("entity_key", "space", "_keys")

    def __init__(self, entity_key: str, space: PartitionSpace, keys: frozenset[PartitionKey]):
        self.entity_key = entity_key
        self.space = space
        self._keys = keys

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def empty(cls, entity_key: str, space: PartitionSpace) -> PartitionSubset:
        return cls(entity_key, space, frozenset())

    @classmethod
    def all(cls, entity_key: str, space: PartitionSpace) -> PartitionSubset:
        return cls(entity_key, space, space.key_set)

    @classmethod
    def from_keys(
        cls,
        entity_key: str,
        space: PartitionSpace,
        keys: Iterable[PartitionKey],
        *,
        strict: bool = False,
    ) -> PartitionSubset:
        """Build a subset from external keys; unknown keys are dropped (or rejected when strict)."""
        wanted = frozenset(keys)
        known = wanted & space.key_set
        if strict and len(known) != len(wanted):
            unknown = sorted(repr(k) for k in wanted - known)
            raise ValueError(f"Partitions {unknown} do not exist for entity '{entity_key}'")
        return cls(entity_key, space, known)

    @classmethod
    def from_bool(cls, entity_key: str, space: PartitionSpace, value: bool) -> PartitionSubset:
        return cls.all(entity_key, space) if value else cls.empty(entity_key, space)

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------
    def _check(self, other: PartitionSubset) -> None:
        if not isinstance(other, PartitionSubset):
            raise TypeError(f"Expected PartitionSubset, got {type(other).__name__}")
        if other.entity_key != self.entity_key or other.space is not self.space:
            raise ValueError(
                f"Cannot combine subsets of '{self.entity_key}' and '{other.entity_key}' "
                "cut from different partition spaces"
            )

    def _with(self, keys: frozenset[PartitionKey]) -> PartitionSubset:
        return PartitionSubset(self.entity_key, self.space, keys)

    def union(self, other: PartitionSubset) -> PartitionSubset:
        self._check(other)
        if not other._keys:
            return self
        if not self._keys:
            return other
        return self._with(self._keys | other._keys)

    def intersect(self, other: PartitionSubset) -> PartitionSubset:
        self._check(other)
        small, large = (self._keys, other._keys) if len(self._keys) <= len(other._keys) else (other._keys, self._keys)
        return self._with(frozenset(k for k in small if k in large))

    def subtract(self, other: PartitionSubset) -> PartitionSubset:
        self._check(other)
        if not other._keys or not self._keys:
            return self
        return self._with(self._keys - other._keys)

    def complement(self) -> PartitionSubset:
        return self._with(self.space.key_set - self._keys)

    __or__ = union
    __and__ = intersect
    __sub__ = subtract

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def is_empty(self) -> bool:
        return not self._keys

    @property
    def is_partitioned(self) -> bool:
        return self.space.is_partitioned

    @property
    def bool_value(self) -> bool:
        if self.is_partitioned:
            raise TypeError(f"bool_value is only defined for unpartitioned entities ('{self.entity_key}')")
        return UNPARTITIONED_KEY in self._keys

    @property
    def keys(self) -> frozenset[PartitionKey]:
        return self._keys

    def contains(self, key: PartitionKey) -> bool:
        return key in self._keys

    __contains__ = contains

    def is_subset_of(self, other: PartitionSubset) -> bool:
        self._check(other)
        return self._keys <= other._keys

    def sorted_keys(self) -> list[PartitionKey]:
        """Keys in partition-definition order."""
        return sorted(self._keys, key=self.space.position)

    def __iter__(self) -> Iterator[PartitionKey]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PartitionSubset):
            return NotImplemented
        return self.entity_key == other.entity_key and self._keys == other._keys

    def __hash__(self) -> int:
        return hash((self.entity_key, self._keys))

    def to_dict(self) -> dict:
        if not self.is_partitioned:
            return {"entity": self.entity_key, "requested": self.bool_value}
        return {"entity": self.entity_key, "partitions": self.sorted_keys()}

    def __repr__(self) -> str:
        if not self.is_partitioned:
            return f"PartitionSubset({self.entity_key!r}, {self.bool_value})"
        preview = self.sorted_keys()[:5]
        more = "" if len(self._keys) <= 5 else f", +{len(self._keys) - 5}"
        return f"PartitionSubset({self.entity_key!r}, {preview}{more})"
