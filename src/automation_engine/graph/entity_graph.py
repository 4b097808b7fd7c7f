from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping

import networkx as nx

from automation_engine.exceptions.core import ConfigurationError
from automation_engine.partitions.definitions import UNPARTITIONED, PartitionsDefinition
from automation_engine.partitions.mappings import PartitionMapping, default_partition_mapping

if TYPE_CHECKING:
    from automation_engine.contracts.condition import ConditionBase


class EntityKind(Enum):
    ASSET = "asset"
    CHECK = "check"


@dataclass(frozen=True)
class EntityNode:
    """
    One automatable entity as declared by the graph provider.

    `deps` maps parent key -> explicit partition mapping (None = default).
    """

    key: str
    partitions_def: PartitionsDefinition = UNPARTITIONED
    deps: Mapping[str, PartitionMapping | None] = field(default_factory=dict)
    condition: "ConditionBase | None" = None
    kind: EntityKind = EntityKind.ASSET

    def __post_init__(self):
        if not self.key:
            raise ConfigurationError("EntityNode.key must be a non-empty string")
        if self.key in self.deps:
            raise ConfigurationError(f"Entity '{self.key}' cannot depend on itself")


class EntityGraph:
    """Static dependency graph: parents, children, and edge partition mappings."""

    def __init__(self, nodes: Iterable[EntityNode]):
        self._nodes: dict[str, EntityNode] = {}
        for node in nodes:
            if node.key in self._nodes:
                raise ConfigurationError(f"Duplicate entity key '{node.key}'")
            self._nodes[node.key] = node

        g = nx.DiGraph()
        g.add_nodes_from(self._nodes)
        for node in self._nodes.values():
            for parent in node.deps:
                if parent not in self._nodes:
                    raise ConfigurationError(f"Entity '{node.key}' depends on unknown entity '{parent}'")
                g.add_edge(parent, node.key)

        if not nx.is_directed_acyclic_graph(g):
            cycle = nx.find_cycle(g)
            raise ConfigurationError(f"Dependency cycle between entities: {cycle}")

        self._g = g
        self._mappings: dict[tuple[str, str], PartitionMapping] = {}
        for node in self._nodes.values():
            for parent, mapping in node.deps.items():
                if mapping is None:
                    mapping = default_partition_mapping(self._nodes[parent].partitions_def, node.partitions_def)
                self._mappings[(parent, node.key)] = mapping
        self._order = tuple(nx.lexicographical_topological_sort(g))

    # ------------------------------------------------------------------
    @property
    def keys(self) -> tuple[str, ...]:
        return self._order

    @property
    def digraph(self) -> nx.DiGraph:
        return self._g

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, key: str) -> EntityNode:
        try:
            return self._nodes[key]
        except KeyError:
            raise KeyError(f"Unknown entity '{key}'") from None

    def partitions_def(self, key: str) -> PartitionsDefinition:
        return self.node(key).partitions_def

    def parents(self, key: str) -> tuple[str, ...]:
        return tuple(sorted(self._g.predecessors(key)))

    def descendants(self, key: str) -> tuple[str, ...]:
        below = nx.descendants(self._g, key)
        return tuple(k for k in self._order if k in below)

    def mapping(self, parent: str, child: str) -> PartitionMapping:
        try:
            return self._mappings[(parent, child)]
        except KeyError:
            raise KeyError(f"No dependency edge {parent} -> {child}") from None
