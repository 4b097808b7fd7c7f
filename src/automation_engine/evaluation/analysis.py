"""
Static analysis of condition trees against the dependency graph.

Runs once, before any tick, and never evaluates a condition. It answers:
  - which entities' current-tick requests a tree reads (`will_be_requested`,
    possibly through dependency operators and downstream conditions),
  - whether a tree can reach custom user code,
  - whether the resulting reference graph is acyclic.
"""

from __future__ import annotations

import threading

import networkx as nx

from automation_engine.contracts.condition import ConditionTree
from automation_engine.exceptions.core import ConfigurationError
from automation_engine.graph.entity_graph import EntityGraph


class ConditionIndex:
    """Condition trees of every entity, built once and shared by all ticks."""

    def __init__(self, graph: EntityGraph):
        self.graph = graph
        self.trees: dict[str, ConditionTree] = {}
        for key in graph.keys:
            condition = graph.node(key).condition
            if condition is not None:
                self.trees[key] = ConditionTree(condition)
        self._downstream: dict[str, list[tuple[str, ConditionTree]]] = {}
        self._lock = threading.Lock()

    def tree(self, key: str) -> ConditionTree | None:
        return self.trees.get(key)

    def downstream_conditions(self, key: str) -> list[tuple[str, ConditionTree]]:
        """
        Distinct condition trees of all descendants of `key`, tagged by
        fingerprint prefix. Trees that themselves walk downstream are left out.
        """
        with self._lock:
            cached = self._downstream.get(key)
            if cached is not None:
                return cached

            by_fingerprint: dict[str, ConditionTree] = {}
            for child in self.graph.descendants(key):
                tree = self.trees.get(child)
                if tree is None or tree.any_node("walks_downstream"):
                    continue
                by_fingerprint.setdefault(tree.fingerprint, tree)
            out = [(fp[:12], tree) for fp, tree in by_fingerprint.items()]
            self._downstream[key] = out
            return out

    # ------------------------------------------------------------------
    def referenced_entities(self, key: str) -> frozenset[str]:
        """Entities whose current-tick request subset `key`'s tree reads."""
        tree = self.trees.get(key)
        if tree is None:
            return frozenset()
        refs: set[str] = set()
        self._collect(tree, 0, frozenset([key]), refs)
        return frozenset(refs)

    def _collect(self, tree: ConditionTree, node_id: int, targets: frozenset[str], refs: set[str]) -> None:
        node = tree.nodes[node_id]
        if node.reads_current_requests:
            refs.update(targets)
        if node.walks_downstream:
            for target in targets:
                for _tag, sub in self.downstream_conditions(target):
                    self._collect(sub, 0, frozenset([target]), refs)

        child_targets = targets
        if node.walks_dependencies:
            child_targets = frozenset(
                parent for target in targets for parent in node.participating_parents(self.graph, target)
            )
        if not child_targets:
            return
        for child_id in tree.child_ids[node_id]:
            self._collect(tree, child_id, child_targets, refs)

    def uses_custom_code(self, key: str) -> bool:
        tree = self.trees.get(key)
        if tree is None:
            return False
        if tree.any_node("is_custom"):
            return True
        if tree.any_node("walks_downstream"):
            return any(sub.any_node("is_custom") for _tag, sub in self.downstream_conditions(key))
        return False

    # ------------------------------------------------------------------
    def reference_graph(self) -> nx.DiGraph:
        """
        Edge P -> E when E's tree reads P's current-tick request.

        Raises ConfigurationError on a self-reference or a cycle.
        """
        g = nx.DiGraph()
        g.add_nodes_from(self.trees)
        for key in self.trees:
            for ref in sorted(self.referenced_entities(key)):
                if ref == key:
                    raise ConfigurationError(f"Condition of '{key}' reads its own current-tick request")
                g.add_edge(ref, key)
        if not nx.is_directed_acyclic_graph(g):
            cycle = nx.find_cycle(g)
            raise ConfigurationError(f"Cycle in condition references: {cycle}")
        return g
