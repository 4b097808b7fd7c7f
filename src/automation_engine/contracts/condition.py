from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

if TYPE_CHECKING:
    from automation_engine.evaluation.context import EvaluationContext
    from automation_engine.evaluation.result import ConditionResult
    from automation_engine.graph.entity_graph import EntityGraph


class ConditionProto(Protocol):
    """
    Unified condition protocol:
        • evaluate(context) -> ConditionResult
        • context carries the target entity, the candidate subset and tick state
        • a condition never mutates the context's tick snapshot
    """

    def evaluate(self, context: "EvaluationContext") -> "ConditionResult":
        ...


# ----------------------------------------------------------------------
# Condition Base Class
# ----------------------------------------------------------------------
class ConditionBase(ConditionProto, ABC):
    """
    Base class for every node of a condition tree.

    Key properties:
        • immutable; trees are built by combinator calls and shared freely
        • structural identity comes from `ConditionTree`, not from `id(self)`
        • subclasses implement `compute(context)`; `evaluate` wraps it with the
          empty-candidate skip and, for operand leaves, error containment
    """

    name: ClassVar[str] = "condition"

    # Static-analysis flags (read by evaluation.analysis, never at evaluate time)
    is_operand: ClassVar[bool] = False
    is_custom: ClassVar[bool] = False
    reads_current_requests: ClassVar[bool] = False
    walks_dependencies: ClassVar[bool] = False
    walks_downstream: ClassVar[bool] = False

    @property
    def children(self) -> tuple["ConditionBase", ...]:
        return ()

    @property
    def label(self) -> str | None:
        return None

    def params(self) -> dict[str, Any]:
        return {}

    def description(self) -> str:
        params = self.params()
        if not params:
            return self.name
        inner = ", ".join(f"{k}={params[k]!r}" for k in sorted(params))
        return f"{self.name}({inner})"

    @classmethod
    def from_parts(cls, children: tuple["ConditionBase", ...], params: dict[str, Any]) -> "ConditionBase":
        """Config-driven constructor used by the registry; leaves take params only."""
        if children:
            raise ValueError(f"'{cls.name}' takes no child conditions, got {len(children)}")
        return cls(**params)

    def participating_parents(self, graph: "EntityGraph", entity_key: str) -> tuple[str, ...]:
        """Parents whose results feed this node (dependency operators only)."""
        return ()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, context: "EvaluationContext") -> "ConditionResult":
        if context.candidate_subset.is_empty:
            return context.skipped_result()
        if not self.is_operand:
            return self.compute(context)
        try:
            return self.compute(context)
        except Exception as exc:
            return context.error_result(exc)

    @abstractmethod
    def compute(self, context: "EvaluationContext") -> "ConditionResult":
        raise NotImplementedError("Condition must implement compute()")

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------
    def __and__(self, other: "ConditionBase") -> "ConditionBase":
        from automation_engine.conditions.operators import AndCondition

        left = self.operands if isinstance(self, AndCondition) else (self,)
        right = other.operands if isinstance(other, AndCondition) else (other,)
        return AndCondition(left + right)

    def __or__(self, other: "ConditionBase") -> "ConditionBase":
        from automation_engine.conditions.operators import OrCondition

        left = self.operands if isinstance(self, OrCondition) else (self,)
        right = other.operands if isinstance(other, OrCondition) else (other,)
        return OrCondition(left + right)

    def __invert__(self) -> "ConditionBase":
        from automation_engine.conditions.operators import NotCondition

        return NotCondition(self)

    def newly_true(self) -> "ConditionBase":
        from automation_engine.conditions.operators import NewlyTrueCondition

        return NewlyTrueCondition(self)

    def since(self, reset: "ConditionBase") -> "ConditionBase":
        from automation_engine.conditions.operators import SinceCondition

        return SinceCondition(self, reset)

    def with_label(self, text: str) -> "ConditionBase":
        from automation_engine.conditions.operators import LabelCondition

        return LabelCondition(self, text)

    def __repr__(self) -> str:
        return self.description()


class ConditionTree:
    """
    Arena of one condition expression with integer node ids.

    Ids are assigned in pre-order, so two structurally identical subtrees
    at different positions are distinct evaluation instances. The
    fingerprint changes whenever the tree's shape or parameters change;
    per-node state from a previous tick is only trusted when the
    fingerprints match.
    """

    def __init__(self, root: ConditionBase):
        self.root = root
        self.nodes: list[ConditionBase] = []
        self.child_ids: list[tuple[int, ...]] = []

        pending: list[tuple[ConditionBase, int | None]] = [(root, None)]
        parent_slots: dict[int, list[int]] = {}
        while pending:
            node, parent_id = pending.pop()
            node_id = len(self.nodes)
            self.nodes.append(node)
            self.child_ids.append(())
            parent_slots[node_id] = []
            if parent_id is not None:
                parent_slots[parent_id].append(node_id)
            kids = node.children
            for i in range(len(kids) - 1, -1, -1):
                pending.append((kids[i], node_id))
        for node_id, kids in parent_slots.items():
            self.child_ids[node_id] = tuple(kids)

        digest = hashlib.sha1()
        for node_id, node in enumerate(self.nodes):
            digest.update(f"{node_id}:{node.description()}:{node.label}:{self.child_ids[node_id]};".encode())
        self.fingerprint = digest.hexdigest()

    def __len__(self) -> int:
        return len(self.nodes)

    def child_id(self, node_id: int, index: int) -> int:
        return self.child_ids[node_id][index]

    def any_node(self, flag: str) -> bool:
        return any(getattr(node, flag, False) for node in self.nodes)
