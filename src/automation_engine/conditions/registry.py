# conditions/registry.py
from __future__ import annotations

from typing import Any, Callable, Sequence

from automation_engine.contracts.condition import ConditionBase

# Global registry
CONDITION_REGISTRY: dict[str, type[ConditionBase]] = {}

# Externally registered predicates for CustomCondition, by name
CUSTOM_PREDICATE_REGISTRY: dict[str, Callable[..., Any]] = {}

# ----------------------------------------------------------------------
# IMPORTANT:
# Concrete condition modules self-register with @register_condition.
# `conditions.loader` imports them before building from config.
# ----------------------------------------------------------------------


def register_condition(name: str):
    """
    Decorator: @register_condition("missing")
    Registers the class under `name` and stamps it as the node name.
    """
    def decorator(cls: type[ConditionBase]) -> type[ConditionBase]:
        if name in CONDITION_REGISTRY and CONDITION_REGISTRY[name] is not cls:
            raise KeyError(f"Condition '{name}' already registered")
        if not issubclass(cls, ConditionBase):
            raise TypeError("Only ConditionBase subclasses can be registered")
        cls.name = name
        CONDITION_REGISTRY[name] = cls
        return cls

    return decorator


def register_custom_predicate(name: str, fn: Callable[..., Any] | None = None):
    """
    Register a user predicate usable as ``{"type": "custom", "params": {"predicate": name}}``.

    Usable as a decorator or called directly.
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        CUSTOM_PREDICATE_REGISTRY[name] = func
        return func

    if fn is not None:
        return decorator(fn)
    return decorator


def get_custom_predicate(name: str) -> Callable[..., Any]:
    try:
        return CUSTOM_PREDICATE_REGISTRY[name]
    except KeyError:
        raise KeyError(
            f"Unknown custom predicate '{name}'. "
            f"Available predicates: {sorted(CUSTOM_PREDICATE_REGISTRY)}"
        ) from None


def build_condition(name: str, children: Sequence[ConditionBase] = (), **params) -> ConditionBase:
    if name not in CONDITION_REGISTRY:
        raise ValueError(f"Condition '{name}' not found in registry.")
    return CONDITION_REGISTRY[name].from_parts(tuple(children), params)
