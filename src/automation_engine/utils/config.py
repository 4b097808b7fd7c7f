from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class EvaluatorConfig(BaseModel):
    max_entities: int = Field(500, ge=1, description="Admission cap on conditioned entities per pass.")
    allow_custom_conditions: bool = Field(True, description="Whether custom user predicates may run.")
    custom_condition_policy: Literal["skip", "fail"] = Field(
        "skip", description="What to do with custom conditions when they are not allowed."
    )
    max_workers: int = Field(1, ge=1)
    slow_condition_warn_seconds: Optional[float] = Field(5.0, gt=0)


class SensorConfig(BaseModel):
    name: str = "default_automation_sensor"
    targets: Optional[List[str]] = Field(None, description="Entity keys evaluated by this sensor; None = all.")
    evaluator: EvaluatorConfig = Field(default_factory=EvaluatorConfig)
    history_max_ticks: Optional[int] = Field(None, ge=1)


class ConditionConfig(BaseModel):
    type: str = Field(..., description="Registered condition name or builder name.")
    params: Dict[str, Any] = Field(default_factory=dict)
    children: List["ConditionConfig"] = Field(default_factory=list)
    label: Optional[str] = None


class PartitionsConfig(BaseModel):
    type: Literal["unpartitioned", "static", "daily", "hourly", "time_window"] = "unpartitioned"
    keys: List[str] = Field(default_factory=list)
    start: Optional[str] = None
    freq: Optional[str] = None
    fmt: Optional[str] = None
    timezone: str = "UTC"
    end_offset: int = 0


class DepConfig(BaseModel):
    key: str
    mapping: Optional[str] = Field(None, description="Partition mapping name; None = default for the edge.")
    params: Dict[str, Any] = Field(default_factory=dict)


class EntityConfig(BaseModel):
    key: str
    kind: Literal["asset", "check"] = "asset"
    partitions: PartitionsConfig = Field(default_factory=PartitionsConfig)
    deps: List[Union[str, DepConfig]] = Field(default_factory=list)
    condition: Optional[ConditionConfig] = None


class EntityFactsConfig(BaseModel):
    """Facts of one entity; unpartitioned entities may use any key (or null)."""

    materialized: List[Optional[str]] = Field(default_factory=list)
    in_progress: List[Optional[str]] = Field(default_factory=list)
    failed: List[Optional[str]] = Field(default_factory=list)
    last_updated: Union[float, Dict[str, float], None] = None
    code_version: Optional[str] = None


class TickFactsConfig(BaseModel):
    evaluation_time: datetime
    entities: Dict[str, EntityFactsConfig] = Field(default_factory=dict)


class ScenarioConfig(BaseModel):
    sensor: SensorConfig = Field(default_factory=SensorConfig)
    entities: List[EntityConfig]
    ticks: List[TickFactsConfig] = Field(default_factory=list)


ConditionConfig.model_rebuild()


def load_scenario(path: str | Path) -> ScenarioConfig:
    with Path(path).open("r", encoding="utf-8") as f:
        raw = json.load(f)
    return ScenarioConfig.model_validate(raw)
