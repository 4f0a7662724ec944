from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SensorIntervalIn(BaseModel):
    interval: int = Field(..., ge=1)
    model: Optional[str] = None


class ModuleConfigIn(BaseModel):
    # Keys are hardware ids ("scd41") or composite keys ("scd41:co2")
    sensors: Dict[str, SensorIntervalIn] = Field(default_factory=dict)


class ModuleConfigResult(BaseModel):
    success: bool
    published: Dict[str, Dict[str, int]]


class SensorResetIn(BaseModel):
    sensor: str = Field(..., min_length=1)


class HardwareEnableIn(BaseModel):
    hardware: str = Field(..., min_length=1)
    enabled: bool


class CommandResult(BaseModel):
    success: bool
    message: str


class ModuleRenameIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)


class ZoneIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class ZoneAssignIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    zone_id: str = Field(..., alias="zoneId")


class PreferencesResult(BaseModel):
    success: bool
    message: str
    preferences: Dict[str, Any]


class ModuleSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    type: Optional[str] = None
    zone_id: Optional[str] = Field(default=None, alias="zoneId")


class ModuleList(BaseModel):
    modules: List[ModuleSummary] = Field(default_factory=list)
