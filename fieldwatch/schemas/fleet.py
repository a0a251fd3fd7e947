from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .feed import Severity


class UnitStatus(str, Enum):
    ON_STATION = "on_station"
    CHARGING = "charging"
    MAINTENANCE = "maintenance"
    DEPLOYED = "deployed"      # engaged, activation signal sent, not yet on mission
    ON_MISSION = "on_mission"


class FleetUnit(BaseModel):
    id: str
    name: str
    status: UnitStatus
    battery: int = Field(ge=0, le=100)
    signal_strength: int = Field(ge=0, le=100)
    location: str
    role: str


class AudioCue(BaseModel):
    severity: Severity
    alert_count: int


class DeploymentPrompt(BaseModel):
    open: bool
    title: str = ""
    message: str = ""
    alert_id: Optional[str] = None
    alert_kind: Optional[str] = None
    severity: Optional[Severity] = None
    deploying: bool = False


class DeploymentOutcome(BaseModel):
    success: bool
    unit_id: str
    title: str
    message: str
