from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Alert kinds every node carries a flag for. The alert stream itself is open-ended.
ALERT_KINDS: tuple[str, ...] = (
    "gun",
    "footsteps",
    "motion",
    "whisper",
    "suspicious_activity",
    "drone",
    "help",
    "fire",
)


class NodeStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class NodeRole(str, Enum):
    STANDARD = "standard"
    GATEWAY = "gateway"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return {"info": 0, "warning": 1, "critical": 2}[self.value]


class GeoPoint(BaseModel):
    lat: float
    lng: float


def default_alert_flags() -> dict[str, bool]:
    return {kind: False for kind in ALERT_KINDS}


class Node(BaseModel):
    id: str
    name: str
    sector: str
    status: NodeStatus = NodeStatus.ONLINE
    battery: int = Field(default=100, ge=0, le=100)          # %
    signal_strength: int = Field(default=100, ge=0, le=100)  # %
    last_activity: Optional[datetime] = None
    location: GeoPoint
    role: NodeRole = NodeRole.STANDARD
    alerts: dict[str, bool] = Field(default_factory=default_alert_flags)


class Alert(BaseModel):
    id: str
    kind: str                       # gun | footsteps | motion | ... (open set)
    node_id: str                    # may not match any known node
    timestamp: datetime
    description: str
    severity: Severity = Severity.INFO
    acknowledged: bool = False


class NetworkConnection(BaseModel):
    source: str
    target: str
    strength: int = Field(default=0, ge=0, le=100)  # %

    @property
    def pair(self) -> frozenset[str]:
        return frozenset((self.source, self.target))


class NetworkStatus(BaseModel):
    active_nodes: int = 0
    total_nodes: int = 0


class DashboardSnapshot(BaseModel):
    """Merged view of all four feeds. Replaced wholesale on every delivery."""

    nodes: list[Node] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)             # newest first
    connections: list[NetworkConnection] = Field(default_factory=list)  # one per pair
    network_status: NetworkStatus = Field(default_factory=NetworkStatus)
    updated_at: Optional[datetime] = None


class FireTriggered(BaseModel):
    node_id: str
    kind: str = "fire"
    description: str = "Fire Detected"
    severity: Severity = Severity.CRITICAL


# ── request bodies for the /dashboard router ──

class NodeCreate(BaseModel):
    id: Optional[str] = None        # next free "nodeN" when omitted
    name: str
    sector: str
    location: GeoPoint
    status: NodeStatus = NodeStatus.ONLINE
    battery: int = Field(default=100, ge=0, le=100)
    signal_strength: int = Field(default=100, ge=0, le=100)
    role: NodeRole = NodeRole.STANDARD


class AlertFlagUpdate(BaseModel):
    active: bool


class AlertCreate(BaseModel):
    id: Optional[str] = None        # generated when omitted; reuse an id to overwrite
    kind: str
    node_id: str
    timestamp: Optional[datetime] = None
    description: Optional[str] = None
    severity: Severity = Severity.INFO
    acknowledged: bool = False
