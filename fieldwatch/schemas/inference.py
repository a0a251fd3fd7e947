from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .feed import GeoPoint, NetworkStatus


class AlertContext(BaseModel):
    """Alert fields plus the resolved node's sector/location, built per call."""

    alert_type: str
    node_id: str
    timestamp: datetime
    location: Optional[str] = None  # "lat, lng" rendered to 4 places
    sector: Optional[str] = None
    severity: Optional[str] = None


class NodeContext(BaseModel):
    id: str
    sector: str
    location: GeoPoint


class NodeInfo(BaseModel):
    sector: str = "Unknown Sector"
    status: str = "online"
    battery: int = 100


class FleetUnitContext(BaseModel):
    id: str
    status: str
    battery: int


class ReportMetrics(BaseModel):
    total_alerts: int
    critical_alerts: int
    nodes_online: int
    avg_response_time_ms: float = 0.0


# Model output schemas. Keys mirror the JSON the prompts ask for and every
# key is required: a partially matching object is rejected, not patched.

class ThreatAssessment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    threat_level: Literal["low", "medium", "high", "critical"] = Field(alias="threatLevel")
    summary: str
    recommendations: list[str]
    correlated_alerts: list[str] = Field(alias="correlatedAlerts")
    pattern_analysis: str = Field(alias="patternAnalysis")
    estimated_risk: str = Field(alias="estimatedRisk")
    confidence: int = Field(ge=0, le=100)


class AnomalyVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_anomaly: bool = Field(alias="isAnomaly")
    explanation: str
    confidence: int = Field(ge=0, le=100)
    suggested_actions: list[str] = Field(alias="suggestedActions")


class InferenceState(str, Enum):
    OK = "ok"
    UNCONFIGURED = "unconfigured"
    DEGRADED = "degraded"          # backend failed; a default was served
    RATE_LIMITED = "rate_limited"  # throttling retries exhausted; try again later


class InferenceStatus(BaseModel):
    state: InferenceState = InferenceState.OK
    operation: Optional[str] = None
    message: str = ""
    updated_at: Optional[datetime] = None


# ── request bodies for the /ai router ──

class SummaryRequest(BaseModel):
    alert: AlertContext
    node_info: NodeInfo = Field(default_factory=NodeInfo)


class ThreatRequest(BaseModel):
    alerts: list[AlertContext] = Field(default_factory=list)
    nodes: list[NodeContext] = Field(default_factory=list)


class RecommendationRequest(BaseModel):
    alerts: list[AlertContext] = Field(default_factory=list)
    network_status: NetworkStatus = Field(default_factory=NetworkStatus)
    fleet: list[FleetUnitContext] = Field(default_factory=list)


class AnomalyRequest(BaseModel):
    alerts: list[AlertContext] = Field(default_factory=list)
    historical_pattern: str = ""


class ReportRequest(BaseModel):
    alerts: list[AlertContext] = Field(default_factory=list)
    metrics: ReportMetrics


class PatternRequest(BaseModel):
    alerts: list[AlertContext] = Field(default_factory=list)
    time_window: Literal["hour", "day", "week"] = "day"


# ── deterministic fallbacks ──

MANUAL_REVIEW_ACTIONS = ["Review alerts manually", "Check network status", "Assess drone availability"]
REPORT_UNAVAILABLE = "Report generation unavailable. Please configure the AI backend credential."
PATTERNS_UNAVAILABLE = "Pattern analysis unavailable."


def default_threat_assessment() -> ThreatAssessment:
    return ThreatAssessment(
        threat_level="medium",
        summary="Unable to analyze threats at this time. Manual review recommended.",
        recommendations=["Review alerts manually", "Check sensor node status", "Verify network connectivity"],
        correlated_alerts=[],
        pattern_analysis="Analysis unavailable - API not configured",
        estimated_risk="Unknown - requires manual assessment",
        confidence=0,
    )


def default_anomaly_verdict() -> AnomalyVerdict:
    return AnomalyVerdict(
        is_anomaly=False,
        explanation="Analysis unavailable",
        confidence=0,
        suggested_actions=[],
    )


def default_alert_summary(alert: AlertContext, node_info: NodeInfo) -> str:
    return f"{alert.alert_type} detected at {alert.node_id} in {node_info.sector}"


class GeneratedReport(BaseModel):
    report_id: str                  # uuid
    generated_at: int               # epoch ms
    report: str
    alert_count: int
    status: InferenceStatus
