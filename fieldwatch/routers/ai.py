"""
Inference router: the operator-facing AI operations.

Every endpoint answers 200 with either the model's result or that
operation's fixed default; GET /ai/status tells the UI which it got.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.orchestrator import build_alert_contexts, build_node_contexts, select_recent_alerts
from ..core.session import DashboardSession
from ..schemas.inference import (
    AnomalyRequest,
    AnomalyVerdict,
    InferenceStatus,
    PatternRequest,
    RecommendationRequest,
    ReportRequest,
    SummaryRequest,
    ThreatAssessment,
    ThreatRequest,
)
from .deps import get_session

router = APIRouter(prefix="/ai", tags=["ai"])


class TextResponse(BaseModel):
    text: str
    status: InferenceStatus


class ActionsResponse(BaseModel):
    actions: list[str]
    status: InferenceStatus


class StatusResponse(BaseModel):
    configured: bool
    status: InferenceStatus


class InsightsResponse(BaseModel):
    assessment: ThreatAssessment | None
    recommendations: list[str]
    status: InferenceStatus


@router.get("/status", response_model=StatusResponse)
async def get_status(session: DashboardSession = Depends(get_session)) -> StatusResponse:
    orchestrator = session.orchestrator
    return StatusResponse(configured=orchestrator.is_configured, status=orchestrator.status)


@router.get("/insights", response_model=InsightsResponse)
async def get_insights(session: DashboardSession = Depends(get_session)) -> InsightsResponse:
    """Latest debounced threat assessment and recommendations for the live feed."""
    return InsightsResponse(
        assessment=session.assessment,
        recommendations=session.recommendations,
        status=session.orchestrator.status,
    )


@router.post("/summary", response_model=TextResponse)
async def post_summary(request: SummaryRequest, session: DashboardSession = Depends(get_session)) -> TextResponse:
    text = await session.orchestrator.summarize_alert(request.alert, request.node_info)
    return TextResponse(text=text, status=session.orchestrator.status)


@router.post("/threats", response_model=ThreatAssessment)
async def post_threats(request: ThreatRequest, session: DashboardSession = Depends(get_session)) -> ThreatAssessment:
    return await session.orchestrator.assess_threat(request.alerts, request.nodes)


@router.post("/threats/live", response_model=ThreatAssessment)
async def post_threats_live(session: DashboardSession = Depends(get_session)) -> ThreatAssessment:
    """Assess the recent alerts from the live feed right away, bypassing the debounce."""
    snapshot = session.store.snapshot()
    recent = select_recent_alerts(snapshot.alerts)
    return await session.orchestrator.assess_threat(
        build_alert_contexts(recent, snapshot.nodes), build_node_contexts(snapshot.nodes)
    )


@router.post("/recommendations", response_model=ActionsResponse)
async def post_recommendations(
    request: RecommendationRequest, session: DashboardSession = Depends(get_session)
) -> ActionsResponse:
    fleet = request.fleet or session.fleet.contexts()
    actions = await session.orchestrator.recommend_actions(request.alerts, request.network_status, fleet)
    return ActionsResponse(actions=actions, status=session.orchestrator.status)


@router.post("/anomaly", response_model=AnomalyVerdict)
async def post_anomaly(request: AnomalyRequest, session: DashboardSession = Depends(get_session)) -> AnomalyVerdict:
    return await session.orchestrator.detect_anomaly(request.alerts, request.historical_pattern)


@router.post("/report", response_model=TextResponse)
async def post_report(request: ReportRequest, session: DashboardSession = Depends(get_session)) -> TextResponse:
    text = await session.orchestrator.generate_report(request.alerts, request.metrics)
    return TextResponse(text=text, status=session.orchestrator.status)


@router.post("/patterns", response_model=TextResponse)
async def post_patterns(request: PatternRequest, session: DashboardSession = Depends(get_session)) -> TextResponse:
    text = await session.orchestrator.analyze_patterns(request.alerts, request.time_window)
    return TextResponse(text=text, status=session.orchestrator.status)
