import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from .. import config
from ..core.orchestrator import build_alert_contexts
from ..core.session import DashboardSession
from ..schemas.feed import Severity
from ..schemas.inference import GeneratedReport, ReportMetrics
from .deps import get_session

router = APIRouter(prefix="/report", tags=["report"])


@router.post("/generate", response_model=GeneratedReport)
async def generate_report(
    avg_response_time_ms: Optional[float] = None,
    session: DashboardSession = Depends(get_session),
) -> GeneratedReport:
    """
    Intelligence report over the live feed. Covers the newest alerts
    regardless of age; node counts come from the feed's network status.
    """
    snapshot = session.store.snapshot()
    alerts = snapshot.alerts[: config.REPORT_ALERT_LIMIT]
    metrics = ReportMetrics(
        total_alerts=len(snapshot.alerts),
        critical_alerts=sum(1 for a in snapshot.alerts if a.severity is Severity.CRITICAL),
        nodes_online=snapshot.network_status.active_nodes,
        avg_response_time_ms=avg_response_time_ms or 0.0,
    )
    text = await session.orchestrator.generate_report(build_alert_contexts(alerts, snapshot.nodes), metrics)

    return GeneratedReport(
        report_id=str(uuid.uuid4()),
        generated_at=int(time.time() * 1000),
        report=text,
        alert_count=len(alerts),
        status=session.orchestrator.status,
    )
