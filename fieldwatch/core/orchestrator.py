"""
Operator-facing inference operations.

Each operation builds its prompt, sends it through the fallback client and
parses the answer. None of them raise: when the backend is unconfigured,
failing or returns something unusable, the operation's fixed default is
returned and ``status`` says why.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

from .. import config
from ..schemas.feed import Alert, NetworkStatus, Node
from ..schemas.inference import (
    MANUAL_REVIEW_ACTIONS,
    PATTERNS_UNAVAILABLE,
    REPORT_UNAVAILABLE,
    AlertContext,
    AnomalyVerdict,
    FleetUnitContext,
    InferenceState,
    InferenceStatus,
    NodeContext,
    NodeInfo,
    ReportMetrics,
    ThreatAssessment,
    default_alert_summary,
    default_anomaly_verdict,
    default_threat_assessment,
)
from . import prompts
from .model_client import (
    AllCandidatesFailed,
    BackendRequestError,
    ErrorKind,
    InferenceError,
    ModelFallbackClient,
    RateLimitExceeded,
)
from .response_parser import parse_action_list, parse_structured

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 5


def select_recent_alerts(
    alerts: Sequence[Alert],
    now: Optional[datetime] = None,
    window: timedelta = timedelta(minutes=config.RECENT_ALERT_WINDOW_MINUTES),
    limit: int = config.RECENT_ALERT_LIMIT,
) -> list[Alert]:
    """
    The one recency policy used by every inference path: alerts newer than
    ``now - window``, newest first, at most ``limit``. An empty result stays
    empty; there is no fallback to older alerts.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - window
    recent = [a for a in alerts if a.timestamp > cutoff]
    recent.sort(key=lambda a: a.timestamp, reverse=True)
    return recent[:limit]


def build_alert_context(alert: Alert, nodes_by_id: dict[str, Node]) -> AlertContext:
    node = nodes_by_id.get(alert.node_id)
    return AlertContext(
        alert_type=alert.kind,
        node_id=alert.node_id,
        timestamp=alert.timestamp,
        location=f"{node.location.lat:.4f}, {node.location.lng:.4f}" if node else None,
        sector=node.sector if node else None,
        severity=alert.severity.value,
    )


def build_alert_contexts(alerts: Iterable[Alert], nodes: Iterable[Node]) -> list[AlertContext]:
    nodes_by_id = {n.id: n for n in nodes}
    return [build_alert_context(a, nodes_by_id) for a in alerts]


def build_node_contexts(nodes: Iterable[Node]) -> list[NodeContext]:
    return [NodeContext(id=n.id, sector=n.sector, location=n.location) for n in nodes]


_FAILURE_HINTS = {
    ErrorKind.AUTH: "Invalid API key. Check the backend credential in .env",
    ErrorKind.PERMISSION: "Permission denied. Check API key permissions and billing status.",
    ErrorKind.INVALID: "Request rejected as malformed.",
}
QUOTA_HINT = "Quota or rate limit exhausted. Wait a few moments or check the plan's request limits."
MODEL_NOT_FOUND_HINT = "No candidate model is available to this key. Check CANDIDATE_MODELS."


def failure_hint(exc: InferenceError) -> Optional[str]:
    """Operator-facing hint for a failed request, or None when there is nothing specific to say."""
    if isinstance(exc, RateLimitExceeded):
        return QUOTA_HINT
    if isinstance(exc, AllCandidatesFailed):
        return MODEL_NOT_FOUND_HINT
    if isinstance(exc, BackendRequestError):
        return _FAILURE_HINTS.get(exc.kind)
    return None


class InferenceOrchestrator:
    def __init__(self, client: Optional[ModelFallbackClient]) -> None:
        self.client = client
        self.status = InferenceStatus(
            state=InferenceState.OK if client is not None else InferenceState.UNCONFIGURED
        )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def _set_status(self, state: InferenceState, operation: str, message: str = "") -> None:
        self.status = InferenceStatus(
            state=state,
            operation=operation,
            message=message,
            updated_at=datetime.now(timezone.utc),
        )

    async def _generate(self, operation: str, prompt: str) -> Optional[str]:
        """Model text, or None when the caller should serve its default."""
        if self.client is None:
            self._set_status(InferenceState.UNCONFIGURED, operation, "AI backend credential not configured")
            return None
        try:
            text = await self.client.generate(prompt)
        except InferenceError as exc:
            hint = failure_hint(exc)
            logger.error("[inference] %s failed: %s", operation, exc)
            if hint:
                logger.error("[inference] %s: %s", operation, hint)
            if isinstance(exc, RateLimitExceeded):
                self._set_status(InferenceState.RATE_LIMITED, operation, hint or str(exc))
            else:
                self._set_status(InferenceState.DEGRADED, operation, hint or str(exc))
            return None

        if not text:
            self._set_status(InferenceState.DEGRADED, operation, "Empty response from model")
            return None
        self._set_status(InferenceState.OK, operation)
        return text

    def _rejected(self, operation: str) -> None:
        self._set_status(InferenceState.DEGRADED, operation, "Model response did not match the expected format")

    async def summarize_alert(self, alert: AlertContext, node_info: NodeInfo) -> str:
        text = await self._generate("summarize_alert", prompts.summary_prompt(alert, node_info))
        return text or default_alert_summary(alert, node_info)

    async def assess_threat(
        self, alert_contexts: list[AlertContext], node_contexts: list[NodeContext]
    ) -> ThreatAssessment:
        default = default_threat_assessment()
        text = await self._generate("assess_threat", prompts.threat_prompt(alert_contexts, node_contexts))
        if text is None:
            return default
        result = parse_structured(text, ThreatAssessment, default)
        if result is default:
            self._rejected("assess_threat")
        return result

    async def recommend_actions(
        self,
        alert_contexts: list[AlertContext],
        network_status: NetworkStatus,
        fleet_status: list[FleetUnitContext],
    ) -> list[str]:
        text = await self._generate(
            "recommend_actions", prompts.recommend_prompt(alert_contexts, network_status, fleet_status)
        )
        if text is None:
            return list(MANUAL_REVIEW_ACTIONS)
        actions = parse_action_list(text, limit=MAX_RECOMMENDATIONS)
        if not actions:
            self._rejected("recommend_actions")
            return list(MANUAL_REVIEW_ACTIONS)
        return actions

    async def detect_anomaly(
        self, recent_alert_contexts: list[AlertContext], historical_pattern_text: str = ""
    ) -> AnomalyVerdict:
        default = default_anomaly_verdict()
        text = await self._generate(
            "detect_anomaly", prompts.anomaly_prompt(recent_alert_contexts, historical_pattern_text)
        )
        if text is None:
            return default
        result = parse_structured(text, AnomalyVerdict, default)
        if result is default:
            self._rejected("detect_anomaly")
        return result

    async def generate_report(self, alert_contexts: list[AlertContext], metrics: ReportMetrics) -> str:
        text = await self._generate(
            "generate_report", prompts.report_prompt(alert_contexts, metrics, config.REPORT_ALERT_LIMIT)
        )
        return text or REPORT_UNAVAILABLE

    async def analyze_patterns(self, alert_contexts: list[AlertContext], time_window: str = "day") -> str:
        text = await self._generate("analyze_patterns", prompts.pattern_prompt(alert_contexts, time_window))
        return text or PATTERNS_UNAVAILABLE
