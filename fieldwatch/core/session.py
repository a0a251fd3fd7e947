from __future__ import annotations

import logging
from typing import Optional

from .. import config
from ..schemas.feed import Alert, NetworkStatus
from ..schemas.inference import ThreatAssessment
from .debounce import Debouncer
from .dispatcher import AlertDispatcher
from .fleet import FleetRoster
from .observer import Channel, Unsubscribe
from .orchestrator import (
    InferenceOrchestrator,
    build_alert_contexts,
    build_node_contexts,
    select_recent_alerts,
)
from .state_store import RealtimeStateStore

logger = logging.getLogger(__name__)


class DashboardSession:
    """
    One operator session: keeps the feeds open, runs the dispatcher and
    refreshes the threat assessment / recommendations once alert activity
    has been quiet for the debounce window.

    close() clears pending timers and releases the feeds. Inference calls
    already in flight finish, but their results are dropped.
    """

    def __init__(
        self,
        store: RealtimeStateStore,
        orchestrator: InferenceOrchestrator,
        fleet: Optional[FleetRoster] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        debounce_delay: float = config.INFERENCE_DEBOUNCE_MS / 1000,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.fleet = fleet or FleetRoster()
        self.dispatcher = dispatcher or AlertDispatcher(store, self.fleet)

        self.assessment: Optional[ThreatAssessment] = None
        self.recommendations: list[str] = []
        self.assessments: Channel[ThreatAssessment] = Channel("assessment")
        self.recommendations_changed: Channel[list[str]] = Channel("recommendations")

        self._threats = Debouncer(debounce_delay, self.refresh_threats, name="threats")
        self._actions = Debouncer(debounce_delay, self.refresh_recommendations, name="recommendations")
        self._handles: list[Unsubscribe] = []
        self._last_active_nodes: Optional[int] = None
        self.closed = False

    def start(self) -> None:
        if self._handles or self.closed:
            return
        self._handles = [
            self.store.subscribe_snapshot(lambda _snapshot: None),
            self.store.subscribe_alerts(self._on_alerts),
            self.store.subscribe_network_status(self._on_network_status),
        ]
        self.dispatcher.attach()
        logger.info("[session] started (inference %s)", "on" if self.orchestrator.is_configured else "unconfigured")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._threats.cancel()
        self._actions.cancel()
        for handle in self._handles:
            handle()
        self._handles = []
        self.dispatcher.detach()
        logger.info("[session] closed")

    def _on_alerts(self, alerts: list[Alert]) -> None:
        if not alerts or self.closed:
            return
        self._threats.trigger()
        self._actions.trigger()

    def _on_network_status(self, status: NetworkStatus) -> None:
        if self.closed or status.active_nodes == self._last_active_nodes:
            return
        self._last_active_nodes = status.active_nodes
        if self.store.snapshot().alerts:
            self._actions.trigger()

    async def refresh_threats(self) -> None:
        snapshot = self.store.snapshot()
        recent = select_recent_alerts(snapshot.alerts)
        if not recent:
            logger.debug("[session] no recent alerts, skipping threat assessment")
            return
        result = await self.orchestrator.assess_threat(
            build_alert_contexts(recent, snapshot.nodes), build_node_contexts(snapshot.nodes)
        )
        if self.closed:
            logger.debug("[session] discarding threat assessment, session closed")
            return
        self.assessment = result
        self.assessments.publish(result)

    async def refresh_recommendations(self) -> None:
        snapshot = self.store.snapshot()
        recent = select_recent_alerts(snapshot.alerts)
        if not recent:
            logger.debug("[session] no recent alerts, skipping recommendations")
            return
        result = await self.orchestrator.recommend_actions(
            build_alert_contexts(recent, snapshot.nodes), snapshot.network_status, self.fleet.contexts()
        )
        if self.closed:
            logger.debug("[session] discarding recommendations, session closed")
            return
        self.recommendations = result
        self.recommendations_changed.publish(result)
