"""
Merged, typed view over the four realtime feeds (nodes, alert history,
connections, network status) plus the write-side operations on them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..schemas.feed import (
    Alert,
    DashboardSnapshot,
    FireTriggered,
    GeoPoint,
    NetworkConnection,
    NetworkStatus,
    Node,
    NodeRole,
    NodeStatus,
    Severity,
    default_alert_flags,
)
from . import records
from .feed import FeedSource, FeedWriteError, check_key
from .observer import Channel, Unsubscribe

logger = logging.getLogger(__name__)

NODES_PATH = "nodes"
ALERTS_PATH = "alertHistory"
CONNECTIONS_PATH = "connections"
NETWORK_STATUS_PATH = "networkStatus"
ACTIVATE_PATH = "activate"

FEED_PATHS = (NODES_PATH, ALERTS_PATH, CONNECTIONS_PATH, NETWORK_STATUS_PATH)


class RealtimeStateStore:
    """
    Every subscribe_* call opens the underlying feed on first use and closes
    it when the last listener for that feed unsubscribes. Each delivery
    replaces the snapshot in one assignment, so readers never see a mix of
    old and new collections.
    """

    def __init__(
        self,
        feed: FeedSource,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.feed = feed
        self._clock = clock
        self._snapshot = DashboardSnapshot()
        self._received: set[str] = set()
        self._fire_active: dict[str, bool] = {}

        self.nodes_changed: Channel[list[Node]] = Channel("nodes")
        self.alerts_changed: Channel[list[Alert]] = Channel("alerts")
        self.connections_changed: Channel[list[NetworkConnection]] = Channel("connections")
        self.network_status_changed: Channel[NetworkStatus] = Channel("network_status")
        self.fire_triggered: Channel[FireTriggered] = Channel("fire_triggered")
        self.snapshot_changed: Channel[DashboardSnapshot] = Channel("snapshot")

        self._handlers = {
            NODES_PATH: self._on_nodes,
            ALERTS_PATH: self._on_alerts,
            CONNECTIONS_PATH: self._on_connections,
            NETWORK_STATUS_PATH: self._on_network_status,
        }
        self._feed_handles: dict[str, Unsubscribe] = {}
        self._refcounts: dict[str, int] = {}

    # ── feed lifecycle ──

    def _acquire(self, path: str) -> None:
        self._refcounts[path] = self._refcounts.get(path, 0) + 1
        if path not in self._feed_handles:
            logger.debug("[feed] opening '%s'", path)
            self._feed_handles[path] = self.feed.subscribe(path, self._handlers[path])

    def _release(self, path: str) -> None:
        remaining = self._refcounts.get(path, 0) - 1
        if remaining > 0:
            self._refcounts[path] = remaining
            return
        self._refcounts.pop(path, None)
        handle = self._feed_handles.pop(path, None)
        if handle is not None:
            logger.debug("[feed] closing '%s'", path)
            handle()
        self._received.discard(path)

    def _listen(self, paths: tuple[str, ...], channel: Channel, callback, current: Optional[Callable[[], Any]]) -> Unsubscribe:
        already_live = all(p in self._received for p in paths)
        remove = channel.subscribe(callback)
        for path in paths:
            self._acquire(path)
        if current is not None and already_live:
            # Feed already open, so no initial delivery is coming.
            callback(current())
        released = False

        def _unsubscribe() -> None:
            nonlocal released
            if released:
                return
            released = True
            remove()
            for path in paths:
                self._release(path)

        return _unsubscribe

    @property
    def open_feeds(self) -> set[str]:
        return set(self._feed_handles)

    # ── subscriptions ──

    def subscribe_nodes(self, callback: Callable[[list[Node]], None]) -> Unsubscribe:
        return self._listen((NODES_PATH,), self.nodes_changed, callback, lambda: list(self._snapshot.nodes))

    def subscribe_alerts(self, callback: Callable[[list[Alert]], None]) -> Unsubscribe:
        return self._listen((ALERTS_PATH,), self.alerts_changed, callback, lambda: list(self._snapshot.alerts))

    def subscribe_connections(self, callback: Callable[[list[NetworkConnection]], None]) -> Unsubscribe:
        return self._listen(
            (CONNECTIONS_PATH,), self.connections_changed, callback, lambda: list(self._snapshot.connections)
        )

    def subscribe_network_status(self, callback: Callable[[NetworkStatus], None]) -> Unsubscribe:
        return self._listen(
            (NETWORK_STATUS_PATH,), self.network_status_changed, callback, lambda: self._snapshot.network_status
        )

    def subscribe_fire_triggered(self, callback: Callable[[FireTriggered], None]) -> Unsubscribe:
        return self._listen((NODES_PATH,), self.fire_triggered, callback, None)

    def subscribe_snapshot(self, callback: Callable[[DashboardSnapshot], None]) -> Unsubscribe:
        return self._listen(FEED_PATHS, self.snapshot_changed, callback, lambda: self._snapshot)

    def subscribe_node(self, node_id: str, callback: Callable[[Optional[Node]], None]) -> Unsubscribe:
        """Single-node view: the normalized node, or None while it does not exist."""
        last: list[Optional[Node]] = []

        def _on_nodes(nodes: list[Node]) -> None:
            node = next((n for n in nodes if n.id == node_id), None)
            if last and last[0] == node:
                return
            last[:] = [node]
            callback(node)

        return self.subscribe_nodes(_on_nodes)

    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    # ── inbound ──

    def _replace(self, **changes: Any) -> DashboardSnapshot:
        self._snapshot = self._snapshot.model_copy(update={**changes, "updated_at": self._clock()})
        return self._snapshot

    def _on_nodes(self, raw: Any) -> None:
        nodes = records.parse_nodes(raw)
        self._received.add(NODES_PATH)
        snapshot = self._replace(nodes=nodes)
        self.nodes_changed.publish(list(nodes))
        self._detect_fire(nodes)
        self.snapshot_changed.publish(snapshot)

    def _on_alerts(self, raw: Any) -> None:
        alerts = records.parse_alerts(raw)
        self._received.add(ALERTS_PATH)
        snapshot = self._replace(alerts=alerts)
        self.alerts_changed.publish(list(alerts))
        self.snapshot_changed.publish(snapshot)

    def _on_connections(self, raw: Any) -> None:
        connections = records.dedupe_connections(records.parse_connections(raw))
        self._received.add(CONNECTIONS_PATH)
        snapshot = self._replace(connections=connections)
        self.connections_changed.publish(list(connections))
        self.snapshot_changed.publish(snapshot)

    def _on_network_status(self, raw: Any) -> None:
        status = records.parse_network_status(raw)
        self._received.add(NETWORK_STATUS_PATH)
        snapshot = self._replace(network_status=status)
        self.network_status_changed.publish(status)
        self.snapshot_changed.publish(snapshot)

    def _detect_fire(self, nodes: list[Node]) -> None:
        """Announce each node whose fire flag went from inactive to active."""
        seen: dict[str, bool] = {}
        for node in nodes:
            active = node.alerts.get("fire", False)
            seen[node.id] = active
            if active and not self._fire_active.get(node.id, False):
                logger.warning("[feed] fire flag raised on %s", node.id)
                self.fire_triggered.publish(FireTriggered(node_id=node.id))
        self._fire_active = seen

    # ── outbound ──

    async def create_node(
        self,
        name: str,
        sector: str,
        location: GeoPoint,
        node_id: Optional[str] = None,
        status: NodeStatus = NodeStatus.ONLINE,
        battery: int = 100,
        signal_strength: int = 100,
        role: NodeRole = NodeRole.STANDARD,
    ) -> Node:
        if node_id is None:
            existing = records.entries(await self.feed.get(NODES_PATH))
            node_id = records.next_node_id(key for key, _ in existing)
        node = Node(
            id=check_key(node_id),
            name=name,
            sector=sector,
            status=status,
            battery=battery,
            signal_strength=signal_strength,
            last_activity=self._clock(),
            location=location,
            role=role,
            alerts=default_alert_flags(),
        )
        await self.feed.set(f"{NODES_PATH}/{node.id}", records.node_to_record(node))
        logger.info("[feed] created node %s (%s)", node.id, node.sector)
        return node

    async def set_node_alert_flag(self, node_id: str, kind: str, active: bool) -> None:
        await self.feed.set(f"{NODES_PATH}/{check_key(node_id)}/alerts/{check_key(kind)}", bool(active))

    async def record_alert(self, alert: Alert) -> None:
        """Upsert keyed by alert id; replaying the same alert is harmless."""
        await self.feed.set(f"{ALERTS_PATH}/{check_key(alert.id)}", records.alert_to_record(alert))

    async def add_connection(self, connection: NetworkConnection) -> str:
        return await self.feed.push(CONNECTIONS_PATH, records.connection_to_record(connection))

    async def set_fleet_activation_signal(self) -> None:
        """Write-only trigger for the actuation system. Failures are logged and re-raised, never retried here."""
        try:
            await self.feed.set(ACTIVATE_PATH, 1)
        except FeedWriteError as exc:
            logger.error("[feed] activation signal write failed: %s", exc)
            raise
        logger.info("[feed] activation signal set")

    async def seed_initial_data(self) -> bool:
        """Write the demo layout when the node feed is empty. Returns True if it seeded."""
        if records.entries(await self.feed.get(NODES_PATH)):
            return False
        now = self._clock()
        for node_id, data in DEMO_NODES.items():
            node = records.parse_node(node_id, data)
            node = node.model_copy(update={"last_activity": now - timedelta(minutes=data["idle_minutes"])})
            await self.feed.set(f"{NODES_PATH}/{node_id}", records.node_to_record(node))
        for idx, (kind, node_id, minutes_ago, description) in enumerate(DEMO_ALERTS, start=1):
            await self.record_alert(
                Alert(
                    id=f"alert{idx}",
                    kind=kind,
                    node_id=node_id,
                    timestamp=now - timedelta(minutes=minutes_ago),
                    description=description,
                    severity=Severity.CRITICAL,
                )
            )
        for source, target, strength in DEMO_CONNECTIONS:
            await self.add_connection(NetworkConnection(source=source, target=target, strength=strength))
        online = sum(1 for data in DEMO_NODES.values() if data["status"] == "online")
        await self.feed.set(
            NETWORK_STATUS_PATH,
            records.network_status_to_record(NetworkStatus(active_nodes=online, total_nodes=len(DEMO_NODES))),
        )
        logger.info("[feed] seeded %d demo nodes", len(DEMO_NODES))
        return True


# Five nodes: four corners of the perimeter plus a gateway in the middle.
DEMO_NODES: dict[str, dict[str, Any]] = {
    "node1": {"name": "Node #01", "sector": "Sector A", "status": "online", "battery": 85, "signalStrength": 78,
              "location": {"lat": 28.5500, "lng": 77.1850}, "type": "standard", "idle_minutes": 2},
    "node2": {"name": "Node #02", "sector": "Sector B", "status": "offline", "battery": 0, "signalStrength": 0,
              "location": {"lat": 28.5500, "lng": 77.2000}, "type": "standard", "idle_minutes": 15},
    "node3": {"name": "Node #03", "sector": "Sector C", "status": "offline", "battery": 0, "signalStrength": 0,
              "location": {"lat": 28.5350, "lng": 77.1850}, "type": "standard", "idle_minutes": 20},
    "node4": {"name": "Node #04", "sector": "Sector D", "status": "offline", "battery": 0, "signalStrength": 0,
              "location": {"lat": 28.5350, "lng": 77.2000}, "type": "standard", "idle_minutes": 25},
    "node5": {"name": "Node #05", "sector": "Sector E", "status": "online", "battery": 95, "signalStrength": 90,
              "location": {"lat": 28.5425, "lng": 77.1925}, "type": "gateway", "idle_minutes": 1},
}

DEMO_ALERTS = [
    ("footsteps", "node1", 12, "Footsteps Detected"),
    ("motion", "node5", 7, "Movement Detected"),
    ("whisper", "node1", 3, "Whispers Detected"),
]

DEMO_CONNECTIONS = [
    ("node1", "node5", 82),
    ("node2", "node5", 0),
    ("node3", "node5", 0),
    ("node4", "node5", 0),
]
