import asyncio
from datetime import datetime, timezone

import pytest

from fieldwatch.core.feed import FeedWriteError, MemoryFeed
from fieldwatch.core.state_store import ACTIVATE_PATH, DEMO_NODES, RealtimeStateStore
from fieldwatch.schemas.feed import Alert, GeoPoint, NetworkConnection, Severity
from tests.conftest import FailingWritesFeed, ReplayingFeed

FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_store(initial=None, feed=None):
    feed = feed if feed is not None else MemoryFeed(initial)
    return RealtimeStateStore(feed, clock=lambda: FIXED_NOW), feed


class TestSubscriptions:
    def test_empty_feeds_yield_empty_snapshot(self):
        store, _ = make_store()
        seen = []
        store.subscribe_snapshot(seen.append)
        snapshot = store.snapshot()
        assert snapshot.nodes == [] and snapshot.alerts == [] and snapshot.connections == []
        assert snapshot.network_status.active_nodes == 0
        assert seen

    def test_alerts_arrive_sorted(self):
        store, _ = make_store(
            {
                "alertHistory": {
                    "a1": {"type": "motion", "timestamp": "2026-10-19T10:00:00Z"},
                    "a2": {"type": "gun", "timestamp": "2026-10-19T11:00:00Z", "severity": "critical"},
                }
            }
        )
        seen = []
        store.subscribe_alerts(seen.append)
        assert [a.id for a in seen[-1]] == ["a2", "a1"]

    def test_late_subscriber_gets_current_value_once(self):
        store, _ = make_store({"nodes": {"node1": {"name": "A"}}})
        first, second = [], []
        store.subscribe_nodes(first.append)
        store.subscribe_nodes(second.append)
        assert len(first) == 1
        assert len(second) == 1
        assert second[0][0].name == "A"

    def test_feed_closes_with_last_subscriber(self):
        store, feed = make_store()
        stop_a = store.subscribe_alerts(lambda _: None)
        stop_b = store.subscribe_alerts(lambda _: None)
        assert store.open_feeds == {"alertHistory"}
        stop_a()
        assert feed.subscriber_count == 1
        stop_b()
        stop_b()
        assert store.open_feeds == set()
        assert feed.subscriber_count == 0

    def test_connections_deduped(self):
        store, _ = make_store(
            {
                "connections": {
                    "-1": {"source": "node1", "target": "node5", "strength": 30},
                    "-2": {"source": "node5", "target": "node1", "strength": 70},
                }
            }
        )
        seen = []
        store.subscribe_connections(seen.append)
        assert [c.strength for c in seen[-1]] == [70]

    def test_single_node_view(self):
        store, feed = make_store()
        seen = []
        store.subscribe_node("node3", seen.append)
        asyncio.run(feed.set("nodes/node1", {"name": "other"}))
        asyncio.run(feed.set("nodes/node3", {"name": "mine"}))
        assert seen[0] is None
        assert [n.name for n in seen[1:]] == ["mine"]


class TestFireDetection:
    def test_fires_once_per_rising_edge(self):
        store, feed = make_store({"nodes": {"node2": {"alerts": {"fire": False}}}})
        fires = []
        store.subscribe_fire_triggered(fires.append)

        async def toggle():
            await feed.set("nodes/node2/alerts/fire", True)
            await feed.set("nodes/node2/battery", 50)
            await feed.set("nodes/node2/alerts/fire", False)
            await feed.set("nodes/node2/alerts/fire", True)

        asyncio.run(toggle())
        assert [f.node_id for f in fires] == ["node2", "node2"]
        assert fires[0].severity is Severity.CRITICAL

    def test_any_node_can_trigger(self):
        store, feed = make_store()
        fires = []
        store.subscribe_fire_triggered(fires.append)
        asyncio.run(feed.set("nodes/node4/alerts/fire", True))
        assert [f.node_id for f in fires] == ["node4"]


class TestWrites:
    def test_create_node_assigns_next_id(self):
        store, feed = make_store({"nodes": {"node1": {"name": "A"}, "node4": {"name": "D"}}})
        node = asyncio.run(store.create_node("New", "Sector F", GeoPoint(lat=28.5, lng=77.2)))
        assert node.id == "node5"
        stored = asyncio.run(feed.get("nodes/node5"))
        assert stored["sector"] == "Sector F"
        assert stored["alerts"]["fire"] is False
        assert stored["lastActivity"] == "2026-10-19T12:00:00Z"

    def test_create_node_rejects_bad_key(self):
        store, _ = make_store()
        with pytest.raises(ValueError):
            asyncio.run(store.create_node("x", "y", GeoPoint(lat=0, lng=0), node_id="bad/id"))

    def test_alert_flag_and_record_alert(self):
        store, feed = make_store()
        alert = Alert(id="a1", kind="gun", node_id="node1", timestamp=FIXED_NOW, description="Gunshot",
                      severity=Severity.CRITICAL)

        async def writes():
            await store.set_node_alert_flag("node1", "gun", True)
            await store.record_alert(alert)
            await store.record_alert(alert)

        asyncio.run(writes())
        assert asyncio.run(feed.get("nodes/node1/alerts/gun")) is True
        assert list(asyncio.run(feed.get("alertHistory"))) == ["a1"]

    def test_add_connection_returns_key(self):
        store, feed = make_store()
        key = asyncio.run(store.add_connection(NetworkConnection(source="node1", target="node2", strength=55)))
        assert asyncio.run(feed.get(f"connections/{key}")) == {"source": "node1", "target": "node2", "strength": 55}

    def test_activation_signal(self):
        store, feed = make_store()
        asyncio.run(store.set_fleet_activation_signal())
        assert asyncio.run(feed.get(ACTIVATE_PATH)) == 1

    def test_activation_failure_is_reraised(self):
        store, _ = make_store(feed=FailingWritesFeed((ACTIVATE_PATH,)))
        with pytest.raises(FeedWriteError):
            asyncio.run(store.set_fleet_activation_signal())


class TestSeed:
    def test_seeds_empty_feed_once(self):
        store, feed = make_store()
        assert asyncio.run(store.seed_initial_data()) is True
        assert asyncio.run(store.seed_initial_data()) is False

        seen = []
        store.subscribe_snapshot(seen.append)
        snapshot = store.snapshot()
        assert len(snapshot.nodes) == len(DEMO_NODES)
        assert len(snapshot.alerts) == 3
        assert snapshot.alerts[0].kind == "whisper"
        assert snapshot.network_status.active_nodes == 2
        assert snapshot.network_status.total_nodes == 5
        assert len(snapshot.connections) == 4


class TestReplay:
    INITIAL = {
        "nodes": {
            "node1": {"name": "A", "alerts": {"fire": True}},
            "node2": {"name": "B", "battery": 0},
        },
        "alertHistory": {
            "a1": {"type": "gun", "nodeId": "node1", "timestamp": "2026-10-19T11:00:00Z", "severity": "critical"},
            "a2": {"type": "motion", "nodeId": "node2"},
        },
        "connections": {"-1": {"source": "node1", "target": "node2", "strength": 64}},
        "networkStatus": {"activeNodes": 2, "totalNodes": 2},
    }

    def test_identical_redelivery_leaves_state_unchanged(self):
        feed = ReplayingFeed(self.INITIAL)
        store, _ = make_store(feed=feed)
        fires, alert_deliveries = [], []
        store.subscribe_fire_triggered(fires.append)
        store.subscribe_snapshot(lambda _: None)
        store.subscribe_alerts(alert_deliveries.append)
        before = store.snapshot().model_dump(exclude={"updated_at"})

        feed.replay()
        feed.replay()

        assert store.snapshot().model_dump(exclude={"updated_at"}) == before
        assert [f.node_id for f in fires] == ["node1"]
        assert all(d == alert_deliveries[0] for d in alert_deliveries)

    def test_stream_put_resent_after_reconnect(self):
        store, _ = make_store()
        fires = []
        store.subscribe_fire_triggered(fires.append)
        payload = {"node3": {"name": "C", "alerts": {"fire": 1}}}

        store._on_nodes(payload)
        first = store.snapshot().nodes
        store._on_nodes(payload)

        assert store.snapshot().nodes == first
        assert [f.node_id for f in fires] == ["node3"]
