from fieldwatch.core.backends import build_backend
from fieldwatch.core.fleet import FleetRoster
from fieldwatch.core.observer import Channel
from fieldwatch.schemas.fleet import UnitStatus


class TestChannel:
    def test_publish_and_unsubscribe(self):
        channel = Channel("test")
        seen = []
        stop = channel.subscribe(seen.append)
        channel.publish(1)
        stop()
        stop()
        channel.publish(2)
        assert seen == [1]
        assert len(channel) == 0

    def test_failing_listener_does_not_block_others(self, caplog):
        channel = Channel("test")
        seen = []

        def broken(_):
            raise RuntimeError("listener bug")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        channel.publish("x")
        assert seen == ["x"]
        assert "listener failed" in caplog.text

    def test_listener_may_unsubscribe_itself(self):
        channel = Channel("test")
        seen = []
        handles = []

        def once(value):
            seen.append(value)
            handles[0]()

        handles.append(channel.subscribe(once))
        channel.publish(1)
        channel.publish(2)
        assert seen == [1]


class TestFleetRoster:
    def test_default_fleet(self):
        roster = FleetRoster()
        assert [u.id for u in roster.available_units()] == ["drone1"]
        assert roster.get("drone1").name == "Eagle Eye Alpha"
        assert len(roster.contexts()) == 4

    def test_set_status_returns_previous_and_publishes(self):
        roster = FleetRoster()
        changes = []
        roster.changed.subscribe(changes.append)
        previous = roster.set_status("drone1", UnitStatus.DEPLOYED)
        assert previous.status is UnitStatus.ON_STATION
        assert roster.get("drone1").status is UnitStatus.DEPLOYED
        assert [c.status for c in changes] == [UnitStatus.DEPLOYED]

    def test_same_status_is_silent(self):
        roster = FleetRoster()
        changes = []
        roster.changed.subscribe(changes.append)
        roster.set_status("drone2", UnitStatus.MAINTENANCE)
        assert changes == []


def test_no_key_means_no_backend():
    assert build_backend("gemini", api_key="") is None
    assert build_backend("openai", api_key="") is None
