import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import requests

from fieldwatch.core.dispatcher import AlertDispatcher, DispatchError, highest_severity
from fieldwatch.core.feed import MemoryFeed
from fieldwatch.core.fleet import FleetRoster
from fieldwatch.core.state_store import ACTIVATE_PATH, RealtimeStateStore
from fieldwatch.schemas.feed import Alert, Severity
from fieldwatch.schemas.fleet import UnitStatus
from tests.conftest import FailingWritesFeed, ReplayingFeed

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class DroppedConnectionFeed(MemoryFeed):
    async def set(self, path, value):
        if path == ACTIVATE_PATH:
            raise requests.ConnectionError("connection aborted")
        await super().set(path, value)


def alert(alert_id, kind="motion", severity=Severity.INFO, minutes_ago=0):
    return Alert(id=alert_id, kind=kind, node_id="node1", timestamp=NOW - timedelta(minutes=minutes_ago),
                 description=f"{kind} detected", severity=severity)


class Harness:
    def __init__(self, feed=None, sleep=None):
        self.feed = feed if feed is not None else MemoryFeed()
        self.store = RealtimeStateStore(self.feed)
        self.fleet = FleetRoster()
        self.sleeps = []

        async def record_sleep(seconds):
            self.sleeps.append(seconds)
            if sleep is not None:
                await sleep(seconds)

        self.dispatcher = AlertDispatcher(self.store, self.fleet, settle_delay=2.0, sleep=record_sleep)
        self.cues, self.prompts, self.outcomes = [], [], []
        self.dispatcher.audio_cues.subscribe(self.cues.append)
        self.dispatcher.prompts.subscribe(self.prompts.append)
        self.dispatcher.outcomes.subscribe(self.outcomes.append)
        self.dispatcher.attach()

    def record(self, *alerts):
        async def _write():
            for a in alerts:
                await self.store.record_alert(a)

        asyncio.run(_write())


def test_highest_severity():
    assert highest_severity([]) is Severity.INFO
    assert highest_severity([alert("a"), alert("b", severity=Severity.CRITICAL)]) is Severity.CRITICAL


class TestArrivals:
    def test_existing_history_is_not_an_arrival(self):
        feed = MemoryFeed({"alertHistory": {"old": {"type": "gun", "severity": "critical"}}})
        h = Harness(feed)
        assert h.cues == []
        assert h.dispatcher.prompt.open is False

    def test_new_alert_cues_and_prompts(self):
        h = Harness()
        h.record(alert("a1", kind="gun", severity=Severity.CRITICAL))
        assert len(h.cues) == 1
        assert h.cues[0].severity is Severity.CRITICAL
        prompt = h.dispatcher.prompt
        assert prompt.open and prompt.alert_id == "a1"
        assert prompt.title == "Critical Alert"

    def test_only_one_prompt_at_a_time(self):
        h = Harness()
        h.record(alert("a1", kind="help", severity=Severity.WARNING))
        h.record(alert("a2", kind="gun", severity=Severity.CRITICAL))
        assert len(h.cues) == 2
        assert len(h.prompts) == 1
        assert h.dispatcher.prompt.title == "Help Alert"

    def test_fire_flag_opens_fire_prompt(self):
        h = Harness()
        asyncio.run(h.feed.set("nodes/node3/alerts/fire", True))
        assert h.cues[-1].severity is Severity.CRITICAL
        assert h.dispatcher.prompt.title == "Fire Alert"
        assert h.dispatcher.prompt.alert_kind == "fire"

    def test_detach_stops_listening(self):
        h = Harness()
        h.dispatcher.detach()
        h.record(alert("a1"))
        assert h.cues == []


class TestDecisions:
    def test_deploy_success(self):
        h = Harness()
        h.record(alert("a1", kind="gun", severity=Severity.CRITICAL))

        outcome = asyncio.run(h.dispatcher.deploy())

        assert outcome.success is True
        assert asyncio.run(h.feed.get(ACTIVATE_PATH)) == 1
        assert h.fleet.get("drone1").status is UnitStatus.ON_MISSION
        assert h.sleeps == [2.0]
        assert h.dispatcher.prompt.open is False
        assert any(p.deploying for p in h.prompts)
        assert h.outcomes == [outcome]

    def test_deploy_failure_reverts_unit_and_keeps_prompt(self):
        h = Harness(FailingWritesFeed((ACTIVATE_PATH,)))
        h.record(alert("a1", kind="gun", severity=Severity.CRITICAL))

        outcome = asyncio.run(h.dispatcher.deploy())

        assert outcome.success is False
        assert h.fleet.get("drone1").status is UnitStatus.ON_STATION
        assert h.dispatcher.prompt.open is True
        assert h.dispatcher.prompt.deploying is False
        assert h.sleeps == []

    def test_cancelled_settle_rolls_back(self):
        async def cancelled(_seconds):
            raise asyncio.CancelledError()

        h = Harness(sleep=cancelled)
        h.record(alert("a1", kind="gun", severity=Severity.CRITICAL))

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(h.dispatcher.deploy())

        assert h.fleet.get("drone1").status is UnitStatus.ON_STATION
        assert h.dispatcher.prompt.open is True
        assert h.dispatcher.prompt.deploying is False
        assert [o.success for o in h.outcomes] == [False]
        assert h.dispatcher.dismiss() is True

    def test_unexpected_activation_error_rolls_back(self):
        h = Harness(DroppedConnectionFeed())
        h.record(alert("a1", kind="fire", severity=Severity.CRITICAL))

        outcome = asyncio.run(h.dispatcher.deploy())

        assert outcome.success is False
        assert h.outcomes == [outcome]
        assert h.fleet.get("drone1").status is UnitStatus.ON_STATION
        assert h.dispatcher.prompt.deploying is False

        # a second attempt is accepted once the first has rolled back
        retry = asyncio.run(h.dispatcher.deploy())
        assert retry.success is False
        assert h.dispatcher.dismiss() is True

    def test_deploy_without_prompt(self):
        h = Harness()
        with pytest.raises(DispatchError):
            asyncio.run(h.dispatcher.deploy())

    def test_dismiss_closes_without_writing(self):
        h = Harness()
        h.record(alert("a1"))
        assert h.dispatcher.dismiss() is True
        assert h.dispatcher.dismiss() is False
        assert asyncio.run(h.feed.get(ACTIVATE_PATH)) is None
        assert h.fleet.get("drone1").status is UnitStatus.ON_STATION


def test_replayed_feed_does_not_repeat_cues_or_prompts():
    feed = ReplayingFeed()
    h = Harness(feed)
    h.record(alert("a1", kind="gun", severity=Severity.CRITICAL))
    asyncio.run(feed.set("nodes/node2/alerts/fire", True))
    cues, prompts = list(h.cues), list(h.prompts)

    feed.replay()
    feed.replay()

    assert h.cues == cues
    assert h.prompts == prompts
