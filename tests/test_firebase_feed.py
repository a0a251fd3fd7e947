import asyncio
import json

import pytest
import requests

from fieldwatch.core.feed import FeedReadError, FeedWriteError
from fieldwatch.core.firebase_feed import FirebaseFeed, _StreamListener, apply_patch, apply_put, iter_sse


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.requests = []
        self.closed = False

    def request(self, method, url, params=None, data=None, timeout=None):
        self.requests.append((method, url, params, data))
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def test_iter_sse_frames():
    lines = [
        "event: put",
        'data: {"path": "/", "data": {"a": 1}}',
        "",
        ": comment",
        "event: keep-alive",
        "data: null",
        "",
        "event: patch",
        'data: {"path": "/b", "data": {"c": 2}}',
    ]
    assert list(iter_sse(lines)) == [
        ("put", '{"path": "/", "data": {"a": 1}}'),
        ("keep-alive", "null"),
        ("patch", '{"path": "/b", "data": {"c": 2}}'),
    ]


class TestApplyEvents:
    def test_root_put_replaces(self):
        assert apply_put({"old": 1}, "/", {"new": 2}) == {"new": 2}

    def test_nested_put_creates_parents(self):
        assert apply_put(None, "/node1/alerts/fire", True) == {"node1": {"alerts": {"fire": True}}}

    def test_put_none_deletes(self):
        assert apply_put({"node1": {"x": 1}, "node2": {}}, "/node1", None) == {"node2": {}}
        assert apply_put({"node1": 1}, "/node1", None) is None

    def test_patch_merges_children(self):
        tree = {"node1": {"battery": 80, "status": "online"}}
        merged = apply_patch(tree, "/node1", {"battery": 50, "signalStrength": 70})
        assert merged == {"node1": {"battery": 50, "status": "online", "signalStrength": 70}}


class TestStreamListener:
    def make_listener(self):
        delivered = []
        loop = asyncio.new_event_loop()
        feed = FirebaseFeed(base_url="https://example.firebaseio.com", session=FakeSession())
        listener = _StreamListener(feed, "nodes", delivered.append, loop)
        return listener, loop, delivered

    def test_put_then_patch_delivers_full_value(self):
        listener, loop, delivered = self.make_listener()
        try:
            assert listener.handle("put", json.dumps({"path": "/", "data": {"node1": {"battery": 90}}}))
            assert listener.handle("patch", json.dumps({"path": "/node1", "data": {"battery": 40}}))
            assert listener.handle("keep-alive", "null")
            loop.run_until_complete(asyncio.sleep(0))
        finally:
            loop.close()
        assert delivered == [{"node1": {"battery": 90}}, {"node1": {"battery": 40}}]

    @pytest.mark.parametrize("event", ["cancel", "auth_revoked"])
    def test_server_closure_ends_stream(self, event):
        listener, loop, _ = self.make_listener()
        try:
            assert listener.handle(event, "null") is False
        finally:
            loop.close()


class TestFirebaseFeedWrites:
    def test_set_puts_json_with_auth(self):
        session = FakeSession()
        feed = FirebaseFeed(base_url="https://example.firebaseio.com/", auth_token="secret", session=session)
        asyncio.run(feed.set("nodes/node1/alerts/fire", True))
        method, url, params, data = session.requests[0]
        assert method == "PUT"
        assert url == "https://example.firebaseio.com/nodes/node1/alerts/fire.json"
        assert params == {"auth": "secret"}
        assert json.loads(data) is True

    def test_push_returns_generated_key(self):
        session = FakeSession(FakeResponse({"name": "-Nabc"}))
        feed = FirebaseFeed(base_url="https://example.firebaseio.com", session=session)
        assert asyncio.run(feed.push("connections", {"source": "a", "target": "b"})) == "-Nabc"
        assert session.requests[0][0] == "POST"

    def test_write_failure_becomes_feed_write_error(self):
        session = FakeSession(error=requests.ConnectionError("connection reset"))
        feed = FirebaseFeed(base_url="https://example.firebaseio.com", session=session)
        with pytest.raises(FeedWriteError) as info:
            asyncio.run(feed.set("activate", 1))
        assert info.value.path == "activate"

    def test_rejected_write_becomes_feed_write_error(self):
        session = FakeSession(FakeResponse(status=401))
        feed = FirebaseFeed(base_url="https://example.firebaseio.com", session=session)
        with pytest.raises(FeedWriteError):
            asyncio.run(feed.update("networkStatus", {"activeNodes": 1}))

    def test_read_failure_becomes_feed_read_error(self):
        session = FakeSession(error=requests.ConnectionError("name resolution failed"))
        feed = FirebaseFeed(base_url="https://example.firebaseio.com", session=session)
        with pytest.raises(FeedReadError) as info:
            asyncio.run(feed.get("nodes"))
        assert info.value.path == "nodes"

    def test_missing_url(self):
        with pytest.raises(ValueError):
            FirebaseFeed(base_url="")

    def test_close_closes_session(self):
        session = FakeSession()
        FirebaseFeed(base_url="https://example.firebaseio.com", session=session).close()
        assert session.closed
