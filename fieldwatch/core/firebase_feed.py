"""
Realtime-database feed over its REST API.

Writes are plain PUT/POST/PATCH calls on ``<url>/<path>.json`` run off the
event loop with asyncio.to_thread. Each subscription holds one streaming GET
(``Accept: text/event-stream``) on a daemon thread, folds the ``put`` /
``patch`` events into a local copy of the subscribed value, and hands the
whole value back to the event loop.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import threading
from typing import Any, Iterable, Iterator, Optional

import requests

from .. import config
from .feed import FeedCallback, FeedReadError, FeedWriteError, Unsubscribe, split_path

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0
MAX_RECONNECT_DELAY_SECONDS = 30.0


def iter_sse(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """(event, data) pairs from a text/event-stream body, one per blank-line frame."""
    event, data = "", []
    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if not line:
            if event or data:
                yield event or "message", "\n".join(data)
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if event or data:
        yield event or "message", "\n".join(data)


def apply_put(tree: Any, path: str, data: Any) -> Any:
    """Return ``tree`` with ``data`` written at the relative ``path`` (None deletes)."""
    parts = split_path(path)
    if not parts:
        return copy.deepcopy(data)
    root = tree if isinstance(tree, dict) else {}
    node = root
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            if data is None:
                return root or None
            child = {}
            node[part] = child
        node = child
    if data is None:
        node.pop(parts[-1], None)
    else:
        node[parts[-1]] = copy.deepcopy(data)
    return root or None


def apply_patch(tree: Any, path: str, data: Any) -> Any:
    if not isinstance(data, dict):
        return tree
    base = path.rstrip("/")
    for key, value in data.items():
        tree = apply_put(tree, f"{base}/{key}", value)
    return tree


class _StreamListener(threading.Thread):
    def __init__(
        self,
        feed: "FirebaseFeed",
        path: str,
        callback: FeedCallback,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__(name=f"feed:{path}", daemon=True)
        self.feed = feed
        self.path = path
        self.callback = callback
        self.loop = loop
        self.value: Any = None
        self._stopped = threading.Event()
        self._response: Optional[requests.Response] = None

    def stop(self) -> None:
        self._stopped.set()
        response = self._response
        if response is not None:
            response.close()

    def _deliver(self) -> None:
        if self._stopped.is_set() or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.callback, copy.deepcopy(self.value))

    def handle(self, event: str, raw: str) -> bool:
        """Apply one stream event. Returns False when the stream must end."""
        if event == "keep-alive":
            return True
        if event in ("cancel", "auth_revoked"):
            logger.error("[feed] stream for '%s' closed by server: %s %s", self.path, event, raw)
            return False
        try:
            payload = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            logger.warning("[feed] unparsable %s event on '%s'", event, self.path)
            return True
        if not isinstance(payload, dict):
            return True
        if event == "put":
            self.value = apply_put(self.value, payload.get("path", "/"), payload.get("data"))
        elif event == "patch":
            self.value = apply_patch(self.value, payload.get("path", "/"), payload.get("data"))
        else:
            return True
        self._deliver()
        return True

    def run(self) -> None:
        delay = RECONNECT_DELAY_SECONDS
        while not self._stopped.is_set():
            try:
                with self.feed.session.get(
                    self.feed.url(self.path),
                    params=self.feed.params(),
                    headers={"Accept": "text/event-stream"},
                    stream=True,
                    timeout=(self.feed.timeout, None),
                ) as response:
                    self._response = response
                    response.raise_for_status()
                    delay = RECONNECT_DELAY_SECONDS
                    for event, data in iter_sse(response.iter_lines(decode_unicode=True)):
                        if self._stopped.is_set():
                            return
                        if not self.handle(event, data):
                            return
            except requests.RequestException as exc:
                if self._stopped.is_set():
                    return
                logger.warning("[feed] stream for '%s' dropped (%s), reconnecting in %.0fs", self.path, exc, delay)
            finally:
                self._response = None
            self._stopped.wait(delay)
            delay = min(delay * 2, MAX_RECONNECT_DELAY_SECONDS)


class FirebaseFeed:
    def __init__(
        self,
        base_url: str = config.FIREBASE_DATABASE_URL,
        auth_token: str = config.FIREBASE_AUTH_TOKEN,
        timeout: int = config.FEED_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("FIREBASE_DATABASE_URL is not set")
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self._listeners: list[_StreamListener] = []

    def url(self, path: str) -> str:
        return f"{self.base_url}/{'/'.join(split_path(path))}.json"

    def params(self) -> dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    def _request(self, method: str, path: str, value: Any = None) -> Any:
        try:
            response = self.session.request(
                method,
                self.url(path),
                params=self.params(),
                data=None if method == "GET" else json.dumps(value),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            if method == "GET":
                raise FeedReadError(path, exc) from exc
            raise FeedWriteError(path, exc) from exc

    async def get(self, path: str) -> Any:
        return await asyncio.to_thread(self._request, "GET", path)

    async def set(self, path: str, value: Any) -> None:
        await asyncio.to_thread(self._request, "PUT", path, value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        await asyncio.to_thread(self._request, "PATCH", path, values)

    async def push(self, path: str, value: Any) -> str:
        result = await asyncio.to_thread(self._request, "POST", path, value)
        return result["name"]

    def subscribe(self, path: str, callback: FeedCallback) -> Unsubscribe:
        """Must be called from the event loop thread; callbacks run on that loop."""
        listener = _StreamListener(self, path, callback, asyncio.get_running_loop())
        self._listeners.append(listener)
        listener.start()

        def _unsubscribe() -> None:
            listener.stop()
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def close(self) -> None:
        for listener in list(self._listeners):
            listener.stop()
        self._listeners.clear()
        self.session.close()
