"""
Push-based key/value feed. Paths are slash separated ("nodes/node1/alerts").
Subscribers always receive the full current value at their path, never a
delta, once when they subscribe and again whenever that value changes.
"""

from __future__ import annotations

import copy
import itertools
import logging
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

FeedCallback = Callable[[Any], None]
Unsubscribe = Callable[[], None]

_FORBIDDEN_KEY_CHARS = set(".$#[]/")


class FeedError(Exception):
    action = "access to"

    def __init__(self, path: str, cause: BaseException | str) -> None:
        super().__init__(f"{self.action} '{path}' failed: {cause}")
        self.path = path
        self.cause = cause


class FeedWriteError(FeedError):
    """A write to the feed did not go through."""

    action = "write to"


class FeedReadError(FeedError):
    """A one-off read of the feed did not go through."""

    action = "read of"


def check_key(key: str) -> str:
    if not key or _FORBIDDEN_KEY_CHARS & set(key):
        raise ValueError(f"invalid feed key: {key!r}")
    return key


def split_path(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


class FeedSource(Protocol):
    def subscribe(self, path: str, callback: FeedCallback) -> Unsubscribe: ...

    async def get(self, path: str) -> Any: ...

    async def set(self, path: str, value: Any) -> None: ...

    async def push(self, path: str, value: Any) -> str: ...

    async def update(self, path: str, values: dict[str, Any]) -> None: ...


def _related(a: list[str], b: list[str]) -> bool:
    """True when one path is an ancestor of (or equal to) the other."""
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class MemoryFeed:
    """
    In-process feed with realtime-database semantics. Used for local runs
    without a database and by the tests.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._root: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._subs: dict[int, tuple[list[str], FeedCallback]] = {}
        self._ids = itertools.count(1)
        self._push_seq = itertools.count()

    # ── reads ──

    def _read(self, parts: list[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        if isinstance(node, dict) and not node:
            return None
        return copy.deepcopy(node)

    async def get(self, path: str) -> Any:
        return self._read(split_path(path))

    def subscribe(self, path: str, callback: FeedCallback) -> Unsubscribe:
        parts = split_path(path)
        sub_id = next(self._ids)
        self._subs[sub_id] = (parts, callback)
        callback(self._read(parts))

        def _unsubscribe() -> None:
            self._subs.pop(sub_id, None)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    # ── writes ──

    def _write(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    def _apply(self, writes: list[tuple[list[str], Any]]) -> None:
        touched = [parts for parts, _ in writes]
        watchers = [
            (parts, cb, self._read(parts))
            for parts, cb in list(self._subs.values())
            if any(_related(parts, t) for t in touched)
        ]
        for parts, value in writes:
            self._write(parts, value)
        for parts, cb, before in watchers:
            after = self._read(parts)
            if after != before:
                cb(after)

    async def set(self, path: str, value: Any) -> None:
        self._apply([(split_path(path), value)])

    async def update(self, path: str, values: dict[str, Any]) -> None:
        base = split_path(path)
        self._apply([(base + split_path(key), value) for key, value in values.items()])

    async def push(self, path: str, value: Any) -> str:
        # Chronologically sortable, like realtime-database push ids.
        key = f"-{int(time.time() * 1000):013d}{next(self._push_seq):06d}"
        await self.set(f"{path}/{key}", value)
        return key
