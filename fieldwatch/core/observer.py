from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Channel(Generic[T]):
    """
    Typed publish/subscribe channel owned by the component whose state it
    announces. Listeners are plain callables; subscribe() returns the handle
    that removes them.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, payload: T) -> None:
        # Copy so a listener may unsubscribe itself while being notified.
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("[%s] listener failed", self.name)

    def __len__(self) -> int:
        return len(self._listeners)
