from typing import Optional

import pytest
from google.api_core import exceptions as google_exceptions

from fieldwatch.core.feed import FeedWriteError, MemoryFeed


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedBackend:
    """
    Generative backend that replays a script per model id. Each entry is
    either the text to return or an exception instance to raise.
    """

    name = "fake"

    def __init__(self, script: Optional[dict[str, list]] = None, default: str = "ok") -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default
        self.calls: list[tuple[str, str]] = []

    async def generate(self, model_id: str, prompt: str) -> str:
        self.calls.append((model_id, prompt))
        queue = self.script.get(model_id)
        step = queue.pop(0) if queue else self.default
        if isinstance(step, BaseException):
            raise step
        return step


class FailingWritesFeed(MemoryFeed):
    """Memory feed whose writes to the given paths fail like a dropped connection."""

    def __init__(self, failing: tuple[str, ...], initial=None) -> None:
        super().__init__(initial)
        self.failing = failing

    async def set(self, path, value):
        if path in self.failing:
            raise FeedWriteError(path, "connection reset")
        await super().set(path, value)


def throttled() -> Exception:
    return google_exceptions.ResourceExhausted("429 Resource has been exhausted (e.g. check quota).")


def not_found(model_id: str = "gemini-x") -> Exception:
    return google_exceptions.NotFound(f"models/{model_id} is not found for API version v1beta")


def auth_error() -> Exception:
    return google_exceptions.InvalidArgument("API key not valid. Please pass a valid API key.")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class ReplayingFeed(MemoryFeed):
    """Memory feed that can resend every subscriber its current value, as a reconnecting stream does."""

    def replay(self) -> None:
        for parts, callback in list(self._subs.values()):
            callback(self._read(parts))
