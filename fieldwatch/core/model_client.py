"""
One logical "generate text" request against an ordered list of candidate
models, with throttling backoff and terminal-error classification.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

import openai
from google.api_core import exceptions as google_exceptions

from .. import config
from .backends import GenerativeBackend
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    THROTTLED = "throttled"
    UNAVAILABLE = "unavailable"   # model not found / not supported
    AUTH = "auth"
    PERMISSION = "permission"
    INVALID = "invalid"
    OTHER = "other"


class InferenceError(Exception):
    """Base for every failure surfaced by the inference stack."""


class BackendNotConfigured(InferenceError):
    pass


class RateLimitExceeded(InferenceError):
    def __init__(self, model_id: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Rate limit exceeded on {model_id}. Please wait a few moments before trying again."
        )
        self.model_id = model_id
        self.cause = cause


class AllCandidatesFailed(InferenceError):
    def __init__(self, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error is not None else "no candidate models configured"
        super().__init__(f"All candidate models failed. Last error: {detail}")
        self.last_error = last_error


class BackendRequestError(InferenceError):
    def __init__(self, kind: ErrorKind, model_id: str, cause: BaseException) -> None:
        super().__init__(f"{kind.value} error from {model_id}: {cause}")
        self.kind = kind
        self.model_id = model_id
        self.cause = cause


_THROTTLE_MARKERS = ("429", "resource_exhausted", "rate limit", "too many requests", "quota")
_UNAVAILABLE_MARKERS = ("model_not_found", "is not found", "not supported", "does not exist")
_AUTH_MARKERS = ("api_key_invalid", "api key not valid", "invalid api key", "unauthenticated")


# Vendor exception types, checked before status codes and message text.
_TYPED_KINDS = (
    (
        (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests, openai.RateLimitError),
        ErrorKind.THROTTLED,
    ),
    ((google_exceptions.NotFound, openai.NotFoundError), ErrorKind.UNAVAILABLE),
    ((google_exceptions.Unauthenticated, openai.AuthenticationError), ErrorKind.AUTH),
    (
        (google_exceptions.PermissionDenied, google_exceptions.Forbidden, openai.PermissionDeniedError),
        ErrorKind.PERMISSION,
    ),
)


def _status_code(exc: BaseException) -> Optional[int]:
    # google.api_core exceptions carry .code, openai.APIStatusError carries .status_code
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    for types, kind in _TYPED_KINDS:
        if isinstance(exc, types):
            return kind

    status = _status_code(exc)
    message = str(exc).lower()

    if status == 429 or any(m in message for m in _THROTTLE_MARKERS):
        return ErrorKind.THROTTLED
    if status == 404 or any(m in message for m in _UNAVAILABLE_MARKERS):
        return ErrorKind.UNAVAILABLE
    if status == 401 or any(m in message for m in _AUTH_MARKERS):
        return ErrorKind.AUTH
    if status == 403 or "permission_denied" in message:
        return ErrorKind.PERMISSION
    if status == 400:
        return ErrorKind.INVALID
    return ErrorKind.OTHER


def backoff_delay(retry: int, base: float, cap: float) -> float:
    """Delay before the ``retry``-th retry (0-based): base, 2*base, 4*base ... capped."""
    return min(base * (2 ** retry), cap)


class ModelFallbackClient:
    """
    Tries ``candidate_models`` in order until one answers.

    - throttled: retry the same model with exponential backoff; when retries
      run out the whole request fails with RateLimitExceeded.
    - unavailable: move on to the next model; AllCandidatesFailed when none remain.
    - anything else: BackendRequestError immediately, no other model is tried.

    Every attempt, including each retry, waits on the rate limiter first, so
    backoff delays and request spacing both apply.
    """

    def __init__(
        self,
        backend: GenerativeBackend,
        limiter: RateLimiter,
        candidate_models: Sequence[str] = tuple(config.CANDIDATE_MODELS),
        max_retries: int = config.MAX_THROTTLE_RETRIES,
        backoff_base: float = config.BACKOFF_BASE_MS / 1000,
        backoff_cap: float = config.BACKOFF_CAP_MS / 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.limiter = limiter
        self.candidate_models = list(candidate_models)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._sleep = sleep

    async def generate(self, prompt: str, candidate_models: Optional[Sequence[str]] = None) -> str:
        models = list(candidate_models) if candidate_models is not None else self.candidate_models
        if not models:
            raise BackendNotConfigured("no candidate models configured")
        last_error: BaseException | None = None

        for model_id in models:
            retries = 0
            while True:
                await self.limiter.acquire()
                try:
                    return await self.backend.generate(model_id, prompt)
                except Exception as exc:
                    kind = classify_error(exc)
                    if kind is ErrorKind.THROTTLED:
                        if retries >= self.max_retries:
                            logger.error(
                                "[%s] Rate limit exceeded on %s after %d retries",
                                self.backend.name, model_id, retries,
                            )
                            raise RateLimitExceeded(model_id, exc) from exc
                        delay = backoff_delay(retries, self.backoff_base, self.backoff_cap)
                        retries += 1
                        logger.warning(
                            "[%s] Rate limit hit (429). Retrying %s in %.1fs (attempt %d/%d)",
                            self.backend.name, model_id, delay, retries, self.max_retries,
                        )
                        await self._sleep(delay)
                        continue

                    if kind is ErrorKind.UNAVAILABLE:
                        logger.warning(
                            "[%s] Model %s unavailable, trying next: %s", self.backend.name, model_id, exc
                        )
                        last_error = exc
                        break

                    logger.error(
                        "[%s] Non-model error on %s (%s), not trying other models: %s",
                        self.backend.name, model_id, kind.value, exc,
                    )
                    raise BackendRequestError(kind, model_id, exc) from exc

        logger.error("[%s] All models failed. Last error: %s", self.backend.name, last_error)
        raise AllCandidatesFailed(last_error)
