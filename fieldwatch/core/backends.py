"""
Generative text backends. Each exposes one coroutine,
``generate(model_id, prompt) -> str``, and lets the vendor SDK's exceptions
propagate untouched so ModelFallbackClient can classify them.
"""

from __future__ import annotations

import logging
from typing import Protocol

import google.generativeai as genai
from openai import AsyncOpenAI

from .. import config

logger = logging.getLogger(__name__)


class GenerativeBackend(Protocol):
    name: str

    async def generate(self, model_id: str, prompt: str) -> str: ...


class GeminiBackend:
    name = "gemini"

    def __init__(self, api_key: str) -> None:
        genai.configure(api_key=api_key)
        self._models: dict[str, genai.GenerativeModel] = {}

    def _model(self, model_id: str) -> genai.GenerativeModel:
        if model_id not in self._models:
            self._models[model_id] = genai.GenerativeModel(model_name=model_id)
        return self._models[model_id]

    async def generate(self, model_id: str, prompt: str) -> str:
        response = await self._model(model_id).generate_content_async(prompt)
        try:
            return (response.text or "").strip()
        except ValueError:
            # .text raises when the candidate was blocked or carries no parts
            logger.warning("[Gemini] %s returned no text (blocked or empty)", model_id)
            return ""


class OpenAIBackend:
    name = "openai"

    def __init__(self, api_key: str, temperature: float = 0.4) -> None:
        self.client = AsyncOpenAI(api_key=api_key)
        self.temperature = temperature

    async def generate(self, model_id: str, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=model_id,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return (response.choices[0].message.content or "").strip()


def build_backend(kind: str | None = None, api_key: str | None = None) -> GenerativeBackend | None:
    """Backend for the configured vendor, or None when no credential is set."""
    kind = kind or config.INFERENCE_BACKEND
    key = config.inference_api_key() if api_key is None else api_key
    if not key:
        logger.warning("[%s] No API key configured. AI features will serve defaults.", kind)
        return None
    if kind == "openai":
        backend: GenerativeBackend = OpenAIBackend(api_key=key)
    else:
        backend = GeminiBackend(api_key=key)
    logger.info("[%s] Backend initialized (key present)", backend.name)
    return backend
