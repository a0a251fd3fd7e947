from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """
    Pull a JSON object out of free-form model output: everything from the
    first "{" to the last "}". Markdown fences and surrounding prose are
    ignored. Returns None when there is no span or it does not parse to an
    object.
    """
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def parse_structured(text: str, model: type[M], default: M) -> M:
    """
    Validate the embedded JSON object against ``model``; any failure (no
    object, bad JSON, missing or mistyped keys) yields ``default``. Never raises.
    """
    data = extract_json_object(text)
    if data is None:
        logger.warning("[parser] No JSON object in response, using default %s", model.__name__)
        return default
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "[parser] Response rejected by %s schema (%d errors), using default",
            model.__name__, exc.error_count(),
        )
        return default


def parse_action_list(text: str, limit: int = 5) -> list[str]:
    """Numbered or bulleted lines ("1. x", "2) y", "- z") as plain strings."""
    actions: list[str] = []
    for line in (text or "").splitlines():
        if not _LIST_ITEM.match(line):
            continue
        item = _LIST_ITEM.sub("", line, count=1).strip()
        if item:
            actions.append(item)
        if len(actions) >= limit:
            break
    return actions
