"""
Environment-driven settings. Values are read once at import time, so
load_dotenv() must run before this module is imported (see main.py).
"""

import os

PLACEHOLDER_KEYS = {"", "your-gemini-api-key", "your-openai-api-key"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes")


def _list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ── Inference backend ──
INFERENCE_BACKEND: str = os.getenv("INFERENCE_BACKEND", "gemini").strip().lower()
GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "").strip()
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()

DEFAULT_GEMINI_MODELS = [
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
]
DEFAULT_OPENAI_MODELS = ["gpt-4o-mini", "gpt-4o"]

CANDIDATE_MODELS: list[str] = _list(
    "CANDIDATE_MODELS",
    DEFAULT_OPENAI_MODELS if INFERENCE_BACKEND == "openai" else DEFAULT_GEMINI_MODELS,
)

# Tunables in milliseconds
MIN_REQUEST_INTERVAL_MS: int = _int("MIN_REQUEST_INTERVAL_MS", 1000)
BACKOFF_BASE_MS: int = _int("BACKOFF_BASE_MS", 1000)
BACKOFF_CAP_MS: int = _int("BACKOFF_CAP_MS", 10000)
MAX_THROTTLE_RETRIES: int = _int("MAX_THROTTLE_RETRIES", 3)
INFERENCE_DEBOUNCE_MS: int = _int("INFERENCE_DEBOUNCE_MS", 3000)
DEPLOY_SETTLE_MS: int = _int("DEPLOY_SETTLE_MS", 2000)

# Which alerts count as "recent" for threat/recommendation/anomaly prompts
RECENT_ALERT_WINDOW_MINUTES: int = _int("RECENT_ALERT_WINDOW_MINUTES", 60)
RECENT_ALERT_LIMIT: int = _int("RECENT_ALERT_LIMIT", 15)
REPORT_ALERT_LIMIT: int = _int("REPORT_ALERT_LIMIT", 20)

# ── Realtime feed ──
FEED_BACKEND: str = os.getenv("FEED_BACKEND", "memory").strip().lower()
FIREBASE_DATABASE_URL: str = os.getenv("FIREBASE_DATABASE_URL", "").strip().rstrip("/")
FIREBASE_AUTH_TOKEN: str = os.getenv("FIREBASE_AUTH_TOKEN", "").strip()
FEED_TIMEOUT_SECONDS: int = _int("FEED_TIMEOUT_SECONDS", 10)
SEED_IF_EMPTY: bool = _flag("SEED_IF_EMPTY", True)

# ── Identity provider (flow itself lives in the frontend) ──
AUTH_DOMAIN: str = os.getenv("AUTH_DOMAIN", "").strip()
AUTH_CLIENT_ID: str = os.getenv("AUTH_CLIENT_ID", "").strip()

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


def inference_api_key() -> str:
    """Credential for the selected backend, or "" when unset/placeholder."""
    key = OPENAI_API_KEY if INFERENCE_BACKEND == "openai" else GOOGLE_API_KEY
    return "" if key in PLACEHOLDER_KEYS else key


def auth_enabled() -> bool:
    return bool(AUTH_DOMAIN and AUTH_CLIENT_ID)
