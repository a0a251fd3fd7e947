import logging
import os

from dotenv import load_dotenv

load_dotenv()  # .env from the working directory, before config reads the environment

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fieldwatch")

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .core.backends import GenerativeBackend, build_backend
from .core.feed import FeedSource, MemoryFeed
from .core.model_client import ModelFallbackClient
from .core.orchestrator import InferenceOrchestrator
from .core.rate_limiter import RateLimiter
from .core.session import DashboardSession
from .core.state_store import RealtimeStateStore
from .routers import ai, dashboard, dispatch, report

if config.inference_api_key():
    logger.info("[env] %s key loaded (AI endpoints will call the model)", config.INFERENCE_BACKEND)
else:
    logger.warning(
        "[env] %s key not set; AI endpoints will serve defaults. Set it in .env with no spaces.",
        config.INFERENCE_BACKEND,
    )


def build_feed() -> FeedSource:
    if config.FEED_BACKEND == "firebase":
        from .core.firebase_feed import FirebaseFeed

        logger.info("[feed] using realtime database at %s", config.FIREBASE_DATABASE_URL)
        return FirebaseFeed()
    logger.info("[feed] using in-memory feed")
    return MemoryFeed()


def create_app(
    feed: Optional[FeedSource] = None,
    backend: Optional[GenerativeBackend] = None,
    seed: bool = config.SEED_IF_EMPTY,
) -> FastAPI:
    """
    Passing ``backend`` skips the credential lookup; leave it None to build
    the configured vendor backend (or none at all when no key is set).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        source = feed if feed is not None else build_feed()
        store = RealtimeStateStore(source)
        if seed:
            await store.seed_initial_data()

        generator = backend if backend is not None else build_backend()
        client = ModelFallbackClient(generator, RateLimiter()) if generator is not None else None
        session = DashboardSession(store, InferenceOrchestrator(client))
        session.start()
        app.state.session = session
        try:
            yield
        finally:
            session.close()
            close = getattr(source, "close", None)
            if close is not None:
                close()

    app = FastAPI(title="Fieldwatch Operator Dashboard API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(dashboard.router)
    app.include_router(ai.router)
    app.include_router(report.router)
    app.include_router(dispatch.router)

    @app.get("/health")
    async def health_check() -> dict:
        session: Optional[DashboardSession] = getattr(app.state, "session", None)
        return {
            "status": "ok",
            "inference": session.orchestrator.status.state.value if session else "starting",
            "open_feeds": sorted(session.store.open_feeds) if session else [],
            "auth": config.auth_enabled(),
        }

    return app


app = create_app()
