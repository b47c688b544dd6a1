"""
koigami.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn koigami.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from koigami.api.deps import get_engine, get_listener, get_registry  # noqa: E402
from koigami.api.routes.gamification import router as gamification_router  # noqa: E402
from koigami.database.engine import supports_notify  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the engine, start LISTEN and the idle-store sweep."""
    engine = get_engine()
    listener = get_listener()
    if supports_notify(engine):
        listener.start_listener()
    else:
        logger.warning("Database has no LISTEN/NOTIFY — pushes are in-process only")
    registry = get_registry()
    registry.start(asyncio.get_running_loop())
    logger.info("Koigami API started — engine ready (%s)", engine.url.database)
    yield
    registry.stop()
    await registry.close_all()
    listener.stop_listener()
    logger.info("Koigami API shutting down")


app = FastAPI(
    title="Koigami Gamification API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(gamification_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/health/listener")
def listener_health():
    listener = get_listener()
    return {
        "healthy": listener.listener_healthy,
        "failed": listener.listener_failed,
    }
