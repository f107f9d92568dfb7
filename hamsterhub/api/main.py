"""
hamsterhub.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn hamsterhub.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from hamsterhub.api.auth import router as auth_router  # noqa: E402
from hamsterhub.api.deps import get_engine  # noqa: E402
from hamsterhub.api.rate_limit import configure_rate_limiter  # noqa: E402
from hamsterhub.api.routes.currency import router as currency_router  # noqa: E402
from hamsterhub.api.routes.shop import router as shop_router  # noqa: E402
from hamsterhub.database.engine import init_db  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

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
    """Startup/shutdown lifecycle — create tables and the rate limiter."""
    engine = get_engine()
    init_db(engine)
    configure_rate_limiter(engine=engine)
    logger.info("HamsterHub API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("HamsterHub API shutting down")


app = FastAPI(
    title="HamsterHub Shop API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api")
app.include_router(shop_router, prefix="/api")
app.include_router(currency_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
