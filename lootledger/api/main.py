"""
lootledger.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn lootledger.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from lootledger.api.deps import get_engine  # noqa: E402
from lootledger.api.routes.guilds import router as guilds_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Comma-separated ``CORS_ALLOW_ORIGINS``, or nothing."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("Lootledger API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Lootledger API shutting down")


app = FastAPI(
    title="Lootledger API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(guilds_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
