"""FastAPI application hosting the watch-party signaling server."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response

from .core.config import settings
from .core.logging import setup_logging
from .routers import rooms, rtc
from .services.signaling import SignalingHub

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the signaling hub (and its room directory) for the life of the process."""

    setup_logging()
    app.state.signaling_hub = SignalingHub.from_settings(settings)
    logger.info("Signaling hub ready (room grace period %ss)", settings.room_grace_seconds)
    try:
        yield
    finally:
        await app.state.signaling_hub.close()
        logger.info("Signaling hub closed")


app = FastAPI(title="Watch Party Signaling API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

app.include_router(rtc.router, prefix="/api/rtc", tags=["rtc"])
app.include_router(rooms.router, prefix="/api/rooms", tags=["rooms"])


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    return PlainTextResponse("User-agent: *\nDisallow: /")
