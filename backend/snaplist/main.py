"""
Main application module for the snaplist backend.

This file sets up the FastAPI application, configures CORS so the
editor frontend can make cross-origin requests, and exposes a simple
health check endpoint.

Each application owns its own segment cache, created in
:func:`create_app` and stored on ``app.state``.  The cache capacity is
read from ``SNAPLIST_CACHE_MAX_RECORDS``; when unset the cache keeps
every record for the lifetime of the process.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from PIL import Image

from .api.routes_masks import router as masks_router
from .api.routes_segments import router as segments_router
from .services.segment_cache import DEFAULT_HASH_SIZE, DEFAULT_NUM_HASHES, LSHMaskCache

logger = logging.getLogger(__name__)


def cache_capacity_from_env() -> Optional[int]:
    """Read the optional cache capacity from ``SNAPLIST_CACHE_MAX_RECORDS``."""
    raw = os.getenv("SNAPLIST_CACHE_MAX_RECORDS", "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid SNAPLIST_CACHE_MAX_RECORDS=%r", raw)
        return None
    return value if value > 0 else None


def create_app(
    cache: Optional[LSHMaskCache] = None,
    enrich: Optional[Callable[[Image.Image], str]] = None,
) -> FastAPI:
    """Factory to create and configure the FastAPI application.

    Args:
        cache: Segment cache to use.  A new one is created when omitted.
        enrich: Optional hook describing a freshly cut sticker; its
            output is cached alongside the segment.

    Returns:
        FastAPI: The configured FastAPI application instance.
    """
    app = FastAPI(title="snaplist")

    if cache is None:
        cache = LSHMaskCache(DEFAULT_NUM_HASHES, DEFAULT_HASH_SIZE, cache_capacity_from_env())
    app.state.segment_cache = cache
    app.state.enrich = enrich

    # Allow all origins by default.  In production you should restrict
    # this to the domains that are allowed to access your API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(masks_router, prefix="/api", tags=["masks"])
    app.include_router(segments_router, prefix="/api", tags=["segments"])

    logger.info(
        "snaplist app created (cache: %d hashes x %d bits, max_records=%s)",
        cache.num_hashes,
        cache.hash_size,
        cache.max_records,
    )
    return app


# Create the application instance.  Uvicorn will import this when
# running ``uvicorn snaplist.main:app`` from within ``backend``.
app = create_app()
