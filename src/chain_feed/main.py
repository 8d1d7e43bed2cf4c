# src/chain_feed/main.py
"""Main entry point for the Chain Feed service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from chain_feed.api.v1 import feed_router, system_router
from chain_feed.core.settings import settings
from chain_feed.services.chain_client import get_indexer_client, get_node_client
from chain_feed.services.feed_sync import FeedSyncController, get_feed_sync_controller

logging.getLogger("chain_feed").setLevel(settings.log_level.upper())

# Initialize FastAPI app
app = FastAPI(
    title="Chain Feed API",
    description="Threaded social feed reconstructed from on-chain posts",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(feed_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.scan_enabled:
        controller = get_feed_sync_controller()
        await controller.start()
        app.state.feed_sync = controller
    else:
        app.state.feed_sync = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    controller: FeedSyncController | None = getattr(app.state, "feed_sync", None)
    if controller:
        await controller.stop()
        await get_node_client().close()
        await get_indexer_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Chain Feed API",
        "version": settings.app_version,
        "description": "Threaded social feed reconstructed from on-chain posts",
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run("chain_feed.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
