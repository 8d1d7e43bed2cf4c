# src/chain_feed/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .feed import router as feed_router
from .system import router as system_router

__all__ = [
    "feed_router",
    "system_router",
]
