# src/chain_feed/services/__init__.py
"""Scanning and reconciliation services for the chain feed."""

from .feed_sync import FeedSyncController
from .reconciler import PostGraphReconciler
from .sources import BlockWalkSource, IndexerSource

__all__ = [
    "FeedSyncController",
    "PostGraphReconciler",
    "BlockWalkSource",
    "IndexerSource",
]
