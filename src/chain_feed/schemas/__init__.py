# src/chain_feed/schemas/__init__.py
"""
Pydantic schemas for upstream payloads and API responses.
"""

from .chain import BlockResult, IdentityResult, IndexerPage, TxMeta, TxReceipt
from .feed import FeedPageResponse, FeedSnapshotResponse, PosterResponse, PostResponse

__all__ = [
    "BlockResult", "IdentityResult", "IndexerPage", "TxMeta", "TxReceipt",
    "FeedPageResponse", "FeedSnapshotResponse", "PosterResponse", "PostResponse",
]
