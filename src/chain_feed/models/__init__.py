# src/chain_feed/models/__init__.py
"""In-memory models for the reconstructed post graph."""

from .graph import FeedGraph, GraphDelta
from .post import Post, PostCandidate, Poster
from .tree import OrdinalTree

__all__ = [
    "FeedGraph", "GraphDelta",
    "Post", "PostCandidate", "Poster",
    "OrdinalTree",
]
