"""Shared post graph state and the deltas that update it.

`FeedGraph` is the single owner of posts, posters and every tree. Drivers
never mutate it directly: they compute a `GraphDelta` and hand it to
`FeedGraph.apply` while holding `FeedGraph.lock`, which serializes merges
between the forward and the backward driver.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from chain_feed.core.protocol import ScanDirection
from chain_feed.models.post import Post, Poster
from chain_feed.models.tree import OrdinalTree


@dataclass
class GraphDelta:
    """Result of reconciling a single candidate against the graph."""

    new_post: Post | None = None
    new_poster: Poster | None = None
    reply_tree: dict[str, str] = field(default_factory=dict)
    forward_orphans: dict[str, str] = field(default_factory=dict)
    backward_orphans: dict[str, str] = field(default_factory=dict)
    de_orphaned: dict[str, str] = field(default_factory=dict)
    # post_id -> new orphaned flag
    post_mutations: dict[str, bool] = field(default_factory=dict)
    # discussion channel id -> inherited orphaned flag
    channel_updates: dict[str, bool] = field(default_factory=dict)
    skipped: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.new_post
            or self.new_poster
            or self.reply_tree
            or self.forward_orphans
            or self.backward_orphans
            or self.de_orphaned
            or self.post_mutations
            or self.channel_updates
        )

    @property
    def promoted_post_ids(self) -> list[str]:
        return [post_id for post_id, orphaned in self.post_mutations.items() if not orphaned]


class FeedGraph:
    """Memory-resident post graph reconstructed from the chain."""

    def __init__(self) -> None:
        self.posts: dict[str, Post] = {}
        self.posters: dict[str, Poster] = {}
        # Placeholder entries for "discuss:<postId>" parents, carrying the
        # orphan status inherited from the discussed post.
        self.channels: dict[str, bool] = {}
        self.reply_tree = OrdinalTree()
        self.forward_orphans = OrdinalTree()
        self.backward_orphans = OrdinalTree()
        self.de_orphaned = OrdinalTree()
        self.ordered_post_ids: list[str] = []
        self.lock = asyncio.Lock()

    def has_post(self, post_id: str) -> bool:
        return post_id in self.posts

    def orphan_tree(self, direction: ScanDirection) -> OrdinalTree:
        if direction is ScanDirection.FORWARD:
            return self.forward_orphans
        return self.backward_orphans

    def is_parent_orphaned(self, parent_id: str) -> bool:
        """True when a parent is unknown or itself orphaned."""
        post = self.posts.get(parent_id)
        if post is not None:
            return post.orphaned
        return self.channels.get(parent_id, True)

    def apply(self, delta: GraphDelta) -> None:
        """Merge a delta. Callers must hold ``lock`` when drivers run concurrently."""

        if delta.new_poster is not None and delta.new_poster.address not in self.posters:
            self.posters[delta.new_poster.address] = delta.new_poster

        self.channels.update(delta.channel_updates)

        for post_id, orphaned in delta.post_mutations.items():
            post = self.posts.get(post_id)
            if post is not None and post.orphaned != orphaned:
                self.posts[post_id] = dataclasses.replace(post, orphaned=orphaned)

        if delta.new_post is not None:
            self.posts[delta.new_post.post_id] = delta.new_post

        for tree, entries in (
            (self.reply_tree, delta.reply_tree),
            (self.forward_orphans, delta.forward_orphans),
            (self.backward_orphans, delta.backward_orphans),
            (self.de_orphaned, delta.de_orphaned),
        ):
            for key, value in entries.items():
                tree.put(key, value)

    def add_root_posts(self, post_ids: Iterable[str], direction: ScanDirection) -> None:
        """Forward discoveries go on top of the feed, backward ones at the bottom."""
        new_ids = [post_id for post_id in post_ids if post_id not in self.ordered_post_ids]
        if direction is ScanDirection.FORWARD:
            self.ordered_post_ids = [*new_ids, *self.ordered_post_ids]
        else:
            self.ordered_post_ids = [*self.ordered_post_ids, *new_ids]

    def children_of(self, parent_id: str) -> list[str]:
        """Non-orphaned children in ordinal order, repaired ones included."""
        return self.reply_tree.children(parent_id)

    def repaired_children_of(self, parent_id: str) -> list[str]:
        """Children that were orphaned before the parent became known."""
        return self.de_orphaned.children(parent_id)

    def discussion_of(self, post_id: str, discuss_prefix: str) -> list[str]:
        return self.children_of(discuss_prefix + post_id)

    def pending_orphans_of(self, parent_id: str) -> list[str]:
        return [
            *self.forward_orphans.children(parent_id),
            *self.backward_orphans.children(parent_id),
        ]

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view of every structure the presentation layer reads."""
        return {
            "ordered_post_ids": list(self.ordered_post_ids),
            "posts": dict(self.posts),
            "posters": dict(self.posters),
            "reply_tree": self.reply_tree.to_dict(),
            "forward_orphaned_tree": self.forward_orphans.to_dict(),
            "backward_orphaned_tree": self.backward_orphans.to_dict(),
            "de_orphaned_tree": self.de_orphaned.to_dict(),
        }


class _FeedGraphSingleton:
    """Singleton wrapper for FeedGraph."""

    _instance: FeedGraph | None = None

    @classmethod
    def get_instance(cls) -> FeedGraph:
        if cls._instance is None:
            cls._instance = FeedGraph()
        return cls._instance


def get_feed_graph() -> FeedGraph:
    """Return the process-wide post graph."""
    return _FeedGraphSingleton.get_instance()
