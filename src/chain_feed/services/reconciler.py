"""Post graph reconciler.

Folds one decoded candidate into the post graph by computing a
`GraphDelta` against the current state without mutating it:

1. Root posts need no placement.
2. A reply (or discussion comment) whose parent is unknown or orphaned is
   appended to the orphan tree of the scan direction and marked orphaned.
3. Otherwise it is appended to the reply tree.

A newly placed, non-orphaned post may unblock children that arrived
before it. The de-orphan cascade moves those children into the reply tree
(forward orphans reversed, then backward orphans in order, which restores
chronological order), records each repaired edge in the de-orphaned tree
and repeats for every promoted post and its discussion channel.
"""

from __future__ import annotations

import logging

from chain_feed.core.protocol import ProtocolConfig, ScanDirection
from chain_feed.models.graph import FeedGraph, GraphDelta
from chain_feed.models.post import PostCandidate, Poster
from chain_feed.models.tree import EMPTY_SLOT, OrdinalTree, child_key
from chain_feed.services.decoder import is_stale_reply

logger = logging.getLogger(__name__)


class _TreeOverlay:
    """Read-through view of a tree plus the writes pending in a delta."""

    def __init__(self, base: OrdinalTree, pending: dict[str, str]) -> None:
        self.base = base
        self.pending = pending
        self._appended: dict[str, int] = {}

    def append(self, parent_id: str, child_id: str) -> str:
        index = self.base.next_index(parent_id) + self._appended.get(parent_id, 0)
        key = child_key(parent_id, index)
        self.pending[key] = child_id
        self._appended[parent_id] = self._appended.get(parent_id, 0) + 1
        return key

    def take_children(self, parent_id: str) -> list[str]:
        """Return the live children of a parent and clear their slots."""
        children: list[str] = []
        size = self.base.next_index(parent_id) + self._appended.get(parent_id, 0)
        for index in range(size):
            key = child_key(parent_id, index)
            value = self.pending.get(key, self.base.get(key))
            if value:
                children.append(value)
                self.pending[key] = EMPTY_SLOT
        return children


class PostGraphReconciler:
    """Computes graph deltas for decoded post candidates."""

    def __init__(self, protocol: ProtocolConfig) -> None:
        self.protocol = protocol

    def reconcile(
        self,
        candidate: PostCandidate,
        graph: FeedGraph,
        direction: ScanDirection,
        poster: Poster | None = None,
    ) -> GraphDelta:
        """Place a candidate. Rejections come back as a delta with ``skipped`` set."""

        if graph.has_post(candidate.post_id):
            return GraphDelta(skipped="duplicate")
        if is_stale_reply(candidate, graph.posts):
            logger.debug(
                "Rejecting %s: reply target %s is not older",
                candidate.post_id,
                candidate.reply_to_post_id,
            )
            return GraphDelta(skipped="stale_reply")

        delta = GraphDelta()
        reply_tree = _TreeOverlay(graph.reply_tree, delta.reply_tree)
        orphan_tree = _TreeOverlay(
            graph.orphan_tree(direction),
            delta.forward_orphans if direction is ScanDirection.FORWARD else delta.backward_orphans,
        )

        parent_id = candidate.parent_id
        if candidate.discussion:
            discussed = graph.posts.get(self.protocol.discussed_post_id(candidate.channel_id))
            parent_orphaned = discussed is None or discussed.orphaned
            delta.channel_updates[candidate.channel_id] = parent_orphaned
        elif parent_id:
            parent_orphaned = graph.is_parent_orphaned(parent_id)
        else:
            parent_orphaned = False

        orphaned = False
        if parent_id:
            if parent_orphaned:
                orphan_tree.append(parent_id, candidate.post_id)
                orphaned = True
            else:
                reply_tree.append(parent_id, candidate.post_id)

        delta.new_post = candidate.to_post(orphaned=orphaned)
        if poster is not None and poster.address not in graph.posters:
            delta.new_poster = poster

        if not orphaned:
            self._cascade(candidate.post_id, graph, delta, reply_tree)

        return delta

    def _cascade(
        self,
        post_id: str,
        graph: FeedGraph,
        delta: GraphDelta,
        reply_tree: _TreeOverlay,
    ) -> None:
        """Promote every orphan transitively waiting on ``post_id``."""

        forward = _TreeOverlay(graph.forward_orphans, delta.forward_orphans)
        backward = _TreeOverlay(graph.backward_orphans, delta.backward_orphans)
        de_orphaned = _TreeOverlay(graph.de_orphaned, delta.de_orphaned)
        discuss = self.protocol.discussion_channel_id

        # Explicit stack in place of recursion; pushed in reverse so pops
        # follow depth-first order.
        stack = [discuss(post_id), post_id]
        visited: set[str] = set()
        while stack:
            parent_id = stack.pop()
            if parent_id in visited:
                continue
            visited.add(parent_id)

            if self.protocol.is_discussion_channel(parent_id) and (
                parent_id in graph.channels or parent_id in delta.channel_updates
            ):
                delta.channel_updates[parent_id] = False

            forward_children = forward.take_children(parent_id)
            backward_children = backward.take_children(parent_id)
            promoted = [*reversed(forward_children), *backward_children]
            if not promoted:
                continue

            logger.info("De-orphaned %d posts under %s", len(promoted), parent_id)
            for child_id in promoted:
                reply_tree.append(parent_id, child_id)
                de_orphaned.append(parent_id, child_id)
                delta.post_mutations[child_id] = False

            for child_id in reversed(promoted):
                stack.append(discuss(child_id))
                stack.append(child_id)

