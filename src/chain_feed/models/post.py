"""Post and poster value objects."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Poster:
    """Identity snapshot of an address, captured once on first sighting."""

    address: str
    stake: str = "0"
    age: int = 0
    pubkey: str = ""
    state: str = "Undefined"


@dataclass(frozen=True)
class Post:
    """A post reconstructed from a contract event.

    Everything except ``orphaned`` is fixed at insertion; the graph swaps in
    a copy when the flag flips during orphan repair.
    """

    post_id: str
    poster: str
    message: str
    timestamp: int
    tx_hash: str
    reply_to_post_id: str = ""
    channel_id: str = ""
    orphaned: bool = False
    block_height: int | None = None


@dataclass(frozen=True)
class PostCandidate:
    """Decoder output: a valid post that has not been placed in the graph yet."""

    post_id: str
    poster: str
    message: str
    timestamp: int
    tx_hash: str
    reply_to_post_id: str = ""
    channel_id: str = ""
    block_height: int | None = None
    discussion: bool = False

    @property
    def parent_id(self) -> str:
        """Parent identity used for tree placement.

        Discussion comments hang off their synthetic channel id, everything
        else off the declared reply target.
        """
        if self.discussion:
            return self.channel_id
        return self.reply_to_post_id

    def to_post(self, *, orphaned: bool = False) -> Post:
        return Post(
            post_id=self.post_id,
            poster=self.poster,
            message=self.message,
            timestamp=self.timestamp,
            tx_hash=self.tx_hash,
            reply_to_post_id=self.reply_to_post_id,
            channel_id=self.channel_id,
            orphaned=orphaned,
            block_height=self.block_height,
        )
