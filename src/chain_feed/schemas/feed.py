# src/chain_feed/schemas/feed.py
"""Feed-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class PosterResponse(BaseModel):
    """Identity snapshot of a poster."""

    address: str
    stake: str
    age: int
    pubkey: str
    state: str

    model_config = ConfigDict(from_attributes=True)


class PostResponse(BaseModel):
    """Schema for post information returned by the API."""

    post_id: str
    poster: str
    message: str
    timestamp: int
    tx_hash: str
    reply_to_post_id: str
    channel_id: str
    orphaned: bool
    block_height: int | None = None

    model_config = ConfigDict(from_attributes=True)


class PostThreadResponse(BaseModel):
    """A post with its replies and the discussion attached to each reply."""

    post: PostResponse
    poster: PosterResponse | None = None
    reply_ids: list[str] = Field(default_factory=list)
    repaired_reply_ids: list[str] = Field(
        default_factory=list,
        description="Replies that arrived before this post and were reattached later",
    )
    discussions: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Discussion comment ids keyed by the reply they discuss",
    )
    pending_orphan_ids: list[str] = Field(default_factory=list)


class FeedPageResponse(BaseModel):
    """A slice of the ordered root posts."""

    total: int
    offset: int
    posts: list[PostResponse]


class FeedSnapshotResponse(BaseModel):
    """Every structure a renderer needs, keyed as stored."""

    ordered_post_ids: list[str]
    posts: dict[str, PostResponse]
    posters: dict[str, PosterResponse]
    reply_tree: dict[str, str]
    forward_orphaned_tree: dict[str, str]
    backward_orphaned_tree: dict[str, str]
    de_orphaned_tree: dict[str, str]
