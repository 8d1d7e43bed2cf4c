"""Feed endpoints for reading the reconstructed post graph."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from chain_feed.core.settings import settings
from chain_feed.models.graph import FeedGraph, get_feed_graph
from chain_feed.schemas.feed import (
    FeedPageResponse,
    FeedSnapshotResponse,
    PosterResponse,
    PostResponse,
    PostThreadResponse,
)

router = APIRouter(prefix="/feed", tags=["feed"])

GraphDep = Annotated[FeedGraph, Depends(get_feed_graph)]


@router.get("/posts", response_model=FeedPageResponse)
async def list_root_posts(
    graph: GraphDep,
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> FeedPageResponse:
    """Return root posts, newest discoveries first."""
    post_ids = graph.ordered_post_ids[offset:offset + limit]
    return FeedPageResponse(
        total=len(graph.ordered_post_ids),
        offset=offset,
        posts=[PostResponse.model_validate(graph.posts[post_id]) for post_id in post_ids],
    )


@router.get("/posts/{post_id}", response_model=PostThreadResponse)
async def get_post_thread(post_id: str, graph: GraphDep) -> PostThreadResponse:
    """Return a post, its replies and the discussion under each reply."""
    post = graph.posts.get(post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    reply_ids = graph.children_of(post_id)
    poster = graph.posters.get(post.poster)
    return PostThreadResponse(
        post=PostResponse.model_validate(post),
        poster=PosterResponse.model_validate(poster) if poster else None,
        reply_ids=reply_ids,
        repaired_reply_ids=graph.repaired_children_of(post_id),
        discussions={
            reply_id: graph.discussion_of(reply_id, settings.discuss_prefix)
            for reply_id in reply_ids
        },
        pending_orphan_ids=graph.pending_orphans_of(post_id),
    )


@router.get("/posters/{address}", response_model=PosterResponse)
async def get_poster(address: str, graph: GraphDep) -> PosterResponse:
    poster = graph.posters.get(address)
    if poster is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Poster not found")
    return PosterResponse.model_validate(poster)


@router.get("/snapshot", response_model=FeedSnapshotResponse)
async def get_snapshot(graph: GraphDep) -> FeedSnapshotResponse:
    """Return the whole graph, sufficient to render without re-reconciling."""
    async with graph.lock:
        snapshot = graph.snapshot()
    return FeedSnapshotResponse(
        ordered_post_ids=snapshot["ordered_post_ids"],
        posts={
            post_id: PostResponse.model_validate(post)
            for post_id, post in snapshot["posts"].items()
        },
        posters={
            address: PosterResponse.model_validate(poster)
            for address, poster in snapshot["posters"].items()
        },
        reply_tree=snapshot["reply_tree"],
        forward_orphaned_tree=snapshot["forward_orphaned_tree"],
        backward_orphaned_tree=snapshot["backward_orphaned_tree"],
        de_orphaned_tree=snapshot["de_orphaned_tree"],
    )
