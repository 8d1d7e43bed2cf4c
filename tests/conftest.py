# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("SCAN_ENABLED", "false")

from chain_feed.core.protocol import ProtocolConfig
from chain_feed.main import app as fastapi_app
from chain_feed.models.graph import FeedGraph, get_feed_graph
from chain_feed.models.post import PostCandidate
from chain_feed.schemas.chain import TxMeta, TxReceipt, TxReceiptEvent
from chain_feed.services.chain_client import IndexerClient, NodeRpcClient

CURRENT_CONTRACT = "0xC5B35B4Dc4359Cc050D502564E789A374f634fA9"
LEGACY_CONTRACT = "0x8d318630eB62A032d2f8073d74f05cbF7c6C87Ae"
POSTER = "0x1111111111111111111111111111111111111111"

# Protocol timeline used throughout the tests
V3_TIMESTAMP = 1_000
V5_TIMESTAMP = 2_000
FIRST_BLOCK = 100


def hex_int(value: int) -> str:
    return "0x" + value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big").hex()


def hex_text(value: str) -> str:
    return "0x" + value.encode("utf-8").hex()


def make_receipt(
    post_id: int,
    message: str,
    *,
    channel: str = "",
    reply_to: str | None = None,
    contract: str = CURRENT_CONTRACT,
    method: str = "makePost",
    success: bool = True,
    poster: str = POSTER,
) -> TxReceipt:
    """Build a posting receipt. ``reply_to`` must already be hex-encoded."""
    args = [poster, hex_int(post_id), hex_text(channel), hex_text(message)]
    if reply_to is not None:
        args.append(reply_to)
    return TxReceipt(
        contract=contract,
        method=method,
        success=success,
        events=[TxReceiptEvent(event="makePost", args=args)],
    )


@pytest.fixture()
def protocol() -> ProtocolConfig:
    return ProtocolConfig(
        contract_address_current=CURRENT_CONTRACT,
        contract_address_legacy=LEGACY_CONTRACT,
        make_post_method="makePost",
        main_channel_id="",
        discuss_prefix="discuss:",
        legacy_post_id_prefix="v1:",
        v3_timestamp=V3_TIMESTAMP,
        v5_timestamp=V5_TIMESTAMP,
        first_block=FIRST_BLOCK,
    )


@pytest.fixture()
def graph() -> FeedGraph:
    return FeedGraph()


@pytest.fixture()
def make_candidate() -> Callable[..., PostCandidate]:
    def _make(
        post_id: str,
        timestamp: int,
        *,
        reply_to: str = "",
        discussion_of: str | None = None,
        poster: str = POSTER,
    ) -> PostCandidate:
        return PostCandidate(
            post_id=post_id,
            poster=poster,
            message=f"message {post_id}",
            timestamp=timestamp,
            tx_hash=f"0xtx{post_id}",
            reply_to_post_id=reply_to,
            channel_id=f"discuss:{discussion_of}" if discussion_of else "",
            discussion=discussion_of is not None,
        )

    return _make


@pytest.fixture()
def mock_rpc() -> AsyncMock:
    rpc = AsyncMock(spec=NodeRpcClient)
    rpc.available = True
    rpc.fetch_identity.return_value = None
    return rpc


@pytest.fixture()
def mock_indexer() -> AsyncMock:
    indexer = AsyncMock(spec=IndexerClient)
    indexer.available = True
    indexer.validate.return_value = True
    return indexer


@pytest.fixture()
def chain_stub(mock_rpc: AsyncMock) -> Callable[[dict[str, tuple[TxReceipt, int]]], None]:
    """Serve receipts and timestamps from a ``{tx_hash: (receipt, timestamp)}`` map."""

    def _install(transactions: dict[str, tuple[TxReceipt, int]]) -> None:
        async def receipt(tx_hash: str) -> TxReceipt | None:
            entry = transactions.get(tx_hash)
            return entry[0] if entry else None

        async def meta(tx_hash: str) -> TxMeta | None:
            entry = transactions.get(tx_hash)
            if entry is None:
                return None
            return TxMeta(hash=tx_hash, timestamp=entry[1], block_hash=f"0xblock{tx_hash}")

        mock_rpc.fetch_tx_receipt.side_effect = receipt
        mock_rpc.fetch_tx_meta.side_effect = meta

    return _install


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def override_graph(app: FastAPI, graph: FeedGraph) -> Iterator[FeedGraph]:
    app.dependency_overrides[get_feed_graph] = lambda: graph
    try:
        yield graph
    finally:
        app.dependency_overrides.pop(get_feed_graph, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def rpc_payload() -> Callable[[Any], dict[str, Any]]:
    def _payload(result: Any) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": 1, "result": result}

    return _payload
