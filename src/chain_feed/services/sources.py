"""Scan source adapters.

Two interchangeable suppliers of transaction batches:

- `BlockWalkSource` walks block heights one at a time over node RPC;
- `IndexerSource` pages through the indexer's balance-updates listing with
  a continuation token, falling back from the current contract to the
  legacy one when the current contract is exhausted.

Adapters never commit scan state. Each batch carries the contract address
and continuation token the driver should adopt once the batch has been
reconciled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chain_feed.core.protocol import ProtocolConfig, ScanDirection
from chain_feed.services.chain_client import IndexerClient, NodeRpcClient
from chain_feed.services.decoder import TransactionRef

logger = logging.getLogger(__name__)

# Continuation token value marking both contracts as fully paged through
FINISHED_TOKEN = "finished processing"

INDEXER_CALL_CONTRACT = "CallContract"


class BlockNotFoundError(LookupError):
    """Raised when the node has no block at the requested height yet."""


class HistoryExhaustedError(Exception):
    """Raised when the backward scan has nothing left to read."""


@dataclass
class ScanBatch:
    """Transactions supplied by one adapter call."""

    transactions: list[TransactionRef] = field(default_factory=list)
    # Contract whose receipts are accepted for this batch
    contract_address: str = ""
    # Contract the next call of the same driver should target
    next_contract_address: str = ""
    block_height: int | None = None
    block_timestamp: int | None = None
    continuation_token: str | None = None

    @property
    def empty(self) -> bool:
        return not self.transactions


class BlockWalkSource:
    """Sequential block-height traversal over node RPC."""

    def __init__(self, rpc: NodeRpcClient, protocol: ProtocolConfig) -> None:
        self.rpc = rpc
        self.protocol = protocol

    async def fetch(
        self,
        height: int,
        contract_address: str,
        direction: ScanDirection,
    ) -> ScanBatch:
        block = await self.rpc.fetch_block_at(height)
        if block is None:
            raise BlockNotFoundError(f"No block at height {height}")

        target = contract_address
        if (
            direction is ScanDirection.BACKWARD
            and self.protocol.is_pre_v5(block.timestamp)
            and target != self.protocol.contract_address_legacy
        ):
            logger.info(
                "Block %d predates the contract migration, switching to legacy contract %s",
                block.height,
                self.protocol.contract_address_legacy,
            )
            target = self.protocol.contract_address_legacy

        transactions = [
            TransactionRef(tx_hash=tx_hash, timestamp=block.timestamp, block_height=block.height)
            for tx_hash in block.transactions or []
        ]
        return ScanBatch(
            transactions=transactions,
            contract_address=target,
            next_contract_address=target,
            block_height=block.height,
            block_timestamp=block.timestamp,
        )


class IndexerSource:
    """Continuation-token pagination over the indexer with dual-contract fallback."""

    def __init__(
        self,
        indexer: IndexerClient,
        protocol: ProtocolConfig,
        page_limit: int,
    ) -> None:
        self.indexer = indexer
        self.protocol = protocol
        self.page_limit = page_limit

    async def fetch(self, contract_address: str, continuation_token: str | None) -> ScanBatch:
        if continuation_token == FINISHED_TOKEN:
            raise HistoryExhaustedError("Indexer history exhausted on both contracts")

        page = await self.indexer.fetch_page(contract_address, self.page_limit, continuation_token)

        next_contract = contract_address
        next_token: str | None
        if page.continuation_token:
            next_token = page.continuation_token
        elif contract_address.lower() == self.protocol.contract_address_current.lower():
            logger.info(
                "Indexer exhausted contract %s, falling back to legacy contract %s",
                contract_address,
                self.protocol.contract_address_legacy,
            )
            next_contract = self.protocol.contract_address_legacy
            next_token = None
        else:
            next_token = FINISHED_TOKEN

        seen: set[str] = set()
        transactions: list[TransactionRef] = []
        for update in page.result or []:
            receipt = update.tx_receipt
            if update.type != INDEXER_CALL_CONTRACT or receipt is None:
                continue
            if receipt.method != self.protocol.make_post_method or receipt.success is not True:
                continue
            if update.hash in seen:
                continue
            seen.add(update.hash)
            transactions.append(
                TransactionRef(tx_hash=update.hash, timestamp=int(update.timestamp.timestamp()))
            )

        return ScanBatch(
            transactions=transactions,
            contract_address=contract_address,
            next_contract_address=next_contract,
            continuation_token=next_token,
        )
