# src/chain_feed/schemas/chain.py
"""Pydantic models for node RPC and indexer API payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SyncingResult(_WireModel):
    """Result of ``bcn_syncing``."""

    syncing: bool = False
    current_block: int | None = Field(None, alias="currentBlock")
    highest_block: int | None = Field(None, alias="highestBlock")


class BlockResult(_WireModel):
    """Result of ``bcn_blockAt`` / ``bcn_block``.

    ``transactions`` is ``None`` when the block carries no transactions.
    """

    height: int
    timestamp: int
    hash: str | None = None
    transactions: list[str] | None = None


class TxReceiptEvent(_WireModel):
    event: str | None = None
    args: list[str] = Field(default_factory=list)


class TxReceipt(_WireModel):
    """Result of ``bcn_txReceipt``."""

    contract: str = ""
    method: str = ""
    success: bool = False
    events: list[TxReceiptEvent] | None = None


class TxMeta(_WireModel):
    """Subset of ``bcn_transaction`` needed for decoding."""

    hash: str | None = None
    timestamp: int
    block_hash: str | None = Field(None, alias="blockHash")


class IdentityResult(_WireModel):
    """Result of ``dna_identity``."""

    address: str
    stake: str = "0"
    age: int = 0
    pubkey: str = ""
    state: str = "Undefined"


class IndexerTxReceipt(_WireModel):
    method: str = ""
    success: bool = False


class IndexerBalanceUpdate(_WireModel):
    """One record of the indexer ``BalanceUpdates`` listing."""

    hash: str
    type: str = ""
    timestamp: datetime
    address: str | None = None
    tx_receipt: IndexerTxReceipt | None = Field(None, alias="txReceipt")


class IndexerPage(_WireModel):
    result: list[IndexerBalanceUpdate] | None = None
    continuation_token: str | None = Field(None, alias="continuationToken")
