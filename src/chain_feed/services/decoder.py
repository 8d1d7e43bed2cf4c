"""Event decoder: contract receipts to post candidates.

Decoding depends on the transaction timestamp relative to two breaking
changes of the posting contract:

- before v3 the reply target is hex-encoded decimal text, from v3 on it is
  a raw hex integer;
- before v5 post ids (and non-empty reply targets) carry a legacy prefix,
  because the contract migration restarted id numbering.

Invalid transactions are reported as ``None`` (skip and continue), never
as errors.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from chain_feed.core.protocol import ProtocolConfig
from chain_feed.models.post import Post, PostCandidate, Poster
from chain_feed.schemas.chain import TxReceipt
from chain_feed.services.chain_client import NodeRpcClient
from chain_feed.utils.hexcodec import hex_to_int, hex_to_str

logger = logging.getLogger(__name__)

# Event argument positions of the posting event
ARG_POSTER = 0
ARG_POST_ID = 1
ARG_CHANNEL_ID = 2
ARG_MESSAGE = 3
ARG_REPLY_TO = 4

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\u200b-\u200f\u202a-\u202e\u2066-\u2069]")


@dataclass(frozen=True)
class TransactionRef:
    """A transaction hash handed over by a scan source."""

    tx_hash: str
    timestamp: int | None = None
    block_height: int | None = None


@dataclass(frozen=True)
class TransactionDetails:
    """A transaction together with its receipt, ready for decoding."""

    tx_hash: str
    timestamp: int
    receipt: TxReceipt
    block_height: int | None = None
    block_hash: str | None = None


def sanitize_message(text: str) -> str:
    """Normalize post text and strip control and bidi-override characters."""
    normalized = unicodedata.normalize("NFC", text.replace("\r\n", "\n").replace("\r", "\n"))
    return _CONTROL_CHARS.sub("", normalized).strip()


def decode_post_id(raw: str | None) -> str:
    value = hex_to_int(raw)
    return "" if value is None else str(value)


def decode_reply_to(raw: str | None, timestamp: int, protocol: ProtocolConfig) -> str:
    """Decode the reply target into a plain decimal id (unprefixed)."""
    if not raw:
        return ""
    if protocol.is_pre_v3(timestamp):
        text = hex_to_str(raw).strip()
        return text if text.isdigit() else ""
    return decode_post_id(raw)


def decode_candidate(
    details: TransactionDetails,
    protocol: ProtocolConfig,
    contract_address: str,
) -> PostCandidate | None:
    """Turn one transaction into a post candidate, or None to skip it."""

    receipt = details.receipt
    if receipt.contract.lower() != contract_address.lower():
        return None
    if receipt.method != protocol.make_post_method:
        return None
    if receipt.success is not True:
        return None
    if not receipt.events or len(receipt.events[0].args) <= ARG_MESSAGE:
        logger.debug("Skipping %s: posting event missing", details.tx_hash)
        return None

    args = receipt.events[0].args
    timestamp = details.timestamp

    raw_post_id = decode_post_id(args[ARG_POST_ID])
    if not raw_post_id:
        logger.debug("Skipping %s: empty post id", details.tx_hash)
        return None

    raw_channel = hex_to_str(args[ARG_CHANNEL_ID])
    discussion = False
    if raw_channel == protocol.main_channel_id:
        channel_id = protocol.main_channel_id
    else:
        match = protocol.discussion_channel_pattern.match(raw_channel)
        if match is None:
            logger.debug("Skipping %s: foreign channel %r", details.tx_hash, raw_channel)
            return None
        discussion = True
        channel_id = protocol.discussion_channel_id(
            protocol.decorate_post_id(match.group(1), timestamp)
        )

    message = sanitize_message(hex_to_str(args[ARG_MESSAGE]))
    if not message:
        logger.debug("Skipping %s: empty message", details.tx_hash)
        return None

    raw_reply = args[ARG_REPLY_TO] if len(args) > ARG_REPLY_TO else None
    reply_to_post_id = decode_reply_to(raw_reply, timestamp, protocol)

    return PostCandidate(
        post_id=protocol.decorate_post_id(raw_post_id, timestamp),
        poster=args[ARG_POSTER],
        message=message,
        timestamp=timestamp,
        tx_hash=details.tx_hash,
        reply_to_post_id=protocol.decorate_post_id(reply_to_post_id, timestamp),
        channel_id=channel_id,
        block_height=details.block_height,
        discussion=discussion,
    )


def is_stale_reply(candidate: PostCandidate, posts: Mapping[str, Post]) -> bool:
    """A reply must be strictly newer than a reply target that is already known."""
    if not candidate.reply_to_post_id:
        return False
    target = posts.get(candidate.reply_to_post_id)
    if target is None:
        return False
    return not target.timestamp < candidate.timestamp


async def load_transaction_details(
    rpc: NodeRpcClient,
    transactions: Sequence[TransactionRef],
) -> list[TransactionDetails]:
    """Fetch receipt and timestamp for each transaction, preserving order.

    Transactions the node does not know are dropped; transport failures
    propagate to the caller.
    """

    details: list[TransactionDetails] = []
    for transaction in transactions:
        receipt = await rpc.fetch_tx_receipt(transaction.tx_hash)
        if receipt is None:
            continue
        meta = await rpc.fetch_tx_meta(transaction.tx_hash)
        if meta is None:
            continue
        details.append(
            TransactionDetails(
                tx_hash=transaction.tx_hash,
                timestamp=meta.timestamp,
                receipt=receipt,
                block_height=transaction.block_height,
                block_hash=meta.block_hash,
            )
        )
    return details


async def fetch_poster(rpc: NodeRpcClient, address: str) -> Poster:
    """Load an identity snapshot for a first-seen address."""
    identity = await rpc.fetch_identity(address)
    if identity is None:
        return Poster(address=address)
    return Poster(
        address=address,
        stake=identity.stake,
        age=identity.age,
        pubkey=identity.pubkey,
        state=identity.state,
    )
