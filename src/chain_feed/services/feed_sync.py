"""Background scanning of the posting contract.

This module provides the FeedSyncController that keeps the post graph in
sync with the chain. It drives two independent loops:

- a forward driver that follows new blocks as they are produced;
- a backward driver that backfills history in time-boxed bursts, via the
  indexer or by walking blocks over RPC.

Both loops share one `BatchPipeline`, which fetches and decodes each batch
and then merges the resulting deltas into the graph under a single hold of
the graph lock. Network I/O of the two loops proceeds concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from chain_feed.core.protocol import ProtocolConfig, ScanDirection, load_protocol_config
from chain_feed.core.settings import Settings, settings
from chain_feed.models.graph import FeedGraph, get_feed_graph
from chain_feed.models.post import PostCandidate, Poster
from chain_feed.services.chain_client import (
    ChainUnavailableError,
    IndexerClient,
    IndexerUnavailableError,
    NodeRpcClient,
    get_indexer_client,
    get_node_client,
)
from chain_feed.services.decoder import (
    TransactionDetails,
    decode_candidate,
    fetch_poster,
    load_transaction_details,
)
from chain_feed.services.reconciler import PostGraphReconciler
from chain_feed.services.sources import (
    BlockNotFoundError,
    BlockWalkSource,
    HistoryExhaustedError,
    IndexerSource,
    ScanBatch,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

BackwardSource = Literal["indexer", "rpc"]


@dataclass
class BatchResult:
    """Outcome of reconciling one batch."""

    accepted: int = 0
    skipped: int = 0
    root_post_ids: list[str] = field(default_factory=list)
    last_valid_transaction: TransactionDetails | None = None


class BatchPipeline:
    """Decodes a batch and folds it into the graph in arrival order."""

    def __init__(
        self,
        rpc: NodeRpcClient,
        graph: FeedGraph,
        protocol: ProtocolConfig,
    ) -> None:
        self.rpc = rpc
        self.graph = graph
        self.protocol = protocol
        self.reconciler = PostGraphReconciler(protocol)

    async def process(self, batch: ScanBatch, direction: ScanDirection) -> BatchResult:
        """Fetch everything the batch needs, then commit it under one lock.

        Every network call happens before the graph is touched, so a
        transport failure leaves the graph as it was and the batch can be
        rescanned as a whole.
        """

        result = BatchResult()
        if batch.empty:
            return result

        details = await load_transaction_details(self.rpc, batch.transactions)
        decoded: list[tuple[TransactionDetails, PostCandidate]] = []
        fetched_posters: dict[str, Poster] = {}

        for transaction in details:
            candidate = decode_candidate(transaction, self.protocol, batch.contract_address)
            if candidate is None:
                result.skipped += 1
                continue
            decoded.append((transaction, candidate))

            address = candidate.poster
            if (
                address not in self.graph.posters
                and address not in fetched_posters
                and not self.graph.has_post(candidate.post_id)
            ):
                fetched_posters[address] = await fetch_poster(self.rpc, address)

        async with self.graph.lock:
            for transaction, candidate in decoded:
                delta = self.reconciler.reconcile(
                    candidate, self.graph, direction, fetched_posters.get(candidate.poster)
                )
                self.graph.apply(delta)

                if delta.skipped:
                    result.skipped += 1
                    continue

                result.accepted += 1
                result.last_valid_transaction = transaction
                if not candidate.parent_id and candidate.channel_id == self.protocol.main_channel_id:
                    result.root_post_ids.append(candidate.post_id)

            if result.root_post_ids:
                self.graph.add_root_posts(result.root_post_ids, direction)

        logger.debug(
            "%s batch: %d accepted, %d skipped",
            direction.value,
            result.accepted,
            result.skipped,
        )
        return result


@dataclass
class ForwardScanState:
    """Watermark of the forward driver."""

    current_block_captured: int = 0

    def next_pending_block(self, initial_block: int) -> int:
        if self.current_block_captured:
            return self.current_block_captured + 1
        return initial_block


@dataclass
class BackwardScanState:
    """Watermark and pagination state of the backward driver."""

    active_contract_address: str
    past_block_captured: int = 0
    partial_watermark: int = 0
    continuation_token: str | None = None
    finished: bool = False

    def next_pending_block(self, initial_block: int) -> int:
        if not self.past_block_captured:
            return initial_block - 1
        if self.partial_watermark:
            return self.partial_watermark
        return self.past_block_captured - 1


class ForwardScanner:
    """Follows the chain head one block per cycle."""

    def __init__(
        self,
        blocks: BlockWalkSource,
        pipeline: BatchPipeline,
        protocol: ProtocolConfig,
    ) -> None:
        self.blocks = blocks
        self.pipeline = pipeline
        self.protocol = protocol
        self.state = ForwardScanState()

    async def scan_once(self, initial_block: int) -> BatchResult | None:
        """Scan the next block. Returns None when it has not been produced yet."""

        pending_block = self.state.next_pending_block(initial_block)
        try:
            batch = await self.blocks.fetch(
                pending_block, self.protocol.contract_address_current, ScanDirection.FORWARD
            )
        except BlockNotFoundError:
            return None

        result = await self.pipeline.process(batch, ScanDirection.FORWARD)
        self.state.current_block_captured = pending_block
        return result


class BackwardScanner:
    """Backfills history one batch per cycle from the configured source."""

    def __init__(
        self,
        blocks: BlockWalkSource,
        indexer: IndexerSource,
        pipeline: BatchPipeline,
        protocol: ProtocolConfig,
        source: BackwardSource = "indexer",
    ) -> None:
        self.blocks = blocks
        self.indexer = indexer
        self.pipeline = pipeline
        self.protocol = protocol
        self.source: BackwardSource = source
        self.state = BackwardScanState(active_contract_address=protocol.contract_address_current)

    async def scan_once(self, initial_block: int) -> BatchResult:
        """Scan one batch and commit the watermark.

        Raises:
            HistoryExhaustedError: once the first relevant block is reached
                or the indexer has paged through both contracts.
        """

        if self.state.finished:
            raise HistoryExhaustedError("Backward scan already finished")

        if self.source == "rpc":
            result, last_block_height = await self._scan_block(initial_block)
        else:
            result, last_block_height = await self._scan_indexer_page()

        if last_block_height is not None and last_block_height <= self.protocol.first_block:
            self.state.finished = True
            raise HistoryExhaustedError(f"Reached first relevant block {self.protocol.first_block}")
        return result

    async def _scan_block(self, initial_block: int) -> tuple[BatchResult, int | None]:
        pending_block = self.state.next_pending_block(initial_block)
        try:
            batch = await self.blocks.fetch(
                pending_block, self.state.active_contract_address, ScanDirection.BACKWARD
            )
        except BlockNotFoundError:
            logger.warning(
                "Node returned no block at height %d, retrying next cycle", pending_block
            )
            return BatchResult(), None

        result = await self.pipeline.process(batch, ScanDirection.BACKWARD)

        self.state.active_contract_address = batch.next_contract_address
        self.state.partial_watermark = 0
        self.state.past_block_captured = pending_block
        return result, pending_block

    async def _scan_indexer_page(self) -> tuple[BatchResult, int | None]:
        batch = await self.indexer.fetch(
            self.state.active_contract_address, self.state.continuation_token
        )
        result = await self.pipeline.process(batch, ScanDirection.BACKWARD)

        last_block_height = None
        last = result.last_valid_transaction
        if last is not None:
            last_block_height = last.block_height
            if last_block_height is None:
                last_block_height = await self.pipeline.rpc.get_block_height_from_tx_hash(
                    last.tx_hash
                )

        self.state.active_contract_address = batch.next_contract_address
        self.state.continuation_token = batch.continuation_token
        if last_block_height is not None:
            self.state.partial_watermark = last_block_height
            self.state.past_block_captured = last_block_height
        return result, last_block_height

    def switch_source(self, source: BackwardSource) -> None:
        """Change adapter mid-scan; the absolute watermark carries over."""
        if source != self.source:
            logger.info("Backward scan source switched from %s to %s", self.source, source)
            self.source = source


class FeedSyncController:
    """Drives the forward and backward scanners and surfaces their status."""

    def __init__(
        self,
        rpc: NodeRpcClient | None = None,
        indexer: IndexerClient | None = None,
        graph: FeedGraph | None = None,
        config: Settings | None = None,
    ) -> None:
        self.config = config or settings
        self.rpc = rpc or get_node_client()
        self.indexer_client = indexer or get_indexer_client()
        self.graph = graph or get_feed_graph()
        self.protocol = load_protocol_config(self.config)

        self.pipeline = BatchPipeline(self.rpc, self.graph, self.protocol)
        blocks = BlockWalkSource(self.rpc, self.protocol)
        self.forward = ForwardScanner(blocks, self.pipeline, self.protocol)
        self.backward = BackwardScanner(
            blocks,
            IndexerSource(self.indexer_client, self.protocol, self.config.indexer_page_limit),
            self.pipeline,
            self.protocol,
            source=self.config.backward_scan_source,
        )

        self.initial_block: int | None = None
        self.node_available = True
        self.indexer_available = True
        self.scanning_past_blocks = False
        self.no_more_past_blocks = False

        self._stopping = asyncio.Event()
        self._forward_task: asyncio.Task[None] | None = None
        self._backward_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the forward loop and the first backward burst."""

        if self._forward_task is None or self._forward_task.done():
            self._stopping.clear()
            self._forward_task = asyncio.create_task(self._run_forward())

    async def stop(self) -> None:
        """Stop rescheduling; in-flight batches complete before the loops exit."""

        self._stopping.set()
        for task in (self._forward_task, self._backward_task):
            if task is not None:
                await task
        self._forward_task = None
        self._backward_task = None

    async def initialize(self) -> bool:
        """Probe the node and capture the chain head as the initial block."""

        try:
            syncing = await self.rpc.fetch_syncing()
            if syncing is None or syncing.syncing:
                logger.warning("Node is unavailable or still syncing, scanning paused")
                self.node_available = False
                return False
            self.initial_block = await self.rpc.fetch_last_block_height()
        except ChainUnavailableError as e:
            logger.warning("Node probe failed: %s", e)
            self.node_available = False
            return False

        self.node_available = True
        if not self.initial_block:
            return False

        logger.info("Scanning from initial block %d", self.initial_block)
        if self.backward.source == "indexer":
            self.indexer_available = await self.indexer_client.validate(
                self.protocol.contract_address_current
            )
        return True

    def request_backward_scan(self, source: BackwardSource | None = None) -> bool:
        """Start (or resume) a backward burst. Returns False once history is exhausted."""

        if source is not None:
            self.backward.switch_source(source)
            if source == "indexer":
                self.indexer_available = True
        if self.no_more_past_blocks:
            return False
        if self._backward_task is not None and not self._backward_task.done():
            return True
        if self.initial_block is None or self._stopping.is_set():
            return False

        self.scanning_past_blocks = True
        self._backward_task = asyncio.create_task(self._run_backward_burst())
        return True

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early once a stop is requested."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _run_forward(self) -> None:
        interval = max(0.1, float(self.config.forward_polling_interval_seconds))
        backoff = max(interval, float(self.config.unavailable_backoff_seconds))

        while not self._stopping.is_set():
            if self.initial_block is None:
                if not await self.initialize():
                    await self._sleep(backoff)
                    continue
                self.request_backward_scan()

            try:
                await self.forward.scan_once(self.initial_block)
            except ChainUnavailableError as e:
                logger.warning("Forward scan paused, node unavailable: %s", e)
                self.node_available = False
                await self._sleep(min(interval * 4, backoff))
                continue
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("Forward scan data processing error: %s", e, exc_info=True)
                await self._sleep(min(interval * 4, backoff))
                continue

            self.node_available = True
            await self._sleep(interval)

    async def _run_backward_burst(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + float(self.config.backward_scan_time_budget_seconds)
        interval = max(0.0, float(self.config.backward_scanning_interval_seconds))

        try:
            while (
                not self._stopping.is_set()
                and self.node_available
                and loop.time() < deadline
                and self.initial_block is not None
            ):
                try:
                    await self.backward.scan_once(self.initial_block)
                except HistoryExhaustedError as e:
                    logger.info("Backward scan finished: %s", e)
                    self.no_more_past_blocks = True
                    return
                except IndexerUnavailableError as e:
                    logger.warning("Backward scan paused, indexer unavailable: %s", e)
                    self.indexer_available = False
                    return
                except ChainUnavailableError as e:
                    logger.warning("Backward scan paused, node unavailable: %s", e)
                    self.node_available = False
                    return
                except (ValueError, TypeError, KeyError, AttributeError) as e:
                    logger.error("Backward scan data processing error: %s", e, exc_info=True)
                    return

                await self._sleep(interval)
        finally:
            self.scanning_past_blocks = False

    def status(self) -> dict[str, Any]:
        """Driver flags, watermarks and transport health."""

        backward = self.backward.state
        return {
            "initial_block": self.initial_block,
            "node_available": self.node_available,
            "indexer_available": self.indexer_available,
            "scanning_past_blocks": self.scanning_past_blocks,
            "no_more_past_blocks": self.no_more_past_blocks,
            "forward": {"current_block_captured": self.forward.state.current_block_captured},
            "backward": {
                "source": self.backward.source,
                "past_block_captured": backward.past_block_captured,
                "partial_watermark": backward.partial_watermark,
                "active_contract_address": backward.active_contract_address,
                "continuation_token": backward.continuation_token,
            },
            "transport": {
                "node": {
                    "available": self.rpc.available,
                    "circuit_breaker": self.rpc.get_circuit_breaker_status(),
                    "metrics": self.rpc.get_metrics(),
                },
                "indexer": {
                    "available": self.indexer_client.available,
                    "circuit_breaker": self.indexer_client.get_circuit_breaker_status(),
                    "metrics": self.indexer_client.get_metrics(),
                },
            },
        }


class _FeedSyncControllerSingleton:
    """Singleton wrapper for FeedSyncController."""

    _instance: FeedSyncController | None = None

    @classmethod
    def get_instance(cls) -> FeedSyncController:
        if cls._instance is None:
            cls._instance = FeedSyncController()
        return cls._instance


def get_feed_sync_controller() -> FeedSyncController:
    """Return the process-wide scan controller."""
    return _FeedSyncControllerSingleton.get_instance()
