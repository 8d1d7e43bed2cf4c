"""Clients for the blockchain node RPC endpoint and the indexer API.

This module provides the thin HTTP wrappers the scan drivers depend on:

- JSON-RPC client for the node with bounded retry and backoff
- Paginated client for the indexer balance-updates listing
- A circuit breaker and request metrics per client
- Availability flags surfaced to the scan controller
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from chain_feed.core.settings import settings
from chain_feed.schemas.chain import (
    BlockResult,
    IdentityResult,
    IndexerPage,
    SyncingResult,
    TxMeta,
    TxReceipt,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200
HTTP_INTERNAL_SERVER_ERROR = 500


class ChainError(RuntimeError):
    """Base exception raised for upstream chain data failures."""


class ChainUnavailableError(ChainError):
    """Raised when the node RPC endpoint cannot be reached or keeps failing."""


class ChainRpcError(ChainUnavailableError):
    """Raised when the node answers a call with a JSON-RPC error object."""


class IndexerUnavailableError(ChainError):
    """Raised when the indexer API cannot be reached or answers with an error."""


class CircuitState(Enum):
    """Breaker states of an upstream client."""

    CLOSED = "closed"
    OPEN = "open"  # calls fail fast until the recovery timeout elapses
    HALF_OPEN = "half_open"  # one trial call decides


@dataclass
class RequestMetrics:
    """Per-client request counters and latency."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    latency_total: float = 0.0
    latency_min: float | None = None
    latency_max: float = 0.0
    errors: Counter[str] = field(default_factory=Counter)
    calls: Counter[str] = field(default_factory=Counter)

    def record_request(
        self, endpoint: str, latency: float, success: bool, error_type: str | None = None
    ) -> None:
        self.request_count += 1
        self.calls[endpoint] += 1
        self.latency_total += latency
        self.latency_max = max(self.latency_max, latency)
        self.latency_min = latency if self.latency_min is None else min(self.latency_min, latency)
        if success:
            self.success_count += 1
            return
        self.error_count += 1
        if error_type:
            self.errors[error_type] += 1

    def as_dict(self) -> dict[str, Any]:
        count = self.request_count
        return {
            "request_count": count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": self.success_count * 100 / count if count else 0.0,
            "average_response_time": self.latency_total / count if count else 0.0,
            "min_response_time": self.latency_min or 0.0,
            "max_response_time": self.latency_max,
            "error_counts_by_type": dict(self.errors),
            "endpoint_counts": dict(self.calls),
        }


@dataclass
class CircuitBreaker:
    """Fails fast after repeated upstream failures, then lets a trial call through."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0

    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    opened_at: float = 0.0

    def is_open(self) -> bool:
        if self.state is CircuitState.OPEN and time.time() - self.opened_at > self.recovery_timeout:
            self.state = CircuitState.HALF_OPEN
        return self.state is CircuitState.OPEN

    def record_success(self) -> None:
        self.state = CircuitState.CLOSED
        self.failures = 0

    def record_failure(self) -> None:
        self.failures += 1
        self.opened_at = time.time()
        if self.state is CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state is not CircuitState.OPEN:
                logger.warning("Circuit breaker opened after %d failures", self.failures)
            self.state = CircuitState.OPEN

    def status(self) -> dict[str, Any]:
        # Read-only; the half-open transition happens in is_open()
        expired = time.time() - self.opened_at > self.recovery_timeout
        return {
            "state": self.state.value,
            "failure_count": self.failures,
            "last_failure_time": self.opened_at,
            "is_open": self.state is CircuitState.OPEN and not expired,
        }


@dataclass(frozen=True)
class TransportConfig:
    """Immutable configuration shared by the upstream clients."""

    base_url: str
    timeout_seconds: float
    max_retries: int
    retry_backoff_seconds: float
    failure_threshold: int
    recovery_timeout: float
    api_key: str | None = None


def load_node_config() -> TransportConfig:
    """Build node client configuration from global settings."""

    return TransportConfig(
        base_url=settings.node_url,
        api_key=settings.node_api_key,
        timeout_seconds=settings.http_timeout_seconds,
        max_retries=settings.rpc_max_retries,
        retry_backoff_seconds=settings.rpc_retry_backoff_seconds,
        failure_threshold=settings.circuit_failure_threshold,
        recovery_timeout=settings.circuit_recovery_timeout_seconds,
    )


def load_indexer_config() -> TransportConfig:
    """Build indexer client configuration from global settings."""

    return TransportConfig(
        base_url=settings.indexer_api_url,
        timeout_seconds=settings.http_timeout_seconds,
        max_retries=settings.rpc_max_retries,
        retry_backoff_seconds=settings.rpc_retry_backoff_seconds,
        failure_threshold=settings.circuit_failure_threshold,
        recovery_timeout=settings.circuit_recovery_timeout_seconds,
    )


class _UpstreamClient:
    """Shared httpx plumbing: lazy client, retries, breaker, metrics."""

    unavailable_error: type[ChainError] = ChainUnavailableError

    def __init__(
        self,
        config: TransportConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.available = True
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
        )
        self._metrics = RequestMetrics()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        endpoint: str,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request, retrying transport failures with exponential backoff."""

        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            try:
                response = await self._send_once(
                    method, url, endpoint=endpoint, json_data=json_data, params=params
                )
            except self.unavailable_error:
                if self._circuit_breaker.is_open() or attempt == attempts - 1:
                    self.available = False
                    raise
                delay = self.config.retry_backoff_seconds * (2 ** attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs",
                    endpoint,
                    attempt + 1,
                    attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            self.available = True
            return response

        raise self.unavailable_error(f"{endpoint} failed")  # pragma: no cover - loop always returns

    async def _send_once(
        self,
        method: str,
        url: str,
        *,
        endpoint: str,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        if self._circuit_breaker.is_open():
            raise self.unavailable_error(f"{endpoint}: circuit breaker is open - service unavailable")

        client = await self._ensure_client()
        start_time = time.time()
        success = False
        error_type = None

        try:
            response = await client.request(method, url, json=json_data, params=params)
            if response.status_code < HTTP_INTERNAL_SERVER_ERROR:
                self._circuit_breaker.record_success()
                success = True
            else:
                self._circuit_breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise self.unavailable_error(f"{endpoint} responded with {response.status_code}")
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            raise self.unavailable_error(f"{endpoint} request failed: {exc}") from exc
        finally:
            self._metrics.record_request(endpoint, time.time() - start_time, success, error_type)

        return response

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        return self._circuit_breaker.status()

    def get_metrics(self) -> dict[str, Any]:
        return self._metrics.as_dict()

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class NodeRpcClient(_UpstreamClient):
    """JSON-RPC wrapper for the node endpoint."""

    def __init__(
        self,
        config: TransportConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or load_node_config(), transport)

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """Invoke an RPC method and return its ``result`` member."""

        body = {
            "method": method,
            "params": params or [],
            "id": 1,
            "key": self.config.api_key,
        }
        response = await self._request("POST", self.config.base_url, endpoint=method, json_data=body)
        if response.status_code != HTTP_OK:
            self.available = False
            raise ChainUnavailableError(f"{method} responded with {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ChainUnavailableError(f"{method} returned a non-JSON body") from exc

        if not isinstance(payload, dict):
            raise ChainUnavailableError(f"{method} returned an unexpected payload")
        error = payload.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainRpcError(f"{method} failed: {message}")
        return payload.get("result")

    async def fetch_syncing(self) -> SyncingResult | None:
        result = await self.call("bcn_syncing")
        return SyncingResult.model_validate(result) if result else None

    async def fetch_last_block_height(self) -> int | None:
        result = await self.call("bcn_lastBlock")
        return int(result["height"]) if result else None

    async def fetch_block_at(self, height: int) -> BlockResult | None:
        result = await self.call("bcn_blockAt", [height])
        return BlockResult.model_validate(result) if result else None

    async def fetch_block_by_hash(self, block_hash: str) -> BlockResult | None:
        result = await self.call("bcn_block", [block_hash])
        return BlockResult.model_validate(result) if result else None

    async def fetch_tx_receipt(self, tx_hash: str) -> TxReceipt | None:
        result = await self.call("bcn_txReceipt", [tx_hash])
        return TxReceipt.model_validate(result) if result else None

    async def fetch_tx_meta(self, tx_hash: str) -> TxMeta | None:
        result = await self.call("bcn_transaction", [tx_hash])
        return TxMeta.model_validate(result) if result else None

    async def fetch_identity(self, address: str) -> IdentityResult | None:
        result = await self.call("dna_identity", [address])
        return IdentityResult.model_validate(result) if result else None

    async def get_block_height_from_tx_hash(self, tx_hash: str) -> int | None:
        """Resolve the height of the block that included a transaction."""

        meta = await self.fetch_tx_meta(tx_hash)
        if meta is None or not meta.block_hash:
            return None
        block = await self.fetch_block_by_hash(meta.block_hash)
        return block.height if block else None


class IndexerClient(_UpstreamClient):
    """Client for the indexer contract balance-updates listing."""

    unavailable_error = IndexerUnavailableError

    def __init__(
        self,
        config: TransportConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or load_indexer_config(), transport)

    async def fetch_page(
        self,
        contract_address: str,
        limit: int,
        continuation_token: str | None = None,
    ) -> IndexerPage:
        """Fetch one page of balance updates for a contract."""

        params: dict[str, Any] = {"limit": str(limit)}
        if continuation_token:
            params["continuationToken"] = continuation_token

        base_url = self.config.base_url.rstrip("/")
        path = f"api/Address/{contract_address}/Contract/{contract_address}/BalanceUpdates"
        response = await self._request(
            "GET", f"{base_url}/{path}", endpoint="BalanceUpdates", params=params
        )

        if response.status_code != HTTP_OK:
            self.available = False
            raise IndexerUnavailableError(
                f"Unexpected indexer response ({response.status_code}) for {contract_address}"
            )

        try:
            return IndexerPage.model_validate(response.json())
        except ValueError as exc:
            raise IndexerUnavailableError("Indexer returned an unreadable page") from exc

    async def validate(self, contract_address: str) -> bool:
        """Probe the indexer with a single-record page for the contract."""

        try:
            page = await self.fetch_page(contract_address, 1)
        except IndexerUnavailableError as exc:
            logger.warning("Indexer validation failed: %s", exc)
            self.available = False
            return False

        records = page.result or []
        valid = len(records) == 1 and (records[0].address or "").lower() == contract_address.lower()
        self.available = valid
        return valid


class _ClientSingleton:
    """Singleton wrapper for the upstream clients."""

    _node: NodeRpcClient | None = None
    _indexer: IndexerClient | None = None

    @classmethod
    def node(cls) -> NodeRpcClient:
        if cls._node is None:
            cls._node = NodeRpcClient()
        return cls._node

    @classmethod
    def indexer(cls) -> IndexerClient:
        if cls._indexer is None:
            cls._indexer = IndexerClient()
        return cls._indexer


def get_node_client() -> NodeRpcClient:
    """Return a singleton node RPC client instance."""
    return _ClientSingleton.node()


def get_indexer_client() -> IndexerClient:
    """Return a singleton indexer client instance."""
    return _ClientSingleton.indexer()
