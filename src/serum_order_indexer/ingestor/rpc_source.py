"""Solana JSON-RPC block source with rate limiting and retry logic.

This module feeds the indexer with batches of blocks:
- Tip tracking via ``getSlot`` and polling once caught up
- Produced-slot listing via ``getBlocks`` (skipped slots never requested)
- Full block fetch via ``getBlock`` (json encoding, v0 transactions)
- Token bucket rate limiting and exponential backoff on transient errors
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx

from serum_order_indexer.ingestor.models import Block, BlockBatch

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS_PER_SECOND = 5.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

# JSON-RPC error codes returned for slots that will never have a block.
SKIPPED_SLOT_ERROR_CODES = (-32007, -32009)
# Block exists but is not yet available on this node.
BLOCK_NOT_AVAILABLE_ERROR_CODE = -32004

COMMITMENT = "finalized"


class SolanaRpcError(Exception):
    """Base exception for Solana RPC errors."""


class SolanaRpcTransientError(SolanaRpcError):
    """Raised for retryable errors (429/5xx, network issues, block not yet available)."""


class RetryError(SolanaRpcError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


class _RpcResponseError(SolanaRpcError):
    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method}: RPC error {code}: {message}")
        self.code = code


class RateLimiter:
    """Token bucket rate limiter for RPC requests."""

    def __init__(self, max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class SolanaRpcClient:
    """Minimal async JSON-RPC client for the calls the block source needs.

    Example:
        ```python
        client = SolanaRpcClient("https://api.mainnet-beta.solana.com")
        tip = await client.get_slot()
        block = await client.get_block(tip)
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the RPC client.

        Args:
            rpc_url: Solana JSON-RPC endpoint URL.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum retry attempts on transient failure.
            retry_base_delay: Initial delay between retries (doubles each time).
            timeout: Per-request timeout in seconds.
            http_client: Optional preconfigured httpx client (tests).
        """
        self._rpc_url = rpc_url
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._rate_limiter = RateLimiter(max_requests_per_second)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _post(self, method: str, params: list[Any]) -> Any:
        await self._rate_limiter.acquire()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._http.post(self._rpc_url, json=payload)
        except httpx.TransportError as e:
            raise SolanaRpcTransientError(f"{method}: transport error: {e}") from e

        if response.status_code in RETRY_STATUS_CODES:
            raise SolanaRpcTransientError(f"{method}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise SolanaRpcError(f"{method}: HTTP {response.status_code}")

        body = response.json()
        error = body.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "")
            if code == BLOCK_NOT_AVAILABLE_ERROR_CODE:
                raise SolanaRpcTransientError(f"{method}: {message}")
            raise _RpcResponseError(method, code, message)
        return body.get("result")

    async def call(self, method: str, params: list[Any]) -> Any:
        """Perform a JSON-RPC call, retrying transient failures with backoff."""
        last_exception: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                return await self._post(method, params)
            except SolanaRpcTransientError as e:
                last_exception = e
                if attempt == self._max_retries:
                    break
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                    attempt + 1,
                    self._max_retries + 1,
                    str(e),
                    delay,
                )
                await asyncio.sleep(delay)

        raise RetryError(
            f"All {self._max_retries + 1} attempts failed for {method}",
            last_exception=last_exception,
        )

    async def get_slot(self) -> int:
        return int(await self.call("getSlot", [{"commitment": COMMITMENT}]))

    async def get_blocks(self, start_slot: int, end_slot: int) -> list[int]:
        result = await self.call("getBlocks", [start_slot, end_slot, {"commitment": COMMITMENT}])
        return [int(s) for s in result or []]

    async def get_block(self, slot: int) -> dict[str, Any] | None:
        """Fetch a full block, or None when the slot was skipped."""
        params = [
            slot,
            {
                "commitment": COMMITMENT,
                "encoding": "json",
                "transactionDetails": "full",
                "maxSupportedTransactionVersion": 0,
                "rewards": False,
            },
        ]
        try:
            result = await self.call("getBlock", params)
        except _RpcResponseError as e:
            if e.code in SKIPPED_SLOT_ERROR_CODES:
                logger.debug("Slot %d has no block: %s", slot, e)
                return None
            raise
        return result


class SolanaBlockSource:
    """Yields consecutive slot ranges as ``BlockBatch`` objects.

    Ranges are contiguous and never overlap: batch N+1 starts at
    ``batch_N.last_slot + 1``, so resuming from a checkpoint is exact.
    """

    def __init__(
        self,
        client: SolanaRpcClient,
        *,
        program_id: str,
        batch_slots: int = 20,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        if batch_slots < 1:
            raise ValueError("batch_slots must be >= 1")
        self._client = client
        self._program_id = program_id
        self._batch_slots = batch_slots
        self._poll_interval = poll_interval_seconds

    async def current_slot(self) -> int:
        return await self._client.get_slot()

    async def iter_batches(self, *, from_slot: int, stop_at_tip: bool = False) -> AsyncIterator[BlockBatch]:
        """Iterate batches starting at ``from_slot``.

        Args:
            from_slot: First slot to scan.
            stop_at_tip: Return once the finalized tip is reached instead of polling.
        """
        next_slot = from_slot
        while True:
            tip = await self._client.get_slot()
            if next_slot > tip:
                if stop_at_tip:
                    return
                await asyncio.sleep(self._poll_interval)
                continue

            end_slot = min(tip, next_slot + self._batch_slots - 1)
            yield await self._fetch_batch(next_slot, end_slot)
            next_slot = end_slot + 1

    async def _fetch_batch(self, first_slot: int, last_slot: int) -> BlockBatch:
        blocks: list[Block] = []
        last_height: int | None = None
        for slot in await self._client.get_blocks(first_slot, last_slot):
            data = await self._client.get_block(slot)
            if data is None:
                continue
            block = Block.from_rpc(slot, data, program_id=self._program_id)
            if block.height is not None:
                last_height = block.height
            if block.instructions:
                blocks.append(block)

        logger.debug(
            "Fetched slots %d-%d: %d blocks with program instructions",
            first_slot,
            last_slot,
            len(blocks),
        )
        return BlockBatch(
            first_slot=first_slot,
            last_slot=last_slot,
            last_height=last_height,
            blocks=tuple(blocks),
        )
