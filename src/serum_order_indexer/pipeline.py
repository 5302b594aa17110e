"""Main pipeline orchestrator for the Serum order indexer.

This module provides the Pipeline class that wires the block source, the
order lifecycle processor, the order store and the JSON snapshot together.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from serum_order_indexer.config import Settings, get_settings
from serum_order_indexer.indexer.processor import (
    BatchProcessingError,
    BatchResult,
    OrderLifecycleProcessor,
)
from serum_order_indexer.indexer.snapshot import SnapshotSynchronizer
from serum_order_indexer.ingestor.rpc_source import SolanaBlockSource, SolanaRpcClient, SolanaRpcError
from serum_order_indexer.storage.database import DatabaseManager
from serum_order_indexer.storage.repos import OrderRepository, ProcessorStatusRepository

if TYPE_CHECKING:
    from serum_order_indexer.ingestor.models import BlockBatch

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Raised when the pipeline cannot continue."""


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    batches_processed: int = 0
    instructions_processed: int = 0
    orders_upserted: int = 0
    unknown_events: int = 0
    dropped_events: int = 0
    snapshot_failures: int = 0
    errors: int = 0
    last_slot: int | None = None
    last_height: int | None = None
    last_batch_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for the Serum order indexer.

    Pipeline flow:
        Block Source → Order Lifecycle Processor → Order Store (+ checkpoint) → Snapshot

    Each batch is committed together with its checkpoint in one transaction;
    the snapshot is synchronized afterwards and its failures are not fatal.

    Example:
        ```python
        from serum_order_indexer.config import get_settings
        from serum_order_indexer.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.run()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_manager: DatabaseManager | None = None,
        block_source: SolanaBlockSource | None = None,
        snapshot: SnapshotSynchronizer | None = None,
        processor: OrderLifecycleProcessor | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db_manager: Preconfigured database manager (created from settings otherwise).
            block_source: Preconfigured block source (created from settings otherwise).
            snapshot: Preconfigured snapshot synchronizer (created from settings
                otherwise, unless snapshots are disabled).
            processor: Preconfigured processor (created from settings otherwise).
        """
        self._settings = settings or get_settings()

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._db_manager = db_manager
        self._block_source = block_source
        self._snapshot = snapshot
        self._processor = processor
        self._rpc_client: SolanaRpcClient | None = None

        self._run_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
        """
        if self._state not in (PipelineState.STOPPED, PipelineState.ERROR):
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logger.info("Starting pipeline...")
        try:
            self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state in (PipelineState.STOPPED, PipelineState.STOPPING):
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        task = self._run_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._run_task = None

        await self._cleanup()
        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def _initialize_components(self) -> None:
        settings = self._settings

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)

        if self._block_source is None:
            logger.debug("Initializing Solana RPC client...")
            self._rpc_client = SolanaRpcClient(
                settings.solana.rpc_url,
                max_requests_per_second=settings.solana.max_requests_per_second,
                max_retries=settings.solana.max_retries,
                timeout=settings.solana.request_timeout_seconds,
            )
            self._block_source = SolanaBlockSource(
                self._rpc_client,
                program_id=settings.solana.program_id,
                batch_slots=settings.solana.batch_slots,
                poll_interval_seconds=settings.solana.poll_interval_seconds,
            )

        if self._processor is None:
            self._processor = OrderLifecycleProcessor(
                program_id=settings.solana.program_id,
                legacy_asks_market_key=settings.indexer.legacy_asks_market_key,
            )

        if self._snapshot is None and settings.snapshot.enabled:
            self._snapshot = SnapshotSynchronizer(settings.snapshot.path)

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._rpc_client is not None:
            await self._rpc_client.aclose()
            self._rpc_client = None
            self._block_source = None

        if self._db_manager is not None:
            await self._db_manager.dispose_async()

        logger.debug("Resources cleaned up")

    async def resolve_start_slot(self, from_slot: int | None = None) -> int:
        """Pick the first slot to scan.

        Precedence: explicit ``from_slot``, then the slot after the stored
        checkpoint, then the configured start slot, then the current tip.
        """
        if from_slot is not None:
            return from_slot

        assert self._db_manager is not None
        async with self._db_manager.get_async_session() as session:
            status = await ProcessorStatusRepository(session).get()
        if status is not None:
            logger.info("Resuming after checkpoint slot %d", status.slot)
            return status.slot + 1

        if self._settings.solana.start_slot > 0:
            return self._settings.solana.start_slot

        assert self._block_source is not None
        tip = await self._block_source.current_slot()
        logger.info("No checkpoint found, starting at current tip %d", tip)
        return tip

    async def process_batch(self, batch: BlockBatch) -> BatchResult:
        """Commit one batch of blocks together with its checkpoint.

        Raises:
            BatchProcessingError: If an instruction cannot be decoded. The
                transaction is rolled back and the checkpoint is unchanged.
        """
        assert self._db_manager is not None
        assert self._processor is not None

        async with self._db_manager.get_async_session() as session:
            result = await self._processor.process_batch(batch.blocks, OrderRepository(session))
            await ProcessorStatusRepository(session).save(slot=batch.last_slot, height=batch.last_height)

        self._stats.batches_processed += 1
        self._stats.instructions_processed += result.instructions
        self._stats.orders_upserted += len(result.orders)
        self._stats.unknown_events += result.unknown
        self._stats.dropped_events += result.dropped
        self._stats.last_slot = batch.last_slot
        if batch.last_height is not None:
            self._stats.last_height = batch.last_height
        self._stats.last_batch_time = datetime.now(UTC)

        if self._snapshot is not None and result.orders:
            if not await self._snapshot.sync(result.orders):
                self._stats.snapshot_failures += 1

        logger.info(
            "Committed slots %d-%d: %d blocks, %d instructions, %d orders",
            batch.first_slot,
            batch.last_slot,
            len(batch.blocks),
            result.instructions,
            len(result.orders),
        )
        return result

    async def _consume(self, from_slot: int | None, *, once: bool) -> None:
        assert self._block_source is not None
        start_slot = await self.resolve_start_slot(from_slot)
        logger.info("Indexing from slot %d", start_slot)

        async for batch in self._block_source.iter_batches(from_slot=start_slot, stop_at_tip=once):
            try:
                await self.process_batch(batch)
            except BatchProcessingError as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.exception("Batch %d-%d failed", batch.first_slot, batch.last_slot)
                raise PipelineError(f"Batch {batch.first_slot}-{batch.last_slot} failed: {e}") from e
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.exception("Storing batch %d-%d failed", batch.first_slot, batch.last_slot)
                raise PipelineError(f"Storing batch {batch.first_slot}-{batch.last_slot} failed: {e}") from e

    async def run(self, *, from_slot: int | None = None, once: bool = False) -> None:
        """Start the pipeline and index until stopped.

        Args:
            from_slot: Override the starting slot (ignores the checkpoint).
            once: Return after catching up with the current tip instead of polling.

        Raises:
            PipelineError: If a batch cannot be processed or stored, or the RPC
                source fails. The pipeline is left in the ERROR state.
        """
        await self.start()
        self._run_task = asyncio.create_task(self._consume(from_slot, once=once))
        try:
            await self._run_task
        except asyncio.CancelledError:
            pass
        except SolanaRpcError as e:
            self._state = PipelineState.ERROR
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Block source failed")
            raise PipelineError(f"Block source failed: {e}") from e
        except PipelineError:
            self._state = PipelineState.ERROR
            raise
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Pipeline failed")
            raise PipelineError(f"Pipeline failed: {e}") from e
        finally:
            failed = self._state == PipelineState.ERROR
            await self.stop()
            if failed:
                self._state = PipelineState.ERROR

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
