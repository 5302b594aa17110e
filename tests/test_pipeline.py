"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from serum_order_indexer.config import SERUM_PROGRAM_ID, Settings
from serum_order_indexer.indexer.snapshot import SnapshotSynchronizer
from serum_order_indexer.ingestor.models import BlockBatch
from serum_order_indexer.ingestor.rpc_source import RetryError
from serum_order_indexer.pipeline import Pipeline, PipelineError, PipelineState
from serum_order_indexer.storage.database import DatabaseManager
from serum_order_indexer.storage.repos import ORDER_STATE_CLOSED, OrderRepository, ProcessorStatusRepository


class FakeBlockSource:
    """Replays prepared batches from the requested slot onwards."""

    def __init__(self, batches: Sequence[BlockBatch], *, tip: int = 1000, block_forever: bool = False) -> None:
        self.batches = list(batches)
        self.tip = tip
        self.block_forever = block_forever
        self.requested_from: int | None = None

    async def current_slot(self) -> int:
        return self.tip

    async def iter_batches(self, *, from_slot: int, stop_at_tip: bool = False) -> AsyncIterator[BlockBatch]:
        self.requested_from = from_slot
        for batch in self.batches:
            if batch.first_slot >= from_slot:
                yield batch
        if self.block_forever and not stop_at_tip:
            await asyncio.Event().wait()


@pytest.fixture
def mock_settings(tmp_path: Path):
    """Create mock settings for testing."""
    database = MagicMock()
    database.url = f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}"

    solana = MagicMock()
    solana.rpc_url = "https://rpc.test"
    solana.program_id = SERUM_PROGRAM_ID
    solana.start_slot = 0
    solana.batch_slots = 10
    solana.max_requests_per_second = 100.0
    solana.max_retries = 0
    solana.poll_interval_seconds = 0.01
    solana.request_timeout_seconds = 1.0

    snapshot = MagicMock()
    snapshot.enabled = True
    snapshot.path = tmp_path / "orders.json"

    indexer = MagicMock()
    indexer.legacy_asks_market_key = False

    settings = MagicMock(spec=Settings)
    settings.database = database
    settings.solana = solana
    settings.snapshot = snapshot
    settings.indexer = indexer
    return settings


@pytest.fixture
async def db_manager(mock_settings) -> DatabaseManager:
    manager = DatabaseManager(mock_settings.database.url)
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def lifecycle_batches(open_instruction, match_instruction, close_instruction, make_block) -> list[BlockBatch]:
    return [
        BlockBatch(
            first_slot=100,
            last_slot=109,
            last_height=95,
            blocks=(
                make_block(open_instruction("O1", side=1), slot=101, height=90),
                make_block(match_instruction(), slot=105, height=93),
            ),
        ),
        BlockBatch(
            first_slot=110,
            last_slot=119,
            last_height=104,
            blocks=(make_block(close_instruction("O1"), slot=112, height=100),),
        ),
    ]


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, mock_settings) -> None:
        pipeline = Pipeline(mock_settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_settings, db_manager) -> None:
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource([]))
        await pipeline.start()
        assert pipeline.is_running
        assert pipeline.stats.started_at is not None

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, mock_settings, db_manager) -> None:
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource([]))
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError):
                await pipeline.start()
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_settings, db_manager) -> None:
        async with Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource([])) as pipeline:
            assert pipeline.is_running
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_builds_rpc_source_from_settings(self, mock_settings, db_manager) -> None:
        pipeline = Pipeline(mock_settings, db_manager=db_manager)
        await pipeline.start()
        assert pipeline._block_source is not None
        assert pipeline._snapshot is not None
        await pipeline.stop()
        assert pipeline._block_source is None


class TestPipelineRun:
    """Tests for running batches end to end."""

    @pytest.mark.asyncio
    async def test_run_once_commits_orders_checkpoint_and_snapshot(
        self, mock_settings, db_manager, lifecycle_batches
    ) -> None:
        source = FakeBlockSource(lifecycle_batches)
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=source)

        await pipeline.run(from_slot=100, once=True)

        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.stats.batches_processed == 2
        assert pipeline.stats.instructions_processed == 3
        assert pipeline.stats.last_slot == 119

        async with db_manager.get_async_session() as session:
            order = await OrderRepository(session).get_by_id("O1")
            status = await ProcessorStatusRepository(session).get()
        assert order.state == ORDER_STATE_CLOSED
        assert order.maker == "Owner111"
        assert order.matched_block == 93
        assert order.closed_block == 100
        assert status.slot == 119
        assert status.height == 104

        records = json.loads(mock_settings.snapshot.path.read_text())
        assert [r["id"] for r in records] == ["O1"]
        assert records[0]["state"] == "closed"

    @pytest.mark.asyncio
    async def test_resumes_after_checkpoint(self, mock_settings, db_manager, lifecycle_batches) -> None:
        async with db_manager.get_async_session() as session:
            await ProcessorStatusRepository(session).save(slot=109, height=95)

        source = FakeBlockSource(lifecycle_batches)
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=source)
        await pipeline.run(once=True)

        assert source.requested_from == 110
        assert pipeline.stats.batches_processed == 1

    @pytest.mark.asyncio
    async def test_resolve_start_slot_precedence(self, mock_settings, db_manager) -> None:
        source = FakeBlockSource([], tip=5000)
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=source)
        await pipeline.start()
        try:
            assert await pipeline.resolve_start_slot(42) == 42
            assert await pipeline.resolve_start_slot() == 5000

            mock_settings.solana.start_slot = 777
            assert await pipeline.resolve_start_slot() == 777

            async with db_manager.get_async_session() as session:
                await ProcessorStatusRepository(session).save(slot=900, height=None)
            assert await pipeline.resolve_start_slot() == 901
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_decode_failure_rolls_back_batch(
        self, mock_settings, db_manager, open_instruction, make_instruction, make_block
    ) -> None:
        bad = BlockBatch(
            first_slot=100,
            last_slot=109,
            last_height=95,
            blocks=(make_block(open_instruction("O1"), make_instruction(b"\x01", [])),),
        )
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource([bad]))

        with pytest.raises(PipelineError, match="Batch 100-109 failed"):
            await pipeline.run(from_slot=100, once=True)

        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error is not None
        async with db_manager.get_async_session() as session:
            assert await OrderRepository(session).count() == 0
            assert await ProcessorStatusRepository(session).get() is None

    @pytest.mark.asyncio
    async def test_snapshot_failure_keeps_store_result(self, mock_settings, db_manager, lifecycle_batches) -> None:
        snapshot = MagicMock(spec=SnapshotSynchronizer)
        snapshot.sync = AsyncMock(return_value=False)
        pipeline = Pipeline(
            mock_settings,
            db_manager=db_manager,
            block_source=FakeBlockSource(lifecycle_batches),
            snapshot=snapshot,
        )

        await pipeline.run(from_slot=100, once=True)

        assert pipeline.stats.snapshot_failures == 2
        async with db_manager.get_async_session() as session:
            assert await OrderRepository(session).count() == 1

    @pytest.mark.asyncio
    async def test_snapshot_disabled(self, mock_settings, db_manager, lifecycle_batches) -> None:
        mock_settings.snapshot.enabled = False
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource(lifecycle_batches))

        await pipeline.run(from_slot=100, once=True)

        assert not mock_settings.snapshot.path.exists()

    @pytest.mark.asyncio
    async def test_source_failure_raises_pipeline_error(self, mock_settings, db_manager) -> None:
        source = MagicMock()
        source.current_slot = AsyncMock(side_effect=RetryError("All 1 attempts failed for getSlot"))
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=source)

        with pytest.raises(PipelineError, match="Block source failed"):
            await pipeline.run()

        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.errors == 1

    @pytest.mark.asyncio
    async def test_store_failure_raises_pipeline_error(self, mock_settings, db_manager, lifecycle_batches) -> None:
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource(lifecycle_batches))

        with patch.object(OrderRepository, "upsert_many", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(PipelineError, match="Storing batch 100-109 failed: db down"):
                await pipeline.run(from_slot=100, once=True)

        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error == "db down"
        assert pipeline.stats.batches_processed == 0
        async with db_manager.get_async_session() as session:
            assert await ProcessorStatusRepository(session).get() is None

    @pytest.mark.asyncio
    async def test_restart_after_error(self, mock_settings, db_manager, lifecycle_batches) -> None:
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=FakeBlockSource(lifecycle_batches))
        with patch.object(OrderRepository, "upsert_many", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(PipelineError):
                await pipeline.run(from_slot=100, once=True)

        await pipeline.run(from_slot=100, once=True)

        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.stats.batches_processed == 2

    @pytest.mark.asyncio
    async def test_stop_interrupts_polling(self, mock_settings, db_manager, lifecycle_batches) -> None:
        source = FakeBlockSource(lifecycle_batches, block_forever=True)
        pipeline = Pipeline(mock_settings, db_manager=db_manager, block_source=source)

        run = asyncio.create_task(pipeline.run(from_slot=100))
        for _ in range(200):
            if pipeline.stats.batches_processed == 2:
                break
            await asyncio.sleep(0.01)
        await pipeline.stop()
        await asyncio.wait_for(run, timeout=2)

        assert pipeline.stats.batches_processed == 2
        assert pipeline.state == PipelineState.STOPPED
