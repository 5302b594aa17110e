"""Per-batch order lifecycle processing.

For every selected instruction, in delivery order:

    decode → classify → resolve → project → put into the batch

then the batch's orders are upserted into the store in one call.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import assert_never

from serum_order_indexer.indexer.batch import OrderBatch
from serum_order_indexer.indexer.events import (
    CancelOrderEvent,
    CloseOpenOrdersEvent,
    HandlingPath,
    IgnoredEvent,
    InitOpenOrdersEvent,
    MatchOrdersEvent,
    OpenOrderEvent,
    OrderEvent,
    UnknownEvent,
    classify,
)
from serum_order_indexer.indexer.projector import (
    project_cancel,
    project_close,
    project_init,
    project_match,
    project_open,
)
from serum_order_indexer.indexer.resolver import (
    BatchOrderLookup,
    LayeredOrderLookup,
    OrderResolver,
    OrderStore,
    StoreOrderLookup,
)
from serum_order_indexer.ingestor.decoder import (
    DecodedInstruction,
    InstructionDecodeError,
    decode_instruction,
)
from serum_order_indexer.ingestor.models import Block, Instruction
from serum_order_indexer.storage.repos import ORDER_STATE_CLOSED, ORDER_STATE_OPENED, OrderDTO

logger = logging.getLogger(__name__)


class BatchProcessingError(Exception):
    """Raised when an instruction makes the whole batch unprocessable."""

    def __init__(self, message: str, *, slot: int, tx_signature: str | None) -> None:
        super().__init__(message)
        self.slot = slot
        self.tx_signature = tx_signature


@dataclass
class BatchResult:
    """Outcome of one processed batch."""

    orders: list[OrderDTO] = field(default_factory=list)
    instructions: int = 0
    paths: Counter[HandlingPath] = field(default_factory=Counter)
    dropped: int = 0

    @property
    def unknown(self) -> int:
        return self.paths[HandlingPath.UNKNOWN]


class OrderLifecycleProcessor:
    """Turns batches of blocks into upserted order rows.

    Example:
        ```python
        processor = OrderLifecycleProcessor(program_id=SERUM_PROGRAM_ID)
        async with db.get_async_session() as session:
            result = await processor.process_batch(batch.blocks, OrderRepository(session))
        ```
    """

    def __init__(
        self,
        *,
        program_id: str,
        legacy_asks_market_key: bool = False,
        decoder: Callable[[bytes], DecodedInstruction] = decode_instruction,
    ) -> None:
        """Initialize the processor.

        Args:
            program_id: Only instructions of this program are processed.
            legacy_asks_market_key: Key match/cancel lookups on the Asks
                account in place of the market address.
            decoder: Instruction payload decoder.
        """
        self._program_id = program_id
        self._legacy_asks_market_key = legacy_asks_market_key
        self._decode = decoder

    async def process_batch(self, blocks: Sequence[Block], store: OrderStore) -> BatchResult:
        """Project every instruction of ``blocks`` and upsert the result.

        Raises:
            BatchProcessingError: If an instruction payload cannot be decoded.
                Nothing is upserted in that case.
            Exception: Store failures propagate unchanged.
        """
        result = await self.project_batch(blocks, store)
        if result.orders:
            await store.upsert_many(result.orders)
        return result

    async def project_batch(self, blocks: Sequence[Block], store: OrderStore) -> BatchResult:
        """Project every instruction of ``blocks`` without writing anything."""
        batch = OrderBatch()
        resolver = OrderResolver(LayeredOrderLookup(BatchOrderLookup(batch), StoreOrderLookup(store)))
        result = BatchResult()

        for block in blocks:
            for instruction in block.instructions:
                if instruction.program_id != self._program_id:
                    continue
                event = self._classify(instruction, block)
                result.instructions += 1
                result.paths[event.path] += 1

                order = await self.apply(event, resolver)
                if order is not None:
                    batch.put(order)
                elif event.path in (HandlingPath.MATCH, HandlingPath.CANCEL, HandlingPath.CLOSE):
                    result.dropped += 1

        result.orders = batch.orders()
        logger.info(
            "Processed %d instructions (%s), %d orders touched, %d events dropped",
            result.instructions,
            ", ".join(f"{p.value}={n}" for p, n in sorted(result.paths.items())) or "none",
            len(result.orders),
            result.dropped,
        )
        return result

    def _classify(self, instruction: Instruction, block: Block) -> OrderEvent:
        try:
            decoded = self._decode(instruction.data)
            return classify(
                decoded,
                instruction,
                block,
                legacy_asks_market_key=self._legacy_asks_market_key,
            )
        except InstructionDecodeError as e:
            raise BatchProcessingError(
                f"Cannot decode instruction {instruction.address} of tx {instruction.tx_signature} "
                f"at slot {block.slot}: {e}",
                slot=block.slot,
                tx_signature=instruction.tx_signature,
            ) from e

    async def apply(self, event: OrderEvent, resolver: OrderResolver) -> OrderDTO | None:
        """Resolve and project one event.

        Returns:
            The updated order, or None when the event changes nothing.
        """
        match event:
            case OpenOrderEvent():
                order = await resolver.get_or_create(event.order_id, default_state=ORDER_STATE_OPENED)
                return project_open(order, event)
            case InitOpenOrdersEvent():
                # New accounts start as a closed placeholder until an order is placed.
                order = await resolver.get_or_create(event.order_id, default_state=ORDER_STATE_CLOSED)
                return project_init(order, event)
            case MatchOrdersEvent():
                order = await resolver.get_by_market_key(event.key)
                if order is None:
                    logger.debug("matchOrders in tx %s matches no known order", event.context.tx_signature)
                    return None
                return project_match(order, event)
            case CancelOrderEvent():
                order = await resolver.get_by_market_key(event.key)
                if order is None:
                    logger.debug("cancelOrderV2 in tx %s matches no known order", event.context.tx_signature)
                    return None
                return project_cancel(order, event)
            case CloseOpenOrdersEvent():
                order = await resolver.get(event.order_id)
                if order is None:
                    logger.debug("closeOpenOrders for unseen order %s", event.order_id)
                    return None
                return project_close(order, event)
            case IgnoredEvent():
                return None
            case UnknownEvent():
                logger.warning(
                    "Unhandled instruction %s in tx %s (slot %d, height %s): %s",
                    event.tag,
                    event.context.tx_signature,
                    event.context.slot,
                    event.context.block_height,
                    event.fields,
                )
                return None
            case _:
                assert_never(event)
