"""Repository pattern implementations for data access.

This module provides data access abstractions for order lifecycle rows and
for the processor checkpoint.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from serum_order_indexer.storage.models import OrderModel, ProcessorStatusModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# 31 columns per row keeps each statement well below the PostgreSQL bind limit.
UPSERT_CHUNK_SIZE = 500

ORDER_STATE_OPENED = "opened"
ORDER_STATE_CLOSED = "closed"

_CHECKPOINT_ROW_ID = 1


@dataclass
class OrderDTO:
    """Data transfer object for an order lifecycle row.

    Field names mirror ``OrderModel`` columns one to one.
    """

    id: str
    state: str

    side: str | None = None
    limit_price: int | None = None
    max_base_quantity: int | None = None
    max_quote_quantity: int | None = None
    self_trade_behavior: str | None = None
    order_type: str | None = None
    client_id: int | None = None
    limit: int | None = None

    market: str | None = None
    bids: str | None = None
    asks: str | None = None
    request_queue: str | None = None
    event_queue: str | None = None

    maker: str | None = None
    taker: str | None = None

    open_order_tx: str | None = None
    opened_at: datetime | None = None
    opened_block: int | None = None

    matched_order_tx: str | None = None
    matched_at: datetime | None = None
    matched_block: int | None = None

    cancelled_tx: str | None = None
    cancelled_at: datetime | None = None
    cancelled_block: int | None = None

    closed_tx: str | None = None
    closed_at: datetime | None = None
    closed_block: int | None = None

    @classmethod
    def from_model(cls, model: OrderModel) -> OrderDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(**{f.name: getattr(model, f.name) for f in dataclasses.fields(cls)})

    def to_values(self) -> dict[str, Any]:
        """Column/value mapping used for inserts."""
        return dataclasses.asdict(self)


ORDER_COLUMNS: tuple[str, ...] = tuple(f.name for f in dataclasses.fields(OrderDTO))


def lookup_rank(order: OrderDTO) -> tuple[bool, int, str]:
    """Sort key for composite-key matches: most recently opened first, then id.

    Mirrors the ORDER BY of ``OrderRepository.find_one_by`` so in-memory and
    stored lookups agree on which order wins.
    """
    opened = order.opened_block
    return (opened is None, -(opened or 0), order.id)


def _dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT."""
    bind = session.bind
    if bind is not None and bind.dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


class OrderRepository:
    """Repository for order lifecycle rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, order_id: str) -> OrderDTO | None:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order_id))
        model = result.scalar_one_or_none()
        return OrderDTO.from_model(model) if model else None

    async def find_one_by(self, **predicate: str | int | None) -> OrderDTO | None:
        """Return one order whose columns equal every value in ``predicate``.

        When several rows match, the most recently opened one wins so the
        answer does not depend on physical row order.
        """
        if not predicate:
            raise ValueError("find_one_by requires at least one column")
        unknown = set(predicate) - set(ORDER_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown order columns: {sorted(unknown)}")

        stmt = select(OrderModel)
        for column, value in predicate.items():
            attr = getattr(OrderModel, column)
            stmt = stmt.where(attr.is_(None) if value is None else attr == value)
        stmt = stmt.order_by(
            OrderModel.opened_block.is_(None),
            OrderModel.opened_block.desc(),
            OrderModel.id,
        ).limit(1)

        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return OrderDTO.from_model(model) if model else None

    async def upsert_many(self, orders: Sequence[OrderDTO]) -> None:
        """Insert or fully overwrite the given orders by primary key.

        Runs inside the caller's transaction; any failure propagates and the
        caller's session rolls the whole batch back.
        """
        if not orders:
            return

        rows = [o.to_values() for o in orders]
        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            chunk = rows[start : start + UPSERT_CHUNK_SIZE]
            stmt = _dialect_insert(self.session, OrderModel).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={c: getattr(stmt.excluded, c) for c in ORDER_COLUMNS if c != "id"},
            )
            await self.session.execute(stmt)
        await self.session.flush()
        logger.debug("Upserted %d orders", len(rows))

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(OrderModel))
        return int(result.scalar_one())


@dataclass
class ProcessorStatusDTO:
    """Data transfer object for the processor checkpoint."""

    slot: int
    height: int | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ProcessorStatusModel) -> ProcessorStatusDTO:
        return cls(slot=model.slot, height=model.height, updated_at=model.updated_at)


class ProcessorStatusRepository:
    """Repository for the single-row processor checkpoint."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self) -> ProcessorStatusDTO | None:
        result = await self.session.execute(
            select(ProcessorStatusModel).where(ProcessorStatusModel.id == _CHECKPOINT_ROW_ID)
        )
        model = result.scalar_one_or_none()
        return ProcessorStatusDTO.from_model(model) if model else None

    async def save(self, *, slot: int, height: int | None) -> None:
        now = datetime.now(UTC)
        stmt = _dialect_insert(self.session, ProcessorStatusModel).values(
            id=_CHECKPOINT_ROW_ID, slot=slot, height=height, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={"slot": stmt.excluded.slot, "height": stmt.excluded.height, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()
