"""SQLAlchemy models for persistent storage.

This module defines the database schema for order lifecycle rows and the
processor checkpoint.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from serum_order_indexer.storage.types import ExactInteger, UTCDateTime


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OrderModel(Base):
    """One Serum open-orders account and its lifecycle markers."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(Text, nullable=False)  # opened/closed

    side: Mapped[str | None] = mapped_column(Text, nullable=True)  # buy/sell
    limit_price: Mapped[int | None] = mapped_column(ExactInteger, nullable=True)
    max_base_quantity: Mapped[int | None] = mapped_column(ExactInteger, nullable=True)
    max_quote_quantity: Mapped[int | None] = mapped_column(ExactInteger, nullable=True)
    self_trade_behavior: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[int | None] = mapped_column(ExactInteger, nullable=True)
    limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    market: Mapped[str | None] = mapped_column(Text, nullable=True)
    bids: Mapped[str | None] = mapped_column(Text, nullable=True)
    asks: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_queue: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_queue: Mapped[str | None] = mapped_column(Text, nullable=True)

    maker: Mapped[str | None] = mapped_column(Text, nullable=True)
    taker: Mapped[str | None] = mapped_column(Text, nullable=True)

    open_order_tx: Mapped[str | None] = mapped_column(Text, nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    opened_block: Mapped[int | None] = mapped_column(Integer, nullable=True)

    matched_order_tx: Mapped[str | None] = mapped_column(Text, nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    matched_block: Mapped[int | None] = mapped_column(Integer, nullable=True)

    cancelled_tx: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_block: Mapped[int | None] = mapped_column(Integer, nullable=True)

    closed_tx: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_block: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_orders_state", "state"),
        Index("idx_orders_bids", "bids"),
        Index("idx_orders_asks", "asks"),
        Index("idx_orders_request_queue", "request_queue"),
        Index("idx_orders_event_queue", "event_queue"),
        Index("idx_orders_maker", "maker"),
        Index("idx_orders_taker", "taker"),
        Index("idx_orders_market", "market"),
    )


class ProcessorStatusModel(Base):
    """Last fully processed slot, committed together with each batch."""

    __tablename__ = "processor_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
