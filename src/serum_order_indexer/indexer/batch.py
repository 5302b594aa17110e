"""Batch-scoped accumulator of projected orders."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

from serum_order_indexer.storage.repos import OrderDTO, lookup_rank

if TYPE_CHECKING:
    from serum_order_indexer.indexer.events import MarketKey


class OrderBatch:
    """Orders touched by one batch, keyed by id, last write wins.

    Iteration order is first-insertion order; replacing an order keeps its
    position.
    """

    def __init__(self) -> None:
        self._orders: dict[str, OrderDTO] = {}

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._orders

    def __iter__(self) -> Iterator[OrderDTO]:
        return iter(self._orders.values())

    def get(self, order_id: str) -> OrderDTO | None:
        return self._orders.get(order_id)

    def put(self, order: OrderDTO) -> None:
        self._orders[order.id] = order

    def find_by_market_key(self, key: MarketKey) -> OrderDTO | None:
        matches = [order for order in self._orders.values() if key.matches(order)]
        return min(matches, key=lookup_rank, default=None)

    def orders(self) -> list[OrderDTO]:
        return list(self._orders.values())
