"""Order resolution: find the order an event refers to.

Lookups go through the ``OrderLookup`` capability. Two backends exist, the
in-progress batch and the persistent store, and ``LayeredOrderLookup``
composes them so the batch always shadows the store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from serum_order_indexer.indexer.batch import OrderBatch
from serum_order_indexer.indexer.events import MarketKey
from serum_order_indexer.storage.repos import OrderDTO, lookup_rank

logger = logging.getLogger(__name__)


class OrderLookup(Protocol):
    async def by_id(self, order_id: str) -> OrderDTO | None: ...

    async def by_market_key(self, key: MarketKey) -> OrderDTO | None: ...


class OrderStore(Protocol):
    """What the engine needs from persistent storage."""

    async def get_by_id(self, order_id: str) -> OrderDTO | None: ...

    async def find_one_by(self, **predicate: str | int | None) -> OrderDTO | None: ...

    async def upsert_many(self, orders: Sequence[OrderDTO]) -> None: ...


class BatchOrderLookup:
    """Lookup over the orders already touched in the current batch."""

    def __init__(self, batch: OrderBatch) -> None:
        self._batch = batch

    async def by_id(self, order_id: str) -> OrderDTO | None:
        return self._batch.get(order_id)

    async def by_market_key(self, key: MarketKey) -> OrderDTO | None:
        return self._batch.find_by_market_key(key)


class StoreOrderLookup:
    """Lookup over previously persisted orders."""

    def __init__(self, store: OrderStore) -> None:
        self._store = store

    async def by_id(self, order_id: str) -> OrderDTO | None:
        return await self._store.get_by_id(order_id)

    async def by_market_key(self, key: MarketKey) -> OrderDTO | None:
        return await self._store.find_one_by(**key.predicate())


class LayeredOrderLookup:
    """Compose ``front`` over ``back``.

    A hit in ``back`` whose id is also present in ``front`` is replaced by
    the ``front`` version, so stale persisted state never overrides changes
    made earlier in the batch. Composite-key hits from both layers are
    ranked with ``lookup_rank``, so the winner does not depend on which
    layer holds it.
    """

    def __init__(self, front: OrderLookup, back: OrderLookup) -> None:
        self._front = front
        self._back = back

    async def by_id(self, order_id: str) -> OrderDTO | None:
        order = await self._front.by_id(order_id)
        if order is not None:
            return order
        return await self._back.by_id(order_id)

    async def by_market_key(self, key: MarketKey) -> OrderDTO | None:
        candidates: list[OrderDTO] = []
        front = await self._front.by_market_key(key)
        if front is not None:
            candidates.append(front)
        back = await self._back.by_market_key(key)
        if back is not None:
            shadow = await self._front.by_id(back.id)
            if shadow is None:
                candidates.append(back)
            elif shadow is not front and key.matches(shadow):
                candidates.append(shadow)
        return min(candidates, key=lookup_rank, default=None)


class OrderResolver:
    """Resolve events to orders: existing, newly created, or not found."""

    def __init__(self, lookup: OrderLookup) -> None:
        self._lookup = lookup

    async def get_or_create(self, order_id: str, *, default_state: str) -> OrderDTO:
        order = await self._lookup.by_id(order_id)
        if order is not None:
            return order
        logger.debug("Creating order %s (state=%s)", order_id, default_state)
        return OrderDTO(id=order_id, state=default_state)

    async def get(self, order_id: str) -> OrderDTO | None:
        return await self._lookup.by_id(order_id)

    async def get_by_market_key(self, key: MarketKey) -> OrderDTO | None:
        return await self._lookup.by_market_key(key)
