"""Pure per-event order mutations.

Every function returns a new ``OrderDTO``; the input is never modified.
Applying the same event to the same order twice yields the same result.
"""

from __future__ import annotations

import dataclasses

from serum_order_indexer.indexer.events import (
    CancelOrderEvent,
    CloseOpenOrdersEvent,
    InitOpenOrdersEvent,
    MatchOrdersEvent,
    OpenOrderEvent,
)
from serum_order_indexer.storage.repos import ORDER_STATE_CLOSED, OrderDTO


def project_open(order: OrderDTO, event: OpenOrderEvent) -> OrderDTO:
    # The opener is the maker of a sell order and the taker of a buy order.
    counterparty = {"maker": event.owner} if event.side == "sell" else {"taker": event.owner}
    return dataclasses.replace(
        order,
        side=event.side,
        limit_price=event.limit_price,
        max_base_quantity=event.max_base_quantity,
        max_quote_quantity=event.max_quote_quantity,
        self_trade_behavior=event.self_trade_behavior,
        order_type=event.order_type,
        client_id=event.client_id,
        limit=event.limit,
        market=event.market,
        bids=event.bids,
        asks=event.asks,
        request_queue=event.request_queue,
        event_queue=event.event_queue,
        open_order_tx=event.context.tx_signature,
        opened_at=event.context.block_time,
        opened_block=event.context.block_height,
        **counterparty,
    )


def project_init(order: OrderDTO, event: InitOpenOrdersEvent) -> OrderDTO:
    return dataclasses.replace(order, market=event.market)


def project_match(order: OrderDTO, event: MatchOrdersEvent) -> OrderDTO:
    return dataclasses.replace(
        order,
        matched_order_tx=event.context.tx_signature,
        matched_at=event.context.block_time,
        matched_block=event.context.block_height,
    )


def project_cancel(order: OrderDTO, event: CancelOrderEvent) -> OrderDTO:
    return dataclasses.replace(
        order,
        cancelled_tx=event.context.tx_signature,
        cancelled_at=event.context.block_time,
        cancelled_block=event.context.block_height,
    )


def project_close(order: OrderDTO, event: CloseOpenOrdersEvent) -> OrderDTO:
    return dataclasses.replace(
        order,
        closed_tx=event.context.tx_signature,
        closed_at=event.context.block_time,
        closed_block=event.context.block_height,
        state=ORDER_STATE_CLOSED,
    )
