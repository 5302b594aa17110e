"""Tests for the per-event order projections."""

from datetime import UTC, datetime

import pytest

from serum_order_indexer.indexer.events import (
    CancelOrderEvent,
    CloseOpenOrdersEvent,
    EventContext,
    InitOpenOrdersEvent,
    MarketKey,
    MatchOrdersEvent,
    OpenOrderEvent,
)
from serum_order_indexer.indexer.projector import (
    project_cancel,
    project_close,
    project_init,
    project_match,
    project_open,
)
from serum_order_indexer.storage.repos import ORDER_STATE_CLOSED, ORDER_STATE_OPENED, OrderDTO

AT = datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
KEY = MarketKey(market="M", bids="B", asks="A", event_queue="E", request_queue="R")


def _ctx(signature: str, height: int = 90) -> EventContext:
    return EventContext(slot=100, block_height=height, block_time=AT, tx_signature=signature)


def _open_event(side: str) -> OpenOrderEvent:
    return OpenOrderEvent(
        order_id="OO1",
        owner="Alice",
        market="M",
        bids="B",
        asks="A",
        request_queue="R",
        event_queue="E",
        side=side,
        limit_price=2**64 - 1,
        max_base_quantity=3,
        max_quote_quantity=3000,
        self_trade_behavior="cancelProvide",
        order_type="ioc",
        client_id=9,
        limit=65535,
        context=_ctx("OpenSig"),
    )


@pytest.fixture
def new_order() -> OrderDTO:
    return OrderDTO(id="OO1", state=ORDER_STATE_OPENED)


class TestProjectOpen:
    def test_sell_sets_maker(self, new_order: OrderDTO) -> None:
        order = project_open(new_order, _open_event("sell"))
        assert order.maker == "Alice"
        assert order.taker is None

    def test_buy_sets_taker(self, new_order: OrderDTO) -> None:
        order = project_open(new_order, _open_event("buy"))
        assert order.taker == "Alice"
        assert order.maker is None

    def test_sets_trade_and_market_fields(self, new_order: OrderDTO) -> None:
        order = project_open(new_order, _open_event("buy"))
        assert order.side == "buy"
        assert order.limit_price == 18446744073709551615
        assert order.max_base_quantity == 3
        assert order.max_quote_quantity == 3000
        assert order.self_trade_behavior == "cancelProvide"
        assert order.order_type == "ioc"
        assert order.client_id == 9
        assert order.limit == 65535
        assert (order.market, order.bids, order.asks, order.request_queue, order.event_queue) == (
            "M",
            "B",
            "A",
            "R",
            "E",
        )
        assert order.open_order_tx == "OpenSig"
        assert order.opened_at == AT
        assert order.opened_block == 90

    def test_keeps_existing_state(self) -> None:
        placeholder = OrderDTO(id="OO1", state=ORDER_STATE_CLOSED, market="M")
        order = project_open(placeholder, _open_event("sell"))
        assert order.state == ORDER_STATE_CLOSED

    def test_does_not_mutate_input(self, new_order: OrderDTO) -> None:
        project_open(new_order, _open_event("sell"))
        assert new_order == OrderDTO(id="OO1", state=ORDER_STATE_OPENED)

    def test_idempotent(self, new_order: OrderDTO) -> None:
        event = _open_event("sell")
        once = project_open(new_order, event)
        assert project_open(once, event) == once


class TestOtherProjections:
    def test_init_sets_market_only(self, new_order: OrderDTO) -> None:
        order = project_init(new_order, InitOpenOrdersEvent(order_id="OO1", market="M", context=_ctx("InitSig")))
        assert order == OrderDTO(id="OO1", state=ORDER_STATE_OPENED, market="M")

    def test_match_keeps_state(self, new_order: OrderDTO) -> None:
        order = project_match(new_order, MatchOrdersEvent(key=KEY, context=_ctx("MatchSig", 91)))
        assert order.state == ORDER_STATE_OPENED
        assert (order.matched_order_tx, order.matched_at, order.matched_block) == ("MatchSig", AT, 91)

    def test_cancel_keeps_state(self, new_order: OrderDTO) -> None:
        order = project_cancel(new_order, CancelOrderEvent(key=KEY, context=_ctx("CancelSig", 92)))
        assert order.state == ORDER_STATE_OPENED
        assert (order.cancelled_tx, order.cancelled_at, order.cancelled_block) == ("CancelSig", AT, 92)

    def test_close_sets_state_closed(self, new_order: OrderDTO) -> None:
        order = project_close(new_order, CloseOpenOrdersEvent(order_id="OO1", context=_ctx("CloseSig", 93)))
        assert order.state == ORDER_STATE_CLOSED
        assert (order.closed_tx, order.closed_at, order.closed_block) == ("CloseSig", AT, 93)

    def test_later_match_overwrites_earlier(self, new_order: OrderDTO) -> None:
        first = project_match(new_order, MatchOrdersEvent(key=KEY, context=_ctx("Match1", 91)))
        second = project_match(first, MatchOrdersEvent(key=KEY, context=_ctx("Match2", 95)))
        assert second.matched_order_tx == "Match2"
        assert second.matched_block == 95
