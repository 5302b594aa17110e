"""Classification of decoded Serum instructions into order lifecycle events.

Each supported instruction carries its accounts in a fixed positional
layout; the enums below name those slots. ``classify`` turns a decoded
payload plus its instruction/block context into exactly one event variant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Union

from serum_order_indexer.ingestor.decoder import DecodedInstruction, InstructionDecodeError
from serum_order_indexer.ingestor.models import Block, Instruction
from serum_order_indexer.storage.repos import OrderDTO


class OpenOrderAccount(IntEnum):
    """newOrderV3 account slots."""

    MARKET = 0
    ORDER = 1
    REQUEST_QUEUE = 2
    EVENT_QUEUE = 3
    BIDS = 4
    ASKS = 5
    TOKEN_ACCOUNT_OWNER = 6
    OWNER = 7
    TOKEN_ACCOUNT_QUOTE = 8
    TOKEN_ACCOUNT_BASE = 9


class InitOpenOrdersAccount(IntEnum):
    """initOpenOrders account slots."""

    ORDER = 0
    OWNER = 1
    MARKET = 2


class MatchOrdersAccount(IntEnum):
    """matchOrders account slots."""

    MARKET = 0
    REQUEST_QUEUE = 1
    EVENT_QUEUE = 2
    BIDS = 3
    ASKS = 4
    LIMIT = 5


class CancelOrderV2Account(IntEnum):
    """cancelOrderV2 account slots."""

    MARKET = 0
    BIDS = 1
    ASKS = 2
    OWNER = 3
    EVENT_QUEUE = 4


class CloseOpenOrdersAccount(IntEnum):
    """closeOpenOrders account slots."""

    ORDER = 0
    OWNER = 1
    RENT_RECEIVER = 2
    MARKET = 3


class HandlingPath(str, Enum):
    """How an instruction affects the order set."""

    OPEN = "open"
    INIT = "init"
    MATCH = "match"
    CANCEL = "cancel"
    CLOSE = "close"
    IGNORED = "ignored"
    UNKNOWN = "unknown"


TAG_PATHS: dict[str, HandlingPath] = {
    "closeOpenOrders": HandlingPath.CLOSE,
    "settleFunds": HandlingPath.IGNORED,
    "newOrderV3": HandlingPath.OPEN,
    "initOpenOrders": HandlingPath.INIT,
    "matchOrders": HandlingPath.MATCH,
    "cancelOrderV2": HandlingPath.CANCEL,
    "consumeEvents": HandlingPath.IGNORED,
}


class MalformedInstructionError(InstructionDecodeError):
    """Raised when an instruction lacks an account its layout requires."""


@dataclass(frozen=True)
class EventContext:
    """Where an event happened."""

    slot: int
    block_height: int | None
    block_time: datetime | None
    tx_signature: str | None


@dataclass(frozen=True)
class MarketKey:
    """Composite key addressing an order through its market accounts.

    ``request_queue`` is part of the key only when it is not None.
    """

    market: str
    bids: str
    asks: str
    event_queue: str
    request_queue: str | None = None

    def predicate(self) -> dict[str, str]:
        """Column/value mapping for store lookups."""
        values = {
            "bids": self.bids,
            "asks": self.asks,
            "market": self.market,
            "event_queue": self.event_queue,
        }
        if self.request_queue is not None:
            values["request_queue"] = self.request_queue
        return values

    def matches(self, order: OrderDTO) -> bool:
        return all(getattr(order, column) == value for column, value in self.predicate().items())


@dataclass(frozen=True)
class OpenOrderEvent:
    order_id: str
    owner: str
    market: str
    bids: str
    asks: str
    request_queue: str
    event_queue: str
    side: str
    limit_price: int
    max_base_quantity: int
    max_quote_quantity: int
    self_trade_behavior: str
    order_type: str
    client_id: int
    limit: int
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.OPEN, init=False)


@dataclass(frozen=True)
class InitOpenOrdersEvent:
    order_id: str
    market: str | None
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.INIT, init=False)


@dataclass(frozen=True)
class MatchOrdersEvent:
    key: MarketKey
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.MATCH, init=False)


@dataclass(frozen=True)
class CancelOrderEvent:
    key: MarketKey
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.CANCEL, init=False)


@dataclass(frozen=True)
class CloseOpenOrdersEvent:
    order_id: str
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.CLOSE, init=False)


@dataclass(frozen=True)
class IgnoredEvent:
    tag: str
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.IGNORED, init=False)


@dataclass(frozen=True)
class UnknownEvent:
    tag: str
    fields: dict[str, Any]
    context: EventContext
    path: HandlingPath = field(default=HandlingPath.UNKNOWN, init=False)


OrderEvent = Union[
    OpenOrderEvent,
    InitOpenOrdersEvent,
    MatchOrdersEvent,
    CancelOrderEvent,
    CloseOpenOrdersEvent,
    IgnoredEvent,
    UnknownEvent,
]


def _required(instruction: Instruction, index: IntEnum, tag: str) -> str:
    account = instruction.account(int(index))
    if account is None:
        raise MalformedInstructionError(
            f"{tag}: missing {index.name} account (slot {int(index)}, got {len(instruction.accounts)} accounts)"
        )
    return account


def classify(
    decoded: DecodedInstruction,
    instruction: Instruction,
    block: Block,
    *,
    legacy_asks_market_key: bool = False,
) -> OrderEvent:
    """Map a decoded instruction to its order lifecycle event.

    Args:
        decoded: Decoded payload (variant tag + fields).
        instruction: The originating instruction (accounts, signature).
        block: The block containing the instruction.
        legacy_asks_market_key: Use the Asks account as the market component
            of match/cancel keys, as the legacy indexer did.

    Returns:
        One event variant; tags outside the handled set become UnknownEvent.

    Raises:
        MalformedInstructionError: If a handled instruction is missing a
            required account.
    """
    tag = decoded.tag
    context = EventContext(
        slot=block.slot,
        block_height=block.height,
        block_time=block.time,
        tx_signature=instruction.tx_signature,
    )
    path = TAG_PATHS.get(tag, HandlingPath.UNKNOWN)

    if path is HandlingPath.OPEN:
        f = decoded.fields
        return OpenOrderEvent(
            order_id=_required(instruction, OpenOrderAccount.ORDER, tag),
            owner=_required(instruction, OpenOrderAccount.OWNER, tag),
            market=_required(instruction, OpenOrderAccount.MARKET, tag),
            bids=_required(instruction, OpenOrderAccount.BIDS, tag),
            asks=_required(instruction, OpenOrderAccount.ASKS, tag),
            request_queue=_required(instruction, OpenOrderAccount.REQUEST_QUEUE, tag),
            event_queue=_required(instruction, OpenOrderAccount.EVENT_QUEUE, tag),
            side=str(f["side"]),
            limit_price=int(f["limitPrice"]),
            max_base_quantity=int(f["maxBaseQuantity"]),
            max_quote_quantity=int(f["maxQuoteQuantity"]),
            self_trade_behavior=str(f["selfTradeBehavior"]),
            order_type=str(f["orderType"]),
            client_id=int(f["clientId"]),
            limit=int(f["limit"]),
            context=context,
        )

    if path is HandlingPath.INIT:
        return InitOpenOrdersEvent(
            order_id=_required(instruction, InitOpenOrdersAccount.ORDER, tag),
            market=instruction.account(InitOpenOrdersAccount.MARKET),
            context=context,
        )

    if path is HandlingPath.MATCH:
        asks = _required(instruction, MatchOrdersAccount.ASKS, tag)
        market_slot = MatchOrdersAccount.ASKS if legacy_asks_market_key else MatchOrdersAccount.MARKET
        return MatchOrdersEvent(
            key=MarketKey(
                market=_required(instruction, market_slot, tag),
                bids=_required(instruction, MatchOrdersAccount.BIDS, tag),
                asks=asks,
                event_queue=_required(instruction, MatchOrdersAccount.EVENT_QUEUE, tag),
                request_queue=_required(instruction, MatchOrdersAccount.REQUEST_QUEUE, tag),
            ),
            context=context,
        )

    if path is HandlingPath.CANCEL:
        market_slot = CancelOrderV2Account.ASKS if legacy_asks_market_key else CancelOrderV2Account.MARKET
        return CancelOrderEvent(
            key=MarketKey(
                market=_required(instruction, market_slot, tag),
                bids=_required(instruction, CancelOrderV2Account.BIDS, tag),
                asks=_required(instruction, CancelOrderV2Account.ASKS, tag),
                event_queue=_required(instruction, CancelOrderV2Account.EVENT_QUEUE, tag),
            ),
            context=context,
        )

    if path is HandlingPath.CLOSE:
        return CloseOpenOrdersEvent(
            order_id=_required(instruction, CloseOpenOrdersAccount.ORDER, tag),
            context=context,
        )

    if path is HandlingPath.IGNORED:
        return IgnoredEvent(tag=tag, context=context)

    return UnknownEvent(tag=tag, fields=dict(decoded.fields), context=context)
