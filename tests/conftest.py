"""Pytest configuration and fixtures."""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence

import pytest

from serum_order_indexer.config import SERUM_PROGRAM_ID
from serum_order_indexer.ingestor.models import Block, Instruction

# Serum discriminators used by the fixtures.
MATCH_ORDERS = 2
CONSUME_EVENTS = 3
SETTLE_FUNDS = 5
NEW_ORDER_V3 = 10
CANCEL_ORDER_V2 = 11
CLOSE_OPEN_ORDERS = 14
INIT_OPEN_ORDERS = 15
PRUNE = 16

BLOCK_TIME = 1_700_000_000


def _payload(discriminator: int, body: bytes = b"") -> bytes:
    return struct.pack("<BI", 0, discriminator) + body


@pytest.fixture
def program_id() -> str:
    return SERUM_PROGRAM_ID


@pytest.fixture
def market_accounts() -> dict[str, str]:
    """Accounts of one Serum market."""
    return {
        "market": "Market111",
        "request_queue": "ReqQueue111",
        "event_queue": "EventQueue111",
        "bids": "Bids111",
        "asks": "Asks111",
    }


@pytest.fixture
def payload() -> Callable[..., bytes]:
    """Build a raw payload for a discriminator and an optional body."""
    return _payload


@pytest.fixture
def new_order_v3_data() -> Callable[..., bytes]:
    """Build a newOrderV3 payload."""

    def _build(
        *,
        side: int = 0,
        limit_price: int = 1000,
        max_base_quantity: int = 5,
        max_quote_quantity: int = 5000,
        self_trade_behavior: int = 0,
        order_type: int = 0,
        client_id: int = 42,
        limit: int = 65535,
        max_ts: int | None = None,
    ) -> bytes:
        body = struct.pack(
            "<IQQQIIQH",
            side,
            limit_price,
            max_base_quantity,
            max_quote_quantity,
            self_trade_behavior,
            order_type,
            client_id,
            limit,
        )
        if max_ts is not None:
            body += struct.pack("<q", max_ts)
        return _payload(NEW_ORDER_V3, body)

    return _build


@pytest.fixture
def make_instruction(program_id: str) -> Callable[..., Instruction]:
    def _build(
        data: bytes,
        accounts: Sequence[str],
        *,
        signature: str = "Sig1",
        program: str | None = None,
        tx_index: int = 0,
        address: tuple[int, ...] = (0,),
    ) -> Instruction:
        return Instruction(
            program_id=program or program_id,
            accounts=tuple(accounts),
            data=data,
            tx_signature=signature,
            tx_index=tx_index,
            address=address,
        )

    return _build


@pytest.fixture
def make_block() -> Callable[..., Block]:
    def _build(
        *instructions: Instruction,
        slot: int = 100,
        height: int | None = 90,
        timestamp: int | None = BLOCK_TIME,
    ) -> Block:
        return Block(slot=slot, height=height, timestamp=timestamp, instructions=tuple(instructions))

    return _build


@pytest.fixture
def open_instruction(
    make_instruction: Callable[..., Instruction],
    new_order_v3_data: Callable[..., bytes],
    market_accounts: dict[str, str],
) -> Callable[..., Instruction]:
    """newOrderV3 instruction for an open-orders account on the fixture market."""

    def _build(order_id: str, *, owner: str = "Owner111", signature: str = "OpenSig", **fields: int) -> Instruction:
        accounts = [
            market_accounts["market"],
            order_id,
            market_accounts["request_queue"],
            market_accounts["event_queue"],
            market_accounts["bids"],
            market_accounts["asks"],
            "Payer111",
            owner,
            "CoinVault111",
            "PcVault111",
        ]
        return make_instruction(new_order_v3_data(**fields), accounts, signature=signature)

    return _build


@pytest.fixture
def match_instruction(
    make_instruction: Callable[..., Instruction],
    market_accounts: dict[str, str],
) -> Callable[..., Instruction]:
    def _build(*, signature: str = "MatchSig") -> Instruction:
        accounts = [
            market_accounts["market"],
            market_accounts["request_queue"],
            market_accounts["event_queue"],
            market_accounts["bids"],
            market_accounts["asks"],
        ]
        return make_instruction(_payload(MATCH_ORDERS, struct.pack("<H", 10)), accounts, signature=signature)

    return _build


@pytest.fixture
def cancel_instruction(
    make_instruction: Callable[..., Instruction],
    market_accounts: dict[str, str],
) -> Callable[..., Instruction]:
    def _build(*, signature: str = "CancelSig") -> Instruction:
        accounts = [
            market_accounts["market"],
            market_accounts["bids"],
            market_accounts["asks"],
            "Owner111",
            market_accounts["event_queue"],
        ]
        body = struct.pack("<I", 0) + (7).to_bytes(16, "little")
        return make_instruction(_payload(CANCEL_ORDER_V2, body), accounts, signature=signature)

    return _build


@pytest.fixture
def close_instruction(
    make_instruction: Callable[..., Instruction],
    market_accounts: dict[str, str],
) -> Callable[..., Instruction]:
    def _build(order_id: str, *, signature: str = "CloseSig") -> Instruction:
        accounts = [order_id, "Owner111", "Rent111", market_accounts["market"]]
        return make_instruction(_payload(CLOSE_OPEN_ORDERS), accounts, signature=signature)

    return _build


@pytest.fixture
def init_instruction(
    make_instruction: Callable[..., Instruction],
    market_accounts: dict[str, str],
) -> Callable[..., Instruction]:
    def _build(order_id: str, *, signature: str = "InitSig") -> Instruction:
        accounts = [order_id, "Owner111", market_accounts["market"]]
        return make_instruction(_payload(INIT_OPEN_ORDERS), accounts, signature=signature)

    return _build
