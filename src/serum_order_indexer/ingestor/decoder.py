"""Serum DEX v3 instruction payload decoder.

Wire layout of every instruction payload::

    u8   version        (always 0)
    u32  discriminator  (little endian)
    ...  body           (little endian, per instruction)

Bodies are decoded for the instructions the indexer reads fields from;
the remaining known instructions decode to their name with no fields.
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

INSTRUCTION_VERSION = 0

_HEADER = struct.Struct("<BI")

SIDES = ("buy", "sell")
ORDER_TYPES = ("limit", "ioc", "postOnly")
SELF_TRADE_BEHAVIORS = ("decrementTake", "cancelProvide", "abortTransaction")


class InstructionDecodeError(Exception):
    """Raised when an instruction payload cannot be decoded."""


@dataclass(frozen=True)
class DecodedInstruction:
    """A decoded instruction: its variant tag plus typed fields."""

    tag: str
    fields: dict[str, Any] = field(default_factory=dict)


class _Reader:
    def __init__(self, body: bytes, tag: str) -> None:
        self._body = body
        self._offset = 0
        self._tag = tag

    def _take(self, fmt: str) -> int:
        size = struct.calcsize(fmt)
        if self._offset + size > len(self._body):
            raise InstructionDecodeError(
                f"{self._tag}: payload truncated at byte {self._offset} (need {size} more)"
            )
        (value,) = struct.unpack_from(fmt, self._body, self._offset)
        self._offset += size
        return int(value)

    def u16(self) -> int:
        return self._take("<H")

    def u32(self) -> int:
        return self._take("<I")

    def u64(self) -> int:
        return self._take("<Q")

    def i64(self) -> int:
        return self._take("<q")

    def u128(self) -> int:
        low = self.u64()
        high = self.u64()
        return (high << 64) | low

    def enum(self, names: tuple[str, ...]) -> str:
        value = self.u32()
        if value >= len(names):
            raise InstructionDecodeError(f"{self._tag}: enum value {value} out of range")
        return names[value]

    def remaining(self) -> int:
        return len(self._body) - self._offset


def _empty(_reader: _Reader) -> dict[str, Any]:
    return {}


def _limit_only(reader: _Reader) -> dict[str, Any]:
    return {"limit": reader.u16()}


def _new_order_v3(reader: _Reader) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "side": reader.enum(SIDES),
        "limitPrice": reader.u64(),
        "maxBaseQuantity": reader.u64(),
        "maxQuoteQuantity": reader.u64(),
        "selfTradeBehavior": reader.enum(SELF_TRADE_BEHAVIORS),
        "orderType": reader.enum(ORDER_TYPES),
        "clientId": reader.u64(),
        "limit": reader.u16(),
    }
    # Newer program builds append an expiry timestamp.
    if reader.remaining() >= 8:
        fields["maxTs"] = reader.i64()
    return fields


def _cancel_order_v2(reader: _Reader) -> dict[str, Any]:
    return {"side": reader.enum(SIDES), "orderId": reader.u128()}


def _client_id_only(reader: _Reader) -> dict[str, Any]:
    return {"clientId": reader.u64()}


_VARIANTS: dict[int, tuple[str, Callable[[_Reader], dict[str, Any]]]] = {
    0: ("initializeMarket", _empty),
    1: ("newOrder", _empty),
    2: ("matchOrders", _limit_only),
    3: ("consumeEvents", _limit_only),
    4: ("cancelOrder", _empty),
    5: ("settleFunds", _empty),
    6: ("cancelOrderByClientId", _empty),
    7: ("disableMarket", _empty),
    8: ("sweepFees", _empty),
    9: ("newOrderV2", _empty),
    10: ("newOrderV3", _new_order_v3),
    11: ("cancelOrderV2", _cancel_order_v2),
    12: ("cancelOrderByClientIdV2", _client_id_only),
    13: ("sendTake", _empty),
    14: ("closeOpenOrders", _empty),
    15: ("initOpenOrders", _empty),
    16: ("prune", _limit_only),
    17: ("consumeEventsPermissioned", _limit_only),
    18: ("cancelOrdersByClientIds", _empty),
    19: ("replaceOrderByClientId", _empty),
    20: ("replaceOrdersByClientIds", _empty),
}


def decode_instruction(data: bytes) -> DecodedInstruction:
    """Decode a raw Serum instruction payload.

    Args:
        data: Instruction data bytes (already base58-decoded).

    Returns:
        DecodedInstruction with the camelCase variant tag and its fields.

    Raises:
        InstructionDecodeError: If the payload is malformed or the
            discriminator is not a known Serum instruction.
    """
    if len(data) < _HEADER.size:
        raise InstructionDecodeError(f"payload too short ({len(data)} bytes)")

    version, discriminator = _HEADER.unpack_from(data, 0)
    if version != INSTRUCTION_VERSION:
        raise InstructionDecodeError(f"unsupported instruction version {version}")

    variant = _VARIANTS.get(discriminator)
    if variant is None:
        raise InstructionDecodeError(f"unknown instruction discriminator {discriminator}")

    tag, parse = variant
    return DecodedInstruction(tag=tag, fields=parse(_Reader(data[_HEADER.size :], tag)))
