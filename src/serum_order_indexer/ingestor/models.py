"""Data models for the ingestor module."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import base58


@dataclass(frozen=True)
class Instruction:
    """One program instruction, top-level or inner, as delivered on chain."""

    program_id: str
    accounts: tuple[str, ...]
    data: bytes
    tx_signature: str | None
    tx_index: int
    # (top-level index,) for outer instructions, (top-level index, inner index) for inner ones.
    address: tuple[int, ...]

    def account(self, index: int) -> str | None:
        """Return the account at ``index`` or None when the list is shorter."""
        if 0 <= index < len(self.accounts):
            return self.accounts[index]
        return None


@dataclass(frozen=True)
class Block:
    """A block header plus the instructions selected from it, in chain order."""

    slot: int
    height: int | None
    timestamp: int | None  # unix seconds
    instructions: tuple[Instruction, ...] = ()

    @property
    def time(self) -> datetime | None:
        """Block wall-clock time (second precision, UTC)."""
        if self.timestamp is None:
            return None
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    @classmethod
    def from_rpc(cls, slot: int, data: dict[str, Any], *, program_id: str) -> Block:
        """Create a Block from a ``getBlock`` (json encoding) response.

        Only committed transactions are kept; inner instructions are placed
        right after the top-level instruction that produced them.

        Args:
            slot: Slot the block was requested for.
            data: The ``result`` object of the RPC response.
            program_id: Only instructions executed by this program are kept.

        Returns:
            Block instance.
        """
        instructions = tuple(
            ix
            for tx_index, tx in enumerate(data.get("transactions") or [])
            for ix in _iter_transaction_instructions(tx_index, tx)
            if ix.program_id == program_id
        )
        block_height = data.get("blockHeight")
        block_time = data.get("blockTime")
        return cls(
            slot=slot,
            height=int(block_height) if block_height is not None else None,
            timestamp=int(block_time) if block_time is not None else None,
            instructions=instructions,
        )


@dataclass(frozen=True)
class BlockBatch:
    """Consecutive slot range delivered to the pipeline as one unit of work.

    ``blocks`` holds only blocks that carry at least one selected instruction;
    ``last_slot``/``last_height`` describe the end of the scanned range and are
    what the checkpoint records.
    """

    first_slot: int
    last_slot: int
    last_height: int | None
    blocks: tuple[Block, ...] = ()

    @property
    def instruction_count(self) -> int:
        return sum(len(b.instructions) for b in self.blocks)


def _iter_transaction_instructions(tx_index: int, tx: dict[str, Any]) -> Iterator[Instruction]:
    meta = tx.get("meta") or {}
    if meta.get("err") is not None:
        return

    transaction = tx.get("transaction") or {}
    message = transaction.get("message") or {}
    signatures = transaction.get("signatures") or []
    signature = str(signatures[0]) if signatures else None

    loaded = meta.get("loadedAddresses") or {}
    keys: list[str] = [
        *(str(k) for k in message.get("accountKeys") or []),
        *(str(k) for k in loaded.get("writable") or []),
        *(str(k) for k in loaded.get("readonly") or []),
    ]

    inner_by_parent: dict[int, list[dict[str, Any]]] = {}
    for group in meta.get("innerInstructions") or []:
        inner_by_parent.setdefault(int(group["index"]), []).extend(group.get("instructions") or [])

    for index, raw in enumerate(message.get("instructions") or []):
        yield _compiled_instruction(raw, keys, signature, tx_index, (index,))
        for inner_index, inner in enumerate(inner_by_parent.get(index, [])):
            yield _compiled_instruction(inner, keys, signature, tx_index, (index, inner_index))


def _compiled_instruction(
    raw: dict[str, Any],
    keys: list[str],
    signature: str | None,
    tx_index: int,
    address: tuple[int, ...],
) -> Instruction:
    return Instruction(
        program_id=keys[int(raw["programIdIndex"])],
        accounts=tuple(keys[int(i)] for i in raw.get("accounts") or []),
        data=base58.b58decode(raw.get("data") or ""),
        tx_signature=signature,
        tx_index=tx_index,
        address=address,
    )
