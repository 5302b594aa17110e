"""Durable JSON snapshot of placed orders.

The snapshot is a JSON array of order records keyed by ``id``. Only orders
that carry a ``side`` (i.e. were placed through newOrderV3) are written.

Record format:
- camelCase keys
- arbitrary-precision integers as decimal strings
- timestamps as ISO-8601 UTC with millisecond precision and a ``Z`` suffix
- absent fields omitted, never ``null``
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from serum_order_indexer.storage.repos import ORDER_STATE_CLOSED, ORDER_STATE_OPENED, OrderDTO

logger = logging.getLogger(__name__)

# DTO field -> snapshot key. Order follows the record layout.
SNAPSHOT_KEYS: dict[str, str] = {
    "id": "id",
    "state": "state",
    "side": "side",
    "limit_price": "limitPrice",
    "max_base_quantity": "maxBaseQuantity",
    "max_quote_quantity": "maxQuoteQuantity",
    "self_trade_behavior": "selfTradeBehavior",
    "order_type": "orderType",
    "client_id": "clientId",
    "limit": "limit",
    "market": "market",
    "bids": "bids",
    "asks": "asks",
    "request_queue": "requestQueue",
    "event_queue": "eventQueue",
    "maker": "maker",
    "taker": "taker",
    "open_order_tx": "openOrderTx",
    "opened_at": "openedAt",
    "opened_block": "openedBlock",
    "matched_order_tx": "matchedOrderTx",
    "matched_at": "matchedAt",
    "matched_block": "matchedBlock",
    "cancelled_tx": "cancelledTx",
    "cancelled_at": "cancelledAt",
    "cancelled_block": "cancelledBlock",
    "closed_tx": "closedTx",
    "closed_at": "closedAt",
    "closed_block": "closedBlock",
}

# Older snapshots spelled matchedBlock this way.
LEGACY_KEYS: dict[str, str] = {"mathedBlock": "matched_block"}

_BIG_INT_FIELDS = frozenset({"limit_price", "max_base_quantity", "max_quote_quantity", "client_id"})
_DATETIME_FIELDS = frozenset({"opened_at", "matched_at", "cancelled_at", "closed_at"})
_INT_FIELDS = frozenset({"limit", "opened_block", "matched_block", "cancelled_block", "closed_block"})


def _format_datetime(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def order_to_snapshot(order: OrderDTO) -> dict[str, Any]:
    """Serialize an order to its snapshot record."""
    record: dict[str, Any] = {}
    for attr, key in SNAPSHOT_KEYS.items():
        value = getattr(order, attr)
        if value is None:
            continue
        if attr in _BIG_INT_FIELDS:
            value = str(value)
        elif attr in _DATETIME_FIELDS:
            value = _format_datetime(value)
        record[key] = value
    return record


def order_from_snapshot(record: dict[str, Any]) -> OrderDTO:
    """Parse a snapshot record back into an order.

    Raises:
        ValueError: If the record has no ``id``, its ``state`` is missing or
            not a known order state, or a value cannot be parsed.
    """
    by_key = {key: attr for attr, key in SNAPSHOT_KEYS.items()}
    by_key.update(LEGACY_KEYS)

    values: dict[str, Any] = {}
    for key, raw in record.items():
        attr = by_key.get(key)
        if attr is None or raw is None:
            continue
        if attr in _BIG_INT_FIELDS or attr in _INT_FIELDS:
            values[attr] = int(raw)
        elif attr in _DATETIME_FIELDS:
            values[attr] = _parse_datetime(raw)
        else:
            values[attr] = raw

    if "id" not in values:
        raise ValueError("Snapshot record without id")
    if values.get("state") not in (ORDER_STATE_OPENED, ORDER_STATE_CLOSED):
        raise ValueError(f"Snapshot record {values['id']} has invalid state {values.get('state')!r}")
    return OrderDTO(**values)


def merge_snapshot(
    existing: Sequence[dict[str, Any]],
    orders: Iterable[OrderDTO],
) -> list[dict[str, Any]]:
    """Merge orders into snapshot records.

    A record with the same ``id`` is replaced in place; new ids are appended
    in the order given. Orders without a ``side`` are skipped.
    """
    merged = list(existing)
    positions = {r.get("id"): i for i, r in enumerate(merged)}
    for order in orders:
        if not order.side:
            continue
        record = order_to_snapshot(order)
        index = positions.get(order.id)
        if index is None:
            positions[order.id] = len(merged)
            merged.append(record)
        else:
            merged[index] = record
    return merged


class SnapshotSynchronizer:
    """Keeps a JSON snapshot file in step with the order store.

    Snapshot failures never propagate: the store is the source of truth
    and the snapshot is rebuilt on the next successful write.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    async def read(self) -> list[dict[str, Any]]:
        """Load the snapshot; a missing, empty or unreadable file yields []."""
        try:
            return await asyncio.to_thread(self._read_sync)
        except (OSError, ValueError) as e:
            logger.warning("Snapshot %s unreadable, starting empty: %s", self.path, e)
            return []

    def _read_sync(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return []
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError(f"expected a JSON array, got {type(data).__name__}")
        return [r for r in data if isinstance(r, dict)]

    async def write(self, records: Sequence[dict[str, Any]]) -> bool:
        """Atomically replace the snapshot. Returns False on failure."""
        try:
            await asyncio.to_thread(self._write_sync, records)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write snapshot %s: %s", self.path, e)
            return False
        return True

    def _write_sync(self, records: Sequence[dict[str, Any]]) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(list(records), f, indent=1)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def sync(self, orders: Iterable[OrderDTO]) -> bool:
        """Merge ``orders`` into the snapshot file.

        Returns:
            True when the snapshot was written (or there was nothing to write).
        """
        placed = [o for o in orders if o.side]
        if not placed:
            return True
        existing = await self.read()
        merged = merge_snapshot(existing, placed)
        ok = await self.write(merged)
        if ok:
            logger.debug("Snapshot %s now holds %d orders (%d merged)", self.path, len(merged), len(placed))
        return ok
