"""Order lifecycle engine - classify, resolve, project and reconcile."""

from serum_order_indexer.indexer.batch import OrderBatch
from serum_order_indexer.indexer.events import (
    CancelOrderEvent,
    CloseOpenOrdersEvent,
    EventContext,
    HandlingPath,
    IgnoredEvent,
    InitOpenOrdersEvent,
    MalformedInstructionError,
    MarketKey,
    MatchOrdersEvent,
    OpenOrderEvent,
    OrderEvent,
    UnknownEvent,
    classify,
)
from serum_order_indexer.indexer.processor import (
    BatchProcessingError,
    BatchResult,
    OrderLifecycleProcessor,
)
from serum_order_indexer.indexer.resolver import (
    BatchOrderLookup,
    LayeredOrderLookup,
    OrderLookup,
    OrderResolver,
    OrderStore,
    StoreOrderLookup,
)
from serum_order_indexer.indexer.snapshot import (
    SnapshotSynchronizer,
    merge_snapshot,
    order_from_snapshot,
    order_to_snapshot,
)

__all__ = [
    "BatchOrderLookup",
    "BatchProcessingError",
    "BatchResult",
    "CancelOrderEvent",
    "CloseOpenOrdersEvent",
    "EventContext",
    "HandlingPath",
    "IgnoredEvent",
    "InitOpenOrdersEvent",
    "LayeredOrderLookup",
    "MalformedInstructionError",
    "MarketKey",
    "MatchOrdersEvent",
    "OpenOrderEvent",
    "OrderBatch",
    "OrderEvent",
    "OrderLifecycleProcessor",
    "OrderLookup",
    "OrderResolver",
    "OrderStore",
    "SnapshotSynchronizer",
    "StoreOrderLookup",
    "UnknownEvent",
    "classify",
    "merge_snapshot",
    "order_from_snapshot",
    "order_to_snapshot",
]
