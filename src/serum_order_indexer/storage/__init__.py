"""Storage layer - Database schemas and repositories."""

from serum_order_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from serum_order_indexer.storage.models import Base, OrderModel, ProcessorStatusModel
from serum_order_indexer.storage.repos import (
    ORDER_STATE_CLOSED,
    ORDER_STATE_OPENED,
    OrderDTO,
    OrderRepository,
    ProcessorStatusDTO,
    ProcessorStatusRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "ORDER_STATE_CLOSED",
    "ORDER_STATE_OPENED",
    "OrderDTO",
    "OrderModel",
    "OrderRepository",
    "ProcessorStatusDTO",
    "ProcessorStatusModel",
    "ProcessorStatusRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
