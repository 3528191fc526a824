"""Repository contracts and the in-memory implementation."""

from .base import InvoiceRepository, OrderRepository, SettlementFeed, TransactionFeed
from .memory import (
    InMemoryInvoiceRepository,
    InMemoryOrderRepository,
    InMemorySettlementFeed,
    InMemoryTransactionFeed,
)

__all__ = [
    "TransactionFeed",
    "InvoiceRepository",
    "OrderRepository",
    "SettlementFeed",
    "InMemoryTransactionFeed",
    "InMemoryInvoiceRepository",
    "InMemoryOrderRepository",
    "InMemorySettlementFeed",
]
