"""
In-memory repositories.

Used for dry runs, tests and embedding the matcher over data that is already
loaded. Reads return copies, so callers never mutate stored state directly.
"""

import asyncio
import copy
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import AlreadyReconciledError, NotFoundError, NotReconciledError
from ..models import (
    APInvoice,
    AROrder,
    BankTransaction,
    GatewaySettlement,
    OrderOrigin,
    ReconciliationFields,
)
from ..utils.money import in_window
from .base import InvoiceRepository, OrderRepository, SettlementFeed, TransactionFeed


def _in_range(value: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    if value is None:
        return start is None and end is None
    return in_window(value, start or date.min, end or date.max)


class InMemoryTransactionFeed(TransactionFeed):

    def __init__(self, transactions: Iterable[BankTransaction] = ()):
        self._rows: Dict[str, BankTransaction] = {t.id: copy.deepcopy(t) for t in transactions}
        self._lock = asyncio.Lock()

    def add(self, transaction: BankTransaction) -> None:
        self._rows[transaction.id] = copy.deepcopy(transaction)

    def remove(self, transaction_id: str) -> None:
        self._rows.pop(transaction_id, None)

    async def get(self, transaction_id: str) -> Optional[BankTransaction]:
        row = self._rows.get(transaction_id)
        return copy.deepcopy(row) if row else None

    async def list_unreconciled(
        self,
        sources: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[BankTransaction]:
        wanted = set(sources)
        rows = [
            r for r in self._rows.values()
            if r.source in wanted
            and not r.is_reconciled
            and _in_range(r.transaction_date, start, end)
        ]
        rows.sort(key=lambda r: (r.transaction_date or date.min, r.id))
        return [copy.deepcopy(r) for r in rows]

    async def mark_reconciled(
        self,
        transaction_id: str,
        fields: ReconciliationFields,
    ) -> BankTransaction:
        async with self._lock:
            row = self._rows.get(transaction_id)
            if row is None:
                raise NotFoundError(
                    "Transaction not found",
                    operation="mark_reconciled",
                    transaction_id=transaction_id,
                )
            if row.is_reconciled:
                raise AlreadyReconciledError(
                    "Transaction already reconciled",
                    operation="mark_reconciled",
                    transaction_id=transaction_id,
                )
            row.apply(fields)
            return copy.deepcopy(row)

    async def clear_reconciliation(self, transaction_id: str) -> BankTransaction:
        async with self._lock:
            row = self._rows.get(transaction_id)
            if row is None:
                raise NotFoundError(
                    "Transaction not found",
                    operation="clear_reconciliation",
                    transaction_id=transaction_id,
                )
            if not row.is_reconciled:
                raise NotReconciledError(
                    "Transaction is not reconciled",
                    operation="clear_reconciliation",
                    transaction_id=transaction_id,
                )
            row.clear()
            return copy.deepcopy(row)


class InMemoryInvoiceRepository(InvoiceRepository):

    def __init__(self, invoices: Iterable[APInvoice] = ()):
        self._rows: Dict[str, APInvoice] = {i.id: copy.deepcopy(i) for i in invoices}
        self._lock = asyncio.Lock()

    def add(self, invoice: APInvoice) -> None:
        self._rows[invoice.id] = copy.deepcopy(invoice)

    def remove(self, invoice_id: str) -> None:
        self._rows.pop(invoice_id, None)

    async def get(self, invoice_id: str) -> Optional[APInvoice]:
        row = self._rows.get(invoice_id)
        return copy.deepcopy(row) if row else None

    async def list_unreconciled(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        invoice_type: Optional[str] = None,
    ) -> List[APInvoice]:
        rows = [
            r for r in self._rows.values()
            if not r.reconciled
            and (invoice_type is None or r.invoice_type == invoice_type)
            and _in_range(r.reference_date, start, end)
        ]
        rows.sort(key=lambda r: (r.reference_date or date.min, r.id))
        return [copy.deepcopy(r) for r in rows]

    async def mark_reconciled(
        self,
        invoice_id: str,
        transaction_id: str,
        amount_cents: int,
        reconciled_at: datetime,
    ) -> APInvoice:
        async with self._lock:
            row = self._rows.get(invoice_id)
            if row is None:
                raise NotFoundError(
                    "Invoice not found",
                    operation="mark_reconciled",
                    transaction_id=transaction_id,
                    ledger_id=invoice_id,
                )
            if row.reconciled:
                raise AlreadyReconciledError(
                    "Invoice already reconciled",
                    operation="mark_reconciled",
                    transaction_id=transaction_id,
                    ledger_id=invoice_id,
                )
            row.reconciled = True
            row.reconciled_with = transaction_id
            row.reconciled_amount_cents = amount_cents
            row.reconciled_at = reconciled_at
            return copy.deepcopy(row)

    async def release(self, invoice_id: str) -> None:
        async with self._lock:
            row = self._rows.get(invoice_id)
            if row is None:
                return
            row.reconciled = False
            row.reconciled_with = None
            row.reconciled_amount_cents = None
            row.reconciled_at = None


class InMemoryOrderRepository(OrderRepository):

    def __init__(self, orders: Iterable[AROrder] = ()):
        self._rows: Dict[Tuple[OrderOrigin, str], AROrder] = {
            (o.origin, o.id): copy.deepcopy(o) for o in orders
        }
        self._lock = asyncio.Lock()

    def add(self, order: AROrder) -> None:
        self._rows[(order.origin, order.id)] = copy.deepcopy(order)

    async def get(self, record_id: str, origin: OrderOrigin) -> Optional[AROrder]:
        row = self._rows.get((origin, record_id))
        return copy.deepcopy(row) if row else None

    async def list_unreconciled(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        feed_sources: Sequence[str] = (),
    ) -> List[AROrder]:
        feeds = set(feed_sources)
        rows = []
        for row in self._rows.values():
            if row.reconciled or not _in_range(row.reference_date, start, end):
                continue
            if row.origin == OrderOrigin.INVOICE_ORDERS and row.source not in feeds:
                continue
            rows.append(row)
        rows.sort(key=lambda r: (r.reference_date or date.min, r.id))
        return [copy.deepcopy(r) for r in rows]

    async def mark_reconciled(
        self,
        record_id: str,
        origin: OrderOrigin,
        transaction_id: str,
        amount_cents: int,
        reconciled_at: datetime,
    ) -> AROrder:
        async with self._lock:
            row = self._rows.get((origin, record_id))
            if row is None:
                raise NotFoundError(
                    "Order not found",
                    operation="mark_reconciled",
                    transaction_id=transaction_id,
                    ledger_id=record_id,
                )
            if row.reconciled:
                raise AlreadyReconciledError(
                    "Order already reconciled",
                    operation="mark_reconciled",
                    transaction_id=transaction_id,
                    ledger_id=record_id,
                )
            row.reconciled = True
            row.reconciled_with = transaction_id
            row.reconciled_amount_cents = amount_cents
            row.reconciled_at = reconciled_at
            return copy.deepcopy(row)

    async def release(self, record_id: str, origin: OrderOrigin) -> None:
        async with self._lock:
            row = self._rows.get((origin, record_id))
            if row is None:
                return
            row.reconciled = False
            row.reconciled_with = None
            row.reconciled_amount_cents = None
            row.reconciled_at = None


class InMemorySettlementFeed(SettlementFeed):

    def __init__(self, rows: Iterable[GatewaySettlement] = ()):
        self._rows: List[GatewaySettlement] = [copy.deepcopy(r) for r in rows]

    def add(self, row: GatewaySettlement) -> None:
        self._rows.append(copy.deepcopy(row))

    async def list_unreconciled(
        self,
        sources: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[GatewaySettlement]:
        wanted = set(sources)
        rows = [
            r for r in self._rows
            if r.source in wanted
            and not r.reconciled
            and _in_range(r.reference_date, start, end)
        ]
        rows.sort(key=lambda r: (r.reference_date or date.min, r.id))
        return [copy.deepcopy(r) for r in rows]
