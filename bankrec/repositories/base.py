"""
Storage contracts consumed by the matcher and the committer.

Every mark_reconciled call is a compare-and-set: it only succeeds while the
target is unreconciled, which is what keeps two commits from claiming the
same record.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional, Sequence

from ..models import (
    APInvoice,
    AROrder,
    BankTransaction,
    GatewaySettlement,
    OrderOrigin,
    ReconciliationFields,
)


class TransactionFeed(ABC):
    """Bank-statement lines across all bank accounts."""

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[BankTransaction]:
        ...

    @abstractmethod
    async def list_unreconciled(
        self,
        sources: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[BankTransaction]:
        """Unreconciled rows of the given accounts, oldest first."""

    @abstractmethod
    async def mark_reconciled(
        self,
        transaction_id: str,
        fields: ReconciliationFields,
    ) -> BankTransaction:
        """
        Set reconciliation fields if the row is currently unreconciled.

        Raises:
            NotFoundError: Row does not exist
            AlreadyReconciledError: Row is already reconciled
        """

    @abstractmethod
    async def clear_reconciliation(self, transaction_id: str) -> BankTransaction:
        """
        Strip reconciliation fields from a reconciled row.

        Raises:
            NotFoundError: Row does not exist
            NotReconciledError: Row is not reconciled
        """


class InvoiceRepository(ABC):
    """Accounts-payable invoices."""

    @abstractmethod
    async def get(self, invoice_id: str) -> Optional[APInvoice]:
        ...

    @abstractmethod
    async def list_unreconciled(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        invoice_type: Optional[str] = None,
    ) -> List[APInvoice]:
        """Unreconciled invoices by reference-date range, earliest first."""

    @abstractmethod
    async def mark_reconciled(
        self,
        invoice_id: str,
        transaction_id: str,
        amount_cents: int,
        reconciled_at: datetime,
    ) -> APInvoice:
        """Guarded update; raises NotFoundError or AlreadyReconciledError."""

    @abstractmethod
    async def release(self, invoice_id: str) -> None:
        """Undo mark_reconciled (compensation)."""


class OrderRepository(ABC):
    """Accounts-receivable invoices and generic order-feed rows."""

    @abstractmethod
    async def get(self, record_id: str, origin: OrderOrigin) -> Optional[AROrder]:
        ...

    @abstractmethod
    async def list_unreconciled(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        feed_sources: Sequence[str] = (),
    ) -> List[AROrder]:
        """Unreconciled AR invoices plus order-feed rows of feed_sources."""

    @abstractmethod
    async def mark_reconciled(
        self,
        record_id: str,
        origin: OrderOrigin,
        transaction_id: str,
        amount_cents: int,
        reconciled_at: datetime,
    ) -> AROrder:
        """Guarded update; raises NotFoundError or AlreadyReconciledError."""

    @abstractmethod
    async def release(self, record_id: str, origin: OrderOrigin) -> None:
        """Undo mark_reconciled (compensation)."""


class SettlementFeed(ABC):
    """Payment-gateway settlement rows."""

    @abstractmethod
    async def list_unreconciled(
        self,
        sources: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[GatewaySettlement]:
        ...
