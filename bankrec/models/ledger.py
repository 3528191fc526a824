"""Ledger-side records the matcher reads and flags as reconciled."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from .enums import OrderOrigin


@dataclass
class LedgerRecord:
    """
    Base ledger record with the fields needed for matching.
    All monetary amounts are stored in CENTS.
    """
    id: str
    amount_cents: int = 0
    paid_amount_cents: Optional[int] = None  # Overrides the face amount when set
    reference_date: Optional[date] = None
    currency: str = "EUR"
    counterparty: str = ""

    # Reconciliation state
    reconciled: bool = False
    reconciled_with: Optional[str] = None  # Bank transaction id
    reconciled_amount_cents: Optional[int] = None
    reconciled_at: Optional[datetime] = None

    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def effective_amount_cents(self) -> int:
        """Amount used for matching and committing."""
        if self.paid_amount_cents is not None:
            return abs(self.paid_amount_cents)
        return abs(self.amount_cents)

    @property
    def amount(self) -> Decimal:
        return Decimal(self.effective_amount_cents) / 100


@dataclass
class APInvoice(LedgerRecord):
    """Accounts-payable invoice. reference_date is the schedule/due date."""
    invoice_number: Optional[str] = None
    provider_code: str = ""
    description: str = ""
    invoice_type: str = "INCURRED"


@dataclass
class AROrder(LedgerRecord):
    """
    Accounts-receivable invoice or web order.
    reference_date is the order date.
    """
    origin: OrderOrigin = OrderOrigin.AR_INVOICES
    source: Optional[str] = None  # Feed key for generic order rows
    order_id: Optional[str] = None
    invoice_number: Optional[str] = None
    customer_name: str = ""
    customer_code: Optional[str] = None


@dataclass
class GatewaySettlement(LedgerRecord):
    """
    Payment-gateway settlement row.
    Rows paid out together share a disbursement_date.
    """
    source: str = ""
    disbursement_date: Optional[date] = None
    description: str = ""


@dataclass(frozen=True)
class MasterData:
    """Read-only lookup tables (code -> display name) used for name matching."""
    providers: Mapping[str, str] = field(default_factory=dict)
    customers: Mapping[str, str] = field(default_factory=dict)

    def provider_name(self, code: Optional[str]) -> Optional[str]:
        if not code:
            return None
        return self.providers.get(code) or self.providers.get(code.upper())

    def customer_name(self, code: Optional[str]) -> Optional[str]:
        if not code:
            return None
        return self.customers.get(code) or self.customers.get(code.upper())
