"""Bank transaction model."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from .enums import CandidateKind, MatchType, ReconciliationType


@dataclass(frozen=True)
class MatchedEntity:
    """Reference to the ledger record a transaction was reconciled against."""
    kind: CandidateKind
    id: str


@dataclass
class ReconciliationFields:
    """Values written onto a bank transaction by a commit."""
    reconciliation_type: ReconciliationType
    match_type: MatchType
    reconciled_at: datetime
    matched_entity: Optional[MatchedEntity] = None
    note: Optional[str] = None
    gateway: Optional[str] = None
    match_details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BankTransaction:
    """
    A raw bank-statement line.
    Amounts are stored in CENTS: negative is an outflow, positive an inflow.
    """
    # Identity
    id: str
    source: str  # Bank account key
    currency: str = "EUR"

    # Statement data
    transaction_date: Optional[date] = None
    description: str = ""
    amount_cents: int = 0

    # Reconciliation state
    is_reconciled: bool = False
    reconciliation_type: ReconciliationType = ReconciliationType.NONE
    matched_entity: Optional[MatchedEntity] = None
    note: Optional[str] = None
    gateway: Optional[str] = None
    match_type: Optional[MatchType] = None
    reconciled_at: Optional[datetime] = None
    match_details: Dict[str, Any] = field(default_factory=dict)

    # Non-reconciliation custom data, carried through untouched
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        """Signed amount in standard units."""
        return Decimal(self.amount_cents) / 100

    @property
    def abs_amount_cents(self) -> int:
        return abs(self.amount_cents)

    @property
    def is_expense(self) -> bool:
        return self.amount_cents < 0

    @property
    def is_revenue(self) -> bool:
        return self.amount_cents > 0

    def apply(self, fields: ReconciliationFields) -> None:
        """Mark reconciled with the given commit values."""
        self.is_reconciled = True
        self.reconciliation_type = fields.reconciliation_type
        self.match_type = fields.match_type
        self.reconciled_at = fields.reconciled_at
        self.matched_entity = fields.matched_entity
        self.note = fields.note
        self.gateway = fields.gateway
        self.match_details = dict(fields.match_details)

    def clear(self) -> None:
        """Strip all reconciliation metadata."""
        self.is_reconciled = False
        self.reconciliation_type = ReconciliationType.NONE
        self.match_type = None
        self.reconciled_at = None
        self.matched_entity = None
        self.note = None
        self.gateway = None
        self.match_details = {}

    def reconciliation_snapshot(self) -> Dict[str, Any]:
        """Persisted reconciliation metadata without the commit timestamp."""
        return {
            "is_reconciled": self.is_reconciled,
            "reconciliation_type": self.reconciliation_type.value,
            "matched_entity": (
                (self.matched_entity.kind.value, self.matched_entity.id)
                if self.matched_entity else None
            ),
            "note": self.note,
            "gateway": self.gateway,
            "match_type": self.match_type.value if self.match_type else None,
            "match_details": dict(self.match_details),
        }
