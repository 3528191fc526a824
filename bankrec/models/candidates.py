"""Transient match candidates produced by the generators."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .enums import CandidateKind, ExpenseStep, OrderOrigin


@dataclass
class Candidate:
    """
    A ledger record (or group of records) that may explain a bank transaction.
    Never persisted; recomputed per transaction.
    """
    kind: CandidateKind = CandidateKind.EXPENSE_INVOICE
    score: int = 0  # 0-100
    reason: str = ""
    amount_cents: int = 0
    date: Optional[date] = None

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_cents) / 100

    @property
    def ledger_id(self) -> str:
        """Id of the ledger record (or group key) this candidate points at."""
        return ""

    @property
    def ledger_key(self) -> str:
        """Identity used to avoid claiming the same ledger entry twice."""
        return f"{self.kind.value}:{self.ledger_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "score": self.score,
            "reason": self.reason,
            "amount_cents": self.amount_cents,
            "date": self.date.isoformat() if self.date else None,
            "ledger_id": self.ledger_id,
            "ledger_key": self.ledger_key,
        }


@dataclass
class ExpenseInvoiceCandidate(Candidate):
    kind: CandidateKind = CandidateKind.EXPENSE_INVOICE
    invoice_id: str = ""
    invoice_number: Optional[str] = None
    provider_code: str = ""
    step: ExpenseStep = ExpenseStep.EXACT_WINDOW
    matched_tokens: List[str] = field(default_factory=list)

    @property
    def ledger_id(self) -> str:
        return self.invoice_id

    @property
    def ledger_key(self) -> str:
        return f"invoice:{self.invoice_id}"


@dataclass
class PaymentSourceCandidate(Candidate):
    kind: CandidateKind = CandidateKind.PAYMENT_SOURCE
    key: str = ""  # "<source>|<disbursement date>" for groups, row id otherwise
    source: str = ""
    source_label: str = ""
    disbursement_date: Optional[date] = None
    transaction_count: int = 1
    row_ids: List[str] = field(default_factory=list)
    grouped: bool = False

    @property
    def ledger_id(self) -> str:
        return self.key

    @property
    def ledger_key(self) -> str:
        return f"gateway:{self.key}"


@dataclass
class RevenueOrderCandidate(Candidate):
    kind: CandidateKind = CandidateKind.REVENUE_ORDER
    record_id: str = ""
    order_id: Optional[str] = None
    invoice_number: Optional[str] = None
    customer_name: str = ""
    origin: OrderOrigin = OrderOrigin.AR_INVOICES
    name_match: bool = False

    @property
    def ledger_id(self) -> str:
        return self.record_id

    @property
    def ledger_key(self) -> str:
        return f"{self.origin.value}:{self.record_id}"


@dataclass
class IntercompanyCandidate(Candidate):
    kind: CandidateKind = CandidateKind.INTERCOMPANY
    transaction_id: str = ""
    source: str = ""
    description: str = ""

    @property
    def ledger_id(self) -> str:
        return self.transaction_id

    @property
    def ledger_key(self) -> str:
        return f"bank:{self.transaction_id}"


@dataclass
class ExpenseInvoiceMatches:
    """Three-step result of the expense-invoice generator."""
    exact: List[ExpenseInvoiceCandidate] = field(default_factory=list)
    counterparty: List[ExpenseInvoiceCandidate] = field(default_factory=list)
    pool: List[ExpenseInvoiceCandidate] = field(default_factory=list)

    @property
    def suggested(self) -> List[ExpenseInvoiceCandidate]:
        """Scored candidates (steps A and B); the pool is browse-only."""
        return self.exact + self.counterparty

    def search(self, term: str) -> List[ExpenseInvoiceCandidate]:
        """Filter every step by invoice number, provider or reason substring."""
        needle = (term or "").strip().lower()
        everything = self.exact + self.counterparty + self.pool
        if not needle:
            return everything
        return [
            c for c in everything
            if needle in (c.invoice_number or "").lower()
            or needle in (c.provider_code or "").lower()
            or needle in c.reason.lower()
        ]


@dataclass
class CandidateSet:
    """All candidates computed for one bank transaction."""
    transaction_id: str
    expense: ExpenseInvoiceMatches = field(default_factory=ExpenseInvoiceMatches)
    payment_sources: List[PaymentSourceCandidate] = field(default_factory=list)
    revenue_orders: List[RevenueOrderCandidate] = field(default_factory=list)
    intercompany: List[IntercompanyCandidate] = field(default_factory=list)

    def suggested(self) -> List[Candidate]:
        """Committable scored candidates, best first."""
        candidates: List[Candidate] = []
        candidates.extend(self.expense.suggested)
        candidates.extend(self.payment_sources)
        candidates.extend(self.revenue_orders)
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    @property
    def is_empty(self) -> bool:
        return not (
            self.expense.suggested
            or self.expense.pool
            or self.payment_sources
            or self.revenue_orders
            or self.intercompany
        )
