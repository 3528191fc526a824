"""Enumerations for the reconciliation core."""

from enum import Enum


class ReconciliationType(str, Enum):
    """
    How a bank transaction was reconciled.

    AUTOMATIC: Committed by the automatic pass
    MANUAL: Committed by a user (structured match or manual note)
    NONE: Not reconciled
    """
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    NONE = "none"


class CandidateKind(str, Enum):
    """Ledger type a candidate points at."""
    EXPENSE_INVOICE = "expense_invoice"
    PAYMENT_SOURCE = "payment_source"
    REVENUE_ORDER = "revenue_order"
    INTERCOMPANY = "intercompany"


class MatchType(str, Enum):
    """What a reconciled transaction was matched to."""
    INVOICE = "invoice"
    PAYMENT_SOURCE = "payment_source"
    REVENUE_ORDER = "revenue_order"
    INTERCOMPANY = "intercompany"
    MANUAL = "manual"


class ExpenseStep(str, Enum):
    """Which expense-invoice pass produced a candidate."""
    EXACT_WINDOW = "exact_window"
    COUNTERPARTY_WINDOW = "counterparty_window"
    POOL = "pool"


class OrderOrigin(str, Enum):
    """Source table of a receivable record."""
    AR_INVOICES = "ar_invoices"      # Structured AR invoice table
    INVOICE_ORDERS = "invoice_orders"  # Generic order feed


class AuditAction(str, Enum):
    """Type of audit action."""
    CANDIDATES_GENERATED = "candidates_generated"
    MATCH_COMMITTED = "match_committed"
    MATCH_REVERTED = "match_reverted"
    COMMIT_FAILED = "commit_failed"
    COMPENSATION_APPLIED = "compensation_applied"
    COMPENSATION_FAILED = "compensation_failed"
    AUTO_MATCH_PLANNED = "auto_match_planned"
    TIE_BROKEN = "tie_broken"
