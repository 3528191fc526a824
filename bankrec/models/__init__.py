"""Data models for the reconciliation core."""

from .enums import (
    AuditAction,
    CandidateKind,
    ExpenseStep,
    MatchType,
    OrderOrigin,
    ReconciliationType,
)
from .transaction import (
    BankTransaction,
    MatchedEntity,
    ReconciliationFields,
)
from .ledger import (
    LedgerRecord,
    APInvoice,
    AROrder,
    GatewaySettlement,
    MasterData,
)
from .candidates import (
    Candidate,
    ExpenseInvoiceCandidate,
    PaymentSourceCandidate,
    RevenueOrderCandidate,
    IntercompanyCandidate,
    ExpenseInvoiceMatches,
    CandidateSet,
)
from .reconciliation import (
    AuditEntry,
    PlannedMatch,
    SourceReport,
    AutoReconcileReport,
)

__all__ = [
    # Enums
    "AuditAction",
    "CandidateKind",
    "ExpenseStep",
    "MatchType",
    "OrderOrigin",
    "ReconciliationType",
    # Transactions
    "BankTransaction",
    "MatchedEntity",
    "ReconciliationFields",
    # Ledger
    "LedgerRecord",
    "APInvoice",
    "AROrder",
    "GatewaySettlement",
    "MasterData",
    # Candidates
    "Candidate",
    "ExpenseInvoiceCandidate",
    "PaymentSourceCandidate",
    "RevenueOrderCandidate",
    "IntercompanyCandidate",
    "ExpenseInvoiceMatches",
    "CandidateSet",
    # Reconciliation
    "AuditEntry",
    "PlannedMatch",
    "SourceReport",
    "AutoReconcileReport",
]
