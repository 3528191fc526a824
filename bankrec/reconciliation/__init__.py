"""Candidate generation, commit and the automatic pass."""

from .gateway_detector import GatewayDetector, detect_gateway, source_label
from .expense_invoices import ExpenseInvoiceMatcher
from .payment_sources import PaymentSourceMatcher
from .revenue_orders import RevenueOrderMatcher
from .intercompany import IntercompanyMatcher
from .matcher import ReconciliationMatcher
from .committer import ReconciliationCommitter
from .auto_reconcile import AutoReconciler, select_candidate

__all__ = [
    "GatewayDetector",
    "detect_gateway",
    "source_label",
    "ExpenseInvoiceMatcher",
    "PaymentSourceMatcher",
    "RevenueOrderMatcher",
    "IntercompanyMatcher",
    "ReconciliationMatcher",
    "ReconciliationCommitter",
    "AutoReconciler",
    "select_candidate",
]
