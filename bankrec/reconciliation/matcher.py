"""
Candidate service.

Runs the generators that apply to a bank transaction's direction and
collects their output into one CandidateSet:

- Expense (amount < 0): AP invoices
- Revenue (amount > 0): gateway disbursements, AR orders and intercompany
  transfers
"""

import asyncio
from typing import Optional, Union

import structlog

from ..config import Settings, get_settings
from ..exceptions import NotFoundError
from ..models import AuditAction, AuditEntry, BankTransaction, CandidateSet, MasterData
from ..repositories import InvoiceRepository, OrderRepository, SettlementFeed, TransactionFeed
from ..utils.audit_logger import AuditLogger
from .expense_invoices import ExpenseInvoiceMatcher
from .intercompany import IntercompanyMatcher
from .payment_sources import PaymentSourceMatcher
from .revenue_orders import RevenueOrderMatcher

logger = structlog.get_logger()


class ReconciliationMatcher:
    """Computes candidate matches for bank transactions. Read-only."""

    def __init__(
        self,
        transactions: TransactionFeed,
        invoices: InvoiceRepository,
        orders: OrderRepository,
        settlements: SettlementFeed,
        master_data: Optional[MasterData] = None,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.settings = settings or get_settings()
        self.transactions = transactions
        self.audit = audit
        master_data = master_data or MasterData()

        self.expense_matcher = ExpenseInvoiceMatcher(invoices, master_data, self.settings)
        self.payment_source_matcher = PaymentSourceMatcher(settlements, self.settings)
        self.revenue_matcher = RevenueOrderMatcher(orders, master_data, self.settings)
        self.intercompany_matcher = IntercompanyMatcher(transactions, self.settings)

    async def find_candidates(
        self,
        transaction: Union[str, BankTransaction],
    ) -> CandidateSet:
        """
        Compute every candidate list for a transaction.

        Args:
            transaction: The transaction or its id

        Returns:
            CandidateSet; lists that do not apply to the transaction's
            direction are left empty

        Raises:
            NotFoundError: The id does not resolve to a transaction
        """
        if isinstance(transaction, str):
            loaded = await self.transactions.get(transaction)
            if loaded is None:
                raise NotFoundError(
                    "Transaction not found",
                    operation="find_candidates",
                    transaction_id=transaction,
                )
            transaction = loaded

        result = CandidateSet(transaction_id=transaction.id)

        if transaction.is_expense:
            result.expense = await self.expense_matcher.generate(transaction)
        elif transaction.is_revenue:
            (
                result.payment_sources,
                result.revenue_orders,
                result.intercompany,
            ) = await asyncio.gather(
                self.payment_source_matcher.generate(transaction),
                self.revenue_matcher.generate(transaction),
                self.intercompany_matcher.generate(transaction),
            )

        logger.info(
            "Candidates computed",
            transaction_id=transaction.id,
            direction="expense" if transaction.is_expense else "revenue",
            suggested=len(result.suggested()),
        )
        if self.audit is not None:
            self.audit.log(AuditEntry(
                action=AuditAction.CANDIDATES_GENERATED,
                operation="find_candidates",
                transaction_ids=[transaction.id],
                message=f"{len(result.suggested())} suggested candidates",
                details={
                    "expense_exact": len(result.expense.exact),
                    "expense_counterparty": len(result.expense.counterparty),
                    "expense_pool": len(result.expense.pool),
                    "payment_sources": len(result.payment_sources),
                    "revenue_orders": len(result.revenue_orders),
                    "intercompany": len(result.intercompany),
                },
            ))
        return result
