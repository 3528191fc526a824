"""
Expense-invoice candidate generator.

Matches an outgoing bank payment against unreconciled accounts-payable
invoices in three passes:

1. Exact window: schedule date within a few days and amount within tolerance
2. Counterparty window: broader dates, description tokens found in the
   supplier code/name or invoice description, same amount tolerance
3. Pool: every other recent unreconciled invoice, unscored, for browsing
"""

from datetime import timedelta
from typing import List, Optional, Set, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import (
    APInvoice,
    BankTransaction,
    ExpenseInvoiceCandidate,
    ExpenseInvoiceMatches,
    ExpenseStep,
    MasterData,
)
from ..repositories import InvoiceRepository
from ..utils.money import date_window, delta_percent, in_window, within_ratio
from ..utils.text_matching import (
    extract_supplier_name,
    matching_tokens,
    name_similarity,
    tokenize,
)

logger = structlog.get_logger()


class ExpenseInvoiceMatcher:
    """Scores AP invoices against an expense (negative) bank transaction."""

    EXACT_SCORE = 95
    WINDOW_SCORE = 80
    MULTI_TOKEN_SCORE = 75
    SINGLE_TOKEN_SCORE = 60

    def __init__(
        self,
        invoices: InvoiceRepository,
        master_data: Optional[MasterData] = None,
        settings: Optional[Settings] = None,
    ):
        self.invoices = invoices
        self.master_data = master_data or MasterData()
        self.settings = settings or get_settings()
        self.tolerance = self.settings.ratio("expense_amount_tolerance")

    async def generate(self, transaction: BankTransaction) -> ExpenseInvoiceMatches:
        """
        Build the three candidate lists for an expense transaction.

        Returns empty lists for revenue transactions or undated rows.
        """
        if not transaction.is_expense or transaction.transaction_date is None:
            return ExpenseInvoiceMatches()

        tx_date = transaction.transaction_date
        s = self.settings
        lookback = max(
            s.expense_exact_window_days,
            s.expense_counterparty_days_before,
            s.expense_pool_days_before,
        )
        invoices = await self.invoices.list_unreconciled(
            start=tx_date - timedelta(days=lookback),
            end=None,
            invoice_type=s.expense_invoice_type,
        )

        exact = self._exact_window(transaction, invoices)
        taken = {c.invoice_id for c in exact}
        counterparty = self._counterparty_window(transaction, invoices, taken)
        taken.update(c.invoice_id for c in counterparty)
        pool = self._pool(transaction, invoices, taken)

        logger.debug(
            "Expense invoice candidates",
            transaction_id=transaction.id,
            exact=len(exact),
            counterparty=len(counterparty),
            pool=len(pool),
        )
        return ExpenseInvoiceMatches(exact=exact, counterparty=counterparty, pool=pool)

    def _exact_window(
        self,
        transaction: BankTransaction,
        invoices: List[APInvoice],
    ) -> List[ExpenseInvoiceCandidate]:
        days = self.settings.expense_exact_window_days
        start, end = date_window(transaction.transaction_date, days, days)
        target = transaction.abs_amount_cents

        candidates = []
        for invoice in invoices:
            if not in_window(invoice.reference_date, start, end):
                continue
            diff = abs(invoice.effective_amount_cents - target)
            if not within_ratio(diff, target, self.tolerance):
                continue

            if diff < self.settings.exact_epsilon_cents:
                score = self.EXACT_SCORE
                reason = f"Exact amount, date ±{days}d"
            else:
                score = self.WINDOW_SCORE
                reason = f"Amount within {delta_percent(diff, target)}%, date ±{days}d"

            candidates.append(self._candidate(invoice, score, reason, ExpenseStep.EXACT_WINDOW))
        return candidates

    def _counterparty_window(
        self,
        transaction: BankTransaction,
        invoices: List[APInvoice],
        taken: Set[str],
    ) -> List[ExpenseInvoiceCandidate]:
        s = self.settings
        start, end = date_window(
            transaction.transaction_date,
            s.expense_counterparty_days_before,
            s.expense_counterparty_days_after,
        )
        supplier = extract_supplier_name(transaction.description)
        # A supplier after the slash is the only reliable part of the description
        tokens = tokenize(supplier or transaction.description, s.noise_words)
        if not tokens and not supplier:
            return []

        target = transaction.abs_amount_cents
        candidates = []
        for invoice in invoices:
            if invoice.id in taken or not in_window(invoice.reference_date, start, end):
                continue
            diff = abs(invoice.effective_amount_cents - target)
            if not within_ratio(diff, target, self.tolerance):
                continue

            provider_name = self.master_data.provider_name(invoice.provider_code)
            matched = matching_tokens(
                tokens, invoice.provider_code, provider_name, invoice.description
            )
            if matched:
                score = self.MULTI_TOKEN_SCORE if len(matched) > 1 else self.SINGLE_TOKEN_SCORE
                reason = f'Counterparty "{", ".join(matched)}", amount ±{delta_percent(diff, target)}%'
            else:
                fuzzy = self._fuzzy_supplier(supplier, invoice.provider_code, provider_name)
                if fuzzy is None:
                    continue
                name, similarity = fuzzy
                score = self.SINGLE_TOKEN_SCORE
                reason = (
                    f'Supplier "{supplier}" ≈ "{name}" ({round(similarity * 100)}%), '
                    f"amount ±{delta_percent(diff, target)}%"
                )

            candidate = self._candidate(invoice, score, reason, ExpenseStep.COUNTERPARTY_WINDOW)
            candidate.matched_tokens = matched
            candidates.append(candidate)
        return candidates

    def _fuzzy_supplier(
        self,
        supplier: Optional[str],
        *names: Optional[str],
    ) -> Optional[Tuple[str, float]]:
        """Best (name, similarity) above the fuzzy threshold, if any."""
        if not supplier:
            return None
        best: Optional[Tuple[str, float]] = None
        for name in names:
            if not name:
                continue
            similarity = name_similarity(supplier, name)
            if best is None or similarity > best[1]:
                best = (name, similarity)
        if best and best[1] >= self.settings.supplier_fuzzy_threshold:
            return best
        return None

    def _pool(
        self,
        transaction: BankTransaction,
        invoices: List[APInvoice],
        taken: Set[str],
    ) -> List[ExpenseInvoiceCandidate]:
        start = transaction.transaction_date - timedelta(
            days=self.settings.expense_pool_days_before
        )
        return [
            self._candidate(invoice, 0, "Unreconciled", ExpenseStep.POOL)
            for invoice in invoices
            if invoice.id not in taken
            and invoice.reference_date is not None
            and invoice.reference_date >= start
        ]

    def _candidate(
        self,
        invoice: APInvoice,
        score: int,
        reason: str,
        step: ExpenseStep,
    ) -> ExpenseInvoiceCandidate:
        return ExpenseInvoiceCandidate(
            score=score,
            reason=reason,
            amount_cents=invoice.effective_amount_cents,
            date=invoice.reference_date,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            provider_code=invoice.provider_code,
            step=step,
        )
