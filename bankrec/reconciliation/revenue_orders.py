"""
Revenue-order candidate generator.

Scores accounts-receivable invoices and web orders against an incoming bank
credit by amount closeness and whether the customer's name appears in the
bank description. The structured AR table is trusted slightly more than the
generic order feed.
"""

from typing import List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import AROrder, BankTransaction, MasterData, OrderOrigin, RevenueOrderCandidate
from ..repositories import OrderRepository
from ..utils.money import date_window, delta_percent, within_ratio
from ..utils.text_matching import name_tokens

logger = structlog.get_logger()


# (structured AR table, generic order feed)
SCORES = {
    "exact_name": (100, 100),
    "exact": (90, 85),
    "close_name": (75, 70),
    "name": (50, 50),
    "close": (40, 35),
}


class RevenueOrderMatcher:
    """Matches revenue transactions against AR invoices and order-feed rows."""

    def __init__(
        self,
        orders: OrderRepository,
        master_data: Optional[MasterData] = None,
        settings: Optional[Settings] = None,
    ):
        self.orders = orders
        self.master_data = master_data or MasterData()
        self.settings = settings or get_settings()
        self.tolerance = self.settings.ratio("revenue_close_tolerance")

    async def generate(self, transaction: BankTransaction) -> List[RevenueOrderCandidate]:
        """Scored candidates from both sources, best first; zero scores are dropped."""
        if not transaction.is_revenue or transaction.transaction_date is None:
            return []

        start, end = date_window(
            transaction.transaction_date,
            self.settings.revenue_days_before,
            self.settings.revenue_days_after,
        )
        records = await self.orders.list_unreconciled(
            start=start,
            end=end,
            feed_sources=self.settings.order_feed_sources_for(transaction.currency),
        )

        description = (transaction.description or "").lower()
        candidates = []
        for record in records:
            candidate = self._score(transaction, record, description)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.score, reverse=True)
        logger.debug(
            "Revenue order candidates",
            transaction_id=transaction.id,
            records=len(records),
            candidates=len(candidates),
        )
        return candidates

    def customer_name(self, record: AROrder) -> str:
        return (
            record.customer_name
            or record.counterparty
            or self.master_data.customer_name(record.customer_code)
            or ""
        )

    def _score(
        self,
        transaction: BankTransaction,
        record: AROrder,
        description: str,
    ) -> Optional[RevenueOrderCandidate]:
        target = transaction.abs_amount_cents
        amount = record.effective_amount_cents
        diff = abs(amount - target)
        is_exact = diff < self.settings.exact_epsilon_cents
        is_close = within_ratio(diff, target, self.tolerance, inclusive=True)

        customer = self.customer_name(record)
        name_match = any(token in description for token in name_tokens(customer))

        if is_exact and name_match:
            rule, reason = "exact_name", "Exact amount + customer name"
        elif is_exact:
            rule, reason = "exact", "Exact amount"
        elif is_close and name_match:
            rule, reason = "close_name", f"Customer name, amount ±{delta_percent(diff, target)}%"
        elif name_match:
            rule, reason = "name", "Customer name match"
        elif is_close:
            rule, reason = "close", f"Amount ±{delta_percent(diff, target)}%"
        else:
            return None

        structured, generic = SCORES[rule]
        score = generic if record.origin == OrderOrigin.INVOICE_ORDERS else structured

        return RevenueOrderCandidate(
            score=score,
            reason=reason,
            amount_cents=amount,
            date=record.reference_date,
            record_id=record.id,
            order_id=record.order_id,
            invoice_number=record.invoice_number,
            customer_name=customer,
            origin=record.origin,
            name_match=name_match,
        )
