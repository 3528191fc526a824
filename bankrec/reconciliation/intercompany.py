"""
Intercompany transfer suggestions.

A transfer between two of the company's own accounts shows up as an outflow
in one and an inflow of (almost) the same amount in the other.
"""

from typing import List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import BankTransaction, IntercompanyCandidate
from ..repositories import TransactionFeed
from ..utils.money import date_window, delta_percent, within_ratio

logger = structlog.get_logger()


class IntercompanyMatcher:
    """Finds opposite-sign rows in the other bank accounts."""

    EXACT_SCORE = 95
    CLOSE_SCORE = 70

    def __init__(
        self,
        transactions: TransactionFeed,
        settings: Optional[Settings] = None,
    ):
        self.transactions = transactions
        self.settings = settings or get_settings()
        self.tolerance = self.settings.ratio("intercompany_tolerance")

    async def generate(self, transaction: BankTransaction) -> List[IntercompanyCandidate]:
        if not transaction.is_revenue or transaction.transaction_date is None:
            return []

        others = [a for a in self.settings.bank_accounts if a != transaction.source]
        if not others:
            return []

        days = self.settings.intercompany_window_days
        start, end = date_window(transaction.transaction_date, days, days)
        rows = await self.transactions.list_unreconciled(others, start, end)

        target = transaction.abs_amount_cents
        candidates = []
        for row in rows:
            if row.id == transaction.id:
                continue
            # Outflow elsewhere must pair with an inflow here and vice versa
            if row.amount_cents * transaction.amount_cents >= 0:
                continue
            residual = abs(row.abs_amount_cents - target)
            if not within_ratio(residual, target, self.tolerance):
                continue

            exact = residual < self.settings.exact_epsilon_cents
            candidates.append(IntercompanyCandidate(
                score=self.EXACT_SCORE if exact else self.CLOSE_SCORE,
                reason="Exact opposite transfer" if exact else f"Opposite transfer ±{delta_percent(residual, target)}%",
                amount_cents=row.abs_amount_cents,
                date=row.transaction_date,
                transaction_id=row.id,
                source=row.source,
                description=row.description,
            ))

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates
