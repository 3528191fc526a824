"""
Payment-source candidate generator.

Explains an incoming bank credit with gateway settlements. Batched gateways
(Braintree) pay out many customer charges as one lump sum, so their rows are
summed per disbursement date before comparing; other gateways are compared
row by row.
"""

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import BankTransaction, GatewaySettlement, PaymentSourceCandidate
from ..repositories import SettlementFeed
from ..utils.money import date_window, delta_percent, format_amount, in_window, tolerance_cents
from .gateway_detector import source_label

logger = structlog.get_logger()


class PaymentSourceMatcher:
    """Matches revenue transactions against gateway disbursements."""

    EXACT_SCORE = 95
    GROUP_SCORE = 80
    ROW_SCORE = 75

    def __init__(
        self,
        settlements: SettlementFeed,
        settings: Optional[Settings] = None,
    ):
        self.settlements = settlements
        self.settings = settings or get_settings()
        self.tolerance = self.settings.ratio("payment_source_tolerance")

    async def generate(self, transaction: BankTransaction) -> List[PaymentSourceCandidate]:
        """Candidates sorted by score, best first."""
        if not transaction.is_revenue or transaction.transaction_date is None:
            return []

        days = self.settings.payment_source_window_days
        start, end = date_window(transaction.transaction_date, days, days)
        rows = await self.settlements.list_unreconciled(
            self.settings.payment_sources_for(transaction.currency), start, end
        )

        marker = self.settings.batched_gateway_marker.lower()
        batched = [r for r in rows if marker in r.source.lower()]
        individual = [r for r in rows if marker not in r.source.lower()]

        target = transaction.abs_amount_cents
        candidates: List[PaymentSourceCandidate] = []

        for (source, payout_date), group in self._group_by_disbursement(batched).items():
            if not in_window(payout_date, start, end):
                continue
            total = sum(r.effective_amount_cents for r in group)
            candidate = self._evaluate(
                target=target,
                amount=total,
                key=f"{source}|{payout_date.isoformat()}",
                source=source,
                payout_date=payout_date,
                rows=group,
                grouped=True,
                currency=transaction.currency,
            )
            if candidate:
                candidates.append(candidate)

        for row in individual:
            if not in_window(row.reference_date, start, end):
                continue
            candidate = self._evaluate(
                target=target,
                amount=row.effective_amount_cents,
                key=row.id,
                source=row.source,
                payout_date=row.reference_date,
                rows=[row],
                grouped=False,
                currency=transaction.currency,
            )
            if candidate:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.score, reverse=True)
        logger.debug(
            "Payment source candidates",
            transaction_id=transaction.id,
            rows=len(rows),
            candidates=len(candidates),
        )
        return candidates

    def _group_by_disbursement(
        self,
        rows: List[GatewaySettlement],
    ) -> Dict[Tuple[str, date], List[GatewaySettlement]]:
        """Group rows by (source, disbursement date); undated disbursements fall back to the row date."""
        groups: Dict[Tuple[str, date], List[GatewaySettlement]] = OrderedDict()
        for row in rows:
            payout_date = row.disbursement_date or row.reference_date
            if payout_date is None:
                continue
            groups.setdefault((row.source, payout_date), []).append(row)
        return groups

    def _evaluate(
        self,
        target: int,
        amount: int,
        key: str,
        source: str,
        payout_date: date,
        rows: List[GatewaySettlement],
        grouped: bool,
        currency: str,
    ) -> Optional[PaymentSourceCandidate]:
        floor = self.settings.payment_source_floor_cents
        diff = abs(amount - target)
        limit = max(tolerance_cents(target, self.tolerance), Decimal(floor))
        if Decimal(diff) >= limit:
            return None

        count = len(rows)
        exact = diff < floor
        if exact:
            score = self.EXACT_SCORE
            reason = f"Exact disbursement ({count} txns)" if grouped else "Exact amount"
        elif grouped:
            score = self.GROUP_SCORE
            reason = (
                f"{count} txns, total {format_amount(amount, currency)} "
                f"(±{delta_percent(diff, target)}%)"
            )
        else:
            score = self.ROW_SCORE
            reason = f"Amount {format_amount(amount, currency)} (±{delta_percent(diff, target)}%)"

        return PaymentSourceCandidate(
            score=score,
            reason=reason,
            amount_cents=amount,
            date=payout_date,
            key=key,
            source=source,
            source_label=f"{source_label(source)} ({payout_date.isoformat()})",
            disbursement_date=payout_date,
            transaction_count=count,
            row_ids=[r.id for r in rows],
            grouped=grouped,
        )
