"""
Automatic reconciliation pass.

Preview or apply high-confidence matches for every unreconciled transaction
of the selected bank accounts:

1. Candidate generation (concurrent, bounded by a semaphore)
2. Selection in feed order: best unclaimed candidate at or above threshold;
   a shared top score goes to the candidate dated closest to the transaction
3. Apply (optional): commit each selection; lost races are counted, not fatal
"""

import asyncio
import sys
from datetime import date, datetime
from typing import Callable, List, Optional, Sequence, Set, Tuple

import structlog

from ..config import Settings, get_settings
from ..exceptions import ReconciliationError
from ..models import (
    AuditAction,
    AuditEntry,
    AutoReconcileReport,
    BankTransaction,
    Candidate,
    CandidateSet,
    PlannedMatch,
    SourceReport,
)
from ..repositories import TransactionFeed
from ..utils.audit_logger import AuditLogger
from .committer import ReconciliationCommitter
from .matcher import ReconciliationMatcher

logger = structlog.get_logger()


def _date_distance(candidate: Candidate, transaction_date: Optional[date]) -> int:
    if candidate.date is None or transaction_date is None:
        return sys.maxsize
    return abs((candidate.date - transaction_date).days)


def select_candidate(
    candidates: CandidateSet,
    threshold: int,
    claimed: Optional[Set[str]] = None,
    transaction_date: Optional[date] = None,
) -> Tuple[Optional[Candidate], List[Candidate]]:
    """
    Pick the best suggested candidate at or above threshold.

    Candidates whose ledger entry is already claimed are ignored. When several
    share the top score, the one dated closest to the transaction wins, then
    the earliest in repository order (date ascending).

    Returns (candidate, runners_up); runners_up are the other candidates that
    shared the winning score.
    """
    claimed = claimed or set()
    eligible = [
        c for c in candidates.suggested()
        if c.score >= threshold and c.ledger_key not in claimed
    ]
    if not eligible:
        return None, []
    top = eligible[0].score
    tied = [c for c in eligible if c.score == top]
    # sorted() is stable, so equal distances keep repository order
    ranked = sorted(tied, key=lambda c: _date_distance(c, transaction_date))
    return ranked[0], ranked[1:]


class AutoReconciler:
    """Runs the automatic pass over one or more bank accounts."""

    def __init__(
        self,
        matcher: ReconciliationMatcher,
        committer: ReconciliationCommitter,
        transactions: TransactionFeed,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.matcher = matcher
        self.committer = committer
        self.transactions = transactions
        self.settings = settings or get_settings()
        self.audit = audit or committer.audit

    async def run(
        self,
        sources: Sequence[str],
        dry_run: bool = True,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        threshold: Optional[int] = None,
        progress_callback: Optional[Callable[[float, str], None]] = None,
    ) -> AutoReconcileReport:
        """
        Execute the pass.

        Args:
            sources: Bank account keys to process
            dry_run: Preview only; nothing is written
            start_date: Optional lower bound on transaction date
            end_date: Optional upper bound on transaction date
            threshold: Minimum score to accept, defaults to auto_commit_threshold
            progress_callback: Optional callback for progress updates

        Returns:
            AutoReconcileReport with per-source counts and the planned matches
        """
        threshold = self.settings.auto_commit_threshold if threshold is None else threshold
        with structlog.contextvars.bound_contextvars(run_id=self.audit.run_id):
            return await self._run(
                sources, dry_run, start_date, end_date, threshold, progress_callback
            )

    async def _run(
        self,
        sources: Sequence[str],
        dry_run: bool,
        start_date: Optional[date],
        end_date: Optional[date],
        threshold: int,
        progress_callback: Optional[Callable[[float, str], None]],
    ) -> AutoReconcileReport:
        report = AutoReconcileReport(dry_run=dry_run, threshold=threshold)

        def update_progress(percent: float, phase: str):
            if progress_callback:
                progress_callback(percent, phase)

        logger.info(
            "Starting automatic pass",
            sources=list(sources),
            dry_run=dry_run,
            threshold=threshold,
        )

        claimed: Set[str] = set()
        for i, source in enumerate(sources):
            update_progress(100 * i / max(len(sources), 1), f"Matching {source}")
            source_report = SourceReport(source=source)
            report.sources[source] = source_report

            transactions = await self.transactions.list_unreconciled([source], start_date, end_date)
            source_report.total = len(transactions)
            candidate_sets = await self._generate(transactions)

            planned: List[PlannedMatch] = []
            for tx, candidates in zip(transactions, candidate_sets):
                best, runners_up = select_candidate(
                    candidates, threshold, claimed, tx.transaction_date
                )
                if best is None:
                    source_report.unmatched += 1
                    continue

                claimed.add(best.ledger_key)
                source_report.matched += 1
                planned.append(PlannedMatch(transaction_id=tx.id, source=source, candidate=best))
                if runners_up:
                    source_report.tie_breaks += 1
                    self.audit.log(AuditEntry(
                        action=AuditAction.TIE_BROKEN,
                        operation="auto_reconcile",
                        transaction_ids=[tx.id],
                        ledger_id=best.ledger_key,
                        message=f"Score {best.score} shared by {len(runners_up) + 1} candidates; closest date wins",
                        details={"runners_up": [c.ledger_key for c in runners_up]},
                    ))
                self.audit.log(AuditEntry(
                    action=AuditAction.AUTO_MATCH_PLANNED,
                    operation="auto_reconcile",
                    transaction_ids=[tx.id],
                    ledger_id=best.ledger_key,
                    message=f"{best.kind.value} scored {best.score}: {best.reason}",
                ))

            if not dry_run and planned:
                update_progress(100 * (i + 0.5) / len(sources), f"Applying {len(planned)} matches to {source}")
                await self._apply(planned, source_report)

            report.matches.extend(planned)
            logger.info(
                "Automatic pass source complete",
                source=source,
                **source_report.to_dict(),
            )

        report.completed_at = datetime.utcnow()
        update_progress(100, "Complete")
        logger.info(
            "Automatic pass complete",
            dry_run=dry_run,
            matched=report.total_matched,
            applied=report.total_applied,
        )
        return report

    async def _generate(self, transactions: List[BankTransaction]) -> List[CandidateSet]:
        semaphore = asyncio.Semaphore(max(self.settings.auto_max_concurrency, 1))

        async def bounded(tx: BankTransaction) -> CandidateSet:
            async with semaphore:
                return await self.matcher.find_candidates(tx)

        return list(await asyncio.gather(*(bounded(tx) for tx in transactions)))

    async def _apply(self, planned: List[PlannedMatch], source_report: SourceReport) -> None:
        semaphore = asyncio.Semaphore(max(self.settings.auto_max_concurrency, 1))

        async def commit(match: PlannedMatch):
            async with semaphore:
                try:
                    await self.committer.commit_automatic(match.transaction_id, match.candidate)
                except ReconciliationError as e:
                    match.error = str(e)
                    logger.warning(
                        "Automatic commit failed",
                        transaction_id=match.transaction_id,
                        ledger_key=match.candidate.ledger_key,
                        error=str(e),
                    )
                    return
                match.applied = True

        await asyncio.gather(*(commit(m) for m in planned))
        source_report.applied = sum(1 for m in planned if m.applied)
        source_report.failed = sum(1 for m in planned if not m.applied)

