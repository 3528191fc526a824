"""
Reconciliation committer.

Applies a chosen candidate to both sides: the matched ledger record is
flagged reconciled with a back-reference, then the bank transaction is marked
reconciled with the match facts. Both writes are compare-and-set on the
`reconciled` flag; if the transaction write fails the ledger write is
released again, so a commit either applies fully or not at all.

State machine per transaction:
    Unmatched -> Reconciled(automatic | manual) -> (revert) -> Unmatched
"""

import functools
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog

from ..config import Settings, get_settings
from ..exceptions import (
    AlreadyReconciledError,
    NoSelectionError,
    NotFoundError,
    NotReconciledError,
    ReconciliationError,
    ValidationError,
)
from ..models import (
    AuditAction,
    AuditEntry,
    BankTransaction,
    Candidate,
    CandidateKind,
    ExpenseInvoiceCandidate,
    IntercompanyCandidate,
    MatchedEntity,
    MatchType,
    PaymentSourceCandidate,
    ReconciliationFields,
    ReconciliationType,
    RevenueOrderCandidate,
)
from ..repositories import InvoiceRepository, OrderRepository, TransactionFeed
from ..utils.audit_logger import AuditLogger

logger = structlog.get_logger()

TransactionRef = Union[str, BankTransaction]


def _ref_id(ref: Any) -> str:
    return ref if isinstance(ref, str) else ref.id


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def audited(operation: str):
    """Record failed commits in the audit trail before re-raising."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, transaction, *args, **kwargs):
            try:
                return await func(self, transaction, *args, **kwargs)
            except ReconciliationError as e:
                self.audit.log(AuditEntry(
                    action=AuditAction.COMMIT_FAILED,
                    operation=operation,
                    transaction_ids=[_ref_id(transaction)],
                    ledger_id=e.ledger_id,
                    message=f"{operation} failed: {e.message}",
                    success=False,
                    error_message=str(e),
                ))
                raise
        return wrapper
    return decorator


class ReconciliationCommitter:
    """Commits and reverts matches for bank transactions."""

    def __init__(
        self,
        transactions: TransactionFeed,
        invoices: InvoiceRepository,
        orders: OrderRepository,
        audit: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.transactions = transactions
        self.invoices = invoices
        self.orders = orders
        self.settings = settings or get_settings()
        self.audit = audit or AuditLogger(settings=self.settings)
        self._now = clock or datetime.utcnow

    @audited("commit_invoice_match")
    async def commit_invoice_match(
        self,
        transaction: TransactionRef,
        invoice_id: str,
        note: Optional[str] = None,
        reconciliation_type: ReconciliationType = ReconciliationType.MANUAL,
        extra_details: Optional[Dict[str, Any]] = None,
    ) -> BankTransaction:
        """
        Match an expense transaction to an AP invoice.

        Raises:
            NotFoundError: Transaction or invoice no longer exists
            AlreadyReconciledError: Either side was reconciled in the meantime
            ValidationError: Transaction is not an expense
        """
        op = "commit_invoice_match"
        tx = await self._load_unreconciled(_ref_id(transaction), op)
        if not tx.is_expense:
            raise ValidationError(
                "Invoice matches apply to expense transactions only",
                operation=op, transaction_id=tx.id, ledger_id=invoice_id,
            )

        invoice = await self.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found", operation=op, transaction_id=tx.id, ledger_id=invoice_id)
        # A revert leaves the invoice pointing at this transaction; re-linking reuses it
        relink = invoice.reconciled and invoice.reconciled_with == tx.id
        if invoice.reconciled and not relink:
            raise AlreadyReconciledError(
                "Invoice already reconciled", operation=op, transaction_id=tx.id, ledger_id=invoice_id,
            )

        now = self._now()
        amount = invoice.effective_amount_cents
        if not relink:
            await self.invoices.mark_reconciled(invoice.id, tx.id, amount, now)

        details = {
            "matched_invoice_ids": [invoice.id],
            "matched_invoice_numbers": invoice.invoice_number,
            "matched_invoice_total": amount,
            "matched_provider": invoice.provider_code,
        }
        details.update(extra_details or {})
        fields = ReconciliationFields(
            reconciliation_type=reconciliation_type,
            match_type=MatchType.INVOICE,
            reconciled_at=now,
            matched_entity=MatchedEntity(CandidateKind.EXPENSE_INVOICE, invoice.id),
            note=_clean(note),
            match_details=details,
        )
        return await self._write_transaction(
            tx, fields, op,
            ledger_id=invoice.id,
            compensate=None if relink else (lambda: self.invoices.release(invoice.id)),
        )

    @audited("commit_payment_source_match")
    async def commit_payment_source_match(
        self,
        transaction: TransactionRef,
        candidate: PaymentSourceCandidate,
        note: Optional[str] = None,
        reconciliation_type: ReconciliationType = ReconciliationType.MANUAL,
        extra_details: Optional[Dict[str, Any]] = None,
    ) -> BankTransaction:
        """
        Match a revenue transaction to a gateway disbursement.
        Only the bank transaction is written; settlement rows are not flagged.
        """
        op = "commit_payment_source_match"
        tx = await self._load_unreconciled(_ref_id(transaction), op)
        self._require_revenue(tx, op, candidate.key)

        now = self._now()
        details = {
            "matched_source": candidate.source,
            "matched_disbursement_date": (
                candidate.disbursement_date.isoformat() if candidate.disbursement_date else None
            ),
            "matched_amount": candidate.amount_cents,
            "matched_transaction_count": candidate.transaction_count,
            "matched_row_ids": list(candidate.row_ids),
        }
        details.update(extra_details or {})
        fields = ReconciliationFields(
            reconciliation_type=reconciliation_type,
            match_type=MatchType.PAYMENT_SOURCE,
            reconciled_at=now,
            matched_entity=MatchedEntity(CandidateKind.PAYMENT_SOURCE, candidate.key),
            note=_clean(note),
            gateway=candidate.source,
            match_details=details,
        )
        return await self._write_transaction(tx, fields, op, ledger_id=candidate.key)

    @audited("commit_revenue_order_match")
    async def commit_revenue_order_match(
        self,
        transaction: TransactionRef,
        candidate: RevenueOrderCandidate,
        note: Optional[str] = None,
        reconciliation_type: ReconciliationType = ReconciliationType.MANUAL,
        extra_details: Optional[Dict[str, Any]] = None,
    ) -> BankTransaction:
        """Match a revenue transaction to an AR invoice or order-feed row."""
        op = "commit_revenue_order_match"
        tx = await self._load_unreconciled(_ref_id(transaction), op)
        self._require_revenue(tx, op, candidate.record_id)

        record = await self.orders.get(candidate.record_id, candidate.origin)
        if record is None:
            raise NotFoundError(
                "Order not found", operation=op, transaction_id=tx.id, ledger_id=candidate.record_id,
            )
        relink = record.reconciled and record.reconciled_with == tx.id
        if record.reconciled and not relink:
            raise AlreadyReconciledError(
                "Order already reconciled", operation=op, transaction_id=tx.id, ledger_id=record.id,
            )

        now = self._now()
        amount = record.effective_amount_cents
        if not relink:
            await self.orders.mark_reconciled(record.id, record.origin, tx.id, amount, now)

        details = {
            "matched_order_id": candidate.order_id or record.id,
            "matched_order_source": record.origin.value,
            "matched_customer_name": candidate.customer_name,
            "matched_invoice_number": candidate.invoice_number,
            "matched_order_amount": amount,
        }
        details.update(extra_details or {})
        fields = ReconciliationFields(
            reconciliation_type=reconciliation_type,
            match_type=MatchType.REVENUE_ORDER,
            reconciled_at=now,
            matched_entity=MatchedEntity(CandidateKind.REVENUE_ORDER, record.id),
            note=_clean(note),
            match_details=details,
        )
        return await self._write_transaction(
            tx, fields, op,
            ledger_id=record.id,
            compensate=None if relink else (lambda: self.orders.release(record.id, record.origin)),
        )

    @audited("commit_intercompany_match")
    async def commit_intercompany_match(
        self,
        transaction: TransactionRef,
        candidate: IntercompanyCandidate,
        note: Optional[str] = None,
        reconciliation_type: ReconciliationType = ReconciliationType.MANUAL,
    ) -> BankTransaction:
        """Reconcile both legs of a transfer between company accounts."""
        op = "commit_intercompany_match"
        tx = await self._load_unreconciled(_ref_id(transaction), op)

        other = await self.transactions.get(candidate.transaction_id)
        if other is None:
            raise NotFoundError(
                "Counterpart transaction not found",
                operation=op, transaction_id=tx.id, ledger_id=candidate.transaction_id,
            )
        if other.is_reconciled:
            raise AlreadyReconciledError(
                "Counterpart transaction already reconciled",
                operation=op, transaction_id=tx.id, ledger_id=other.id,
            )
        if other.amount_cents * tx.amount_cents >= 0:
            raise ValidationError(
                "Intercompany legs must have opposite signs",
                operation=op, transaction_id=tx.id, ledger_id=other.id,
            )

        now = self._now()
        note = _clean(note)
        await self.transactions.mark_reconciled(other.id, ReconciliationFields(
            reconciliation_type=reconciliation_type,
            match_type=MatchType.INTERCOMPANY,
            reconciled_at=now,
            matched_entity=MatchedEntity(CandidateKind.INTERCOMPANY, tx.id),
            note=note,
            match_details={
                "intercompany_matched_with": tx.id,
                "intercompany_matched_bank": tx.source,
                "intercompany_matched_amount": tx.abs_amount_cents,
            },
        ))

        fields = ReconciliationFields(
            reconciliation_type=reconciliation_type,
            match_type=MatchType.INTERCOMPANY,
            reconciled_at=now,
            matched_entity=MatchedEntity(CandidateKind.INTERCOMPANY, other.id),
            note=note,
            match_details={
                "intercompany_matched_with": other.id,
                "intercompany_matched_bank": other.source,
                "intercompany_matched_amount": other.abs_amount_cents,
            },
        )
        return await self._write_transaction(
            tx, fields, op,
            ledger_id=other.id,
            compensate=lambda: self.transactions.clear_reconciliation(other.id),
        )

    @audited("commit_manual_only")
    async def commit_manual_only(
        self,
        transaction: TransactionRef,
        gateway: Optional[str] = None,
        note: Optional[str] = None,
    ) -> BankTransaction:
        """
        Reconcile without a structured match, keeping a gateway label and/or note.

        Raises:
            NoSelectionError: Neither a gateway nor a note was given
        """
        op = "commit_manual_only"
        gateway = _clean(gateway)
        note = _clean(note)
        if gateway is None and note is None:
            raise NoSelectionError(
                "Select a match or provide a gateway or note",
                operation=op, transaction_id=_ref_id(transaction),
            )

        tx = await self._load_unreconciled(_ref_id(transaction), op)
        fields = ReconciliationFields(
            reconciliation_type=ReconciliationType.MANUAL,
            match_type=MatchType.MANUAL,
            reconciled_at=self._now(),
            note=note,
            # Expenses never carry a payment source
            gateway=None if tx.is_expense else gateway,
        )
        return await self._write_transaction(tx, fields, op)

    async def commit_automatic(
        self,
        transaction: TransactionRef,
        candidate: Candidate,
    ) -> BankTransaction:
        """Commit a candidate accepted by the automatic pass."""
        auto = ReconciliationType.AUTOMATIC
        extra = {"auto_score": candidate.score, "auto_reason": candidate.reason}

        if isinstance(candidate, ExpenseInvoiceCandidate):
            return await self.commit_invoice_match(
                transaction, candidate.invoice_id, reconciliation_type=auto, extra_details=extra,
            )
        if isinstance(candidate, PaymentSourceCandidate):
            return await self.commit_payment_source_match(
                transaction, candidate, reconciliation_type=auto, extra_details=extra,
            )
        if isinstance(candidate, RevenueOrderCandidate):
            return await self.commit_revenue_order_match(
                transaction, candidate, reconciliation_type=auto, extra_details=extra,
            )
        if isinstance(candidate, IntercompanyCandidate):
            return await self.commit_intercompany_match(transaction, candidate, reconciliation_type=auto)

        raise ValidationError(
            f"Unsupported candidate kind: {candidate.kind}",
            operation="commit_automatic", transaction_id=_ref_id(transaction),
        )

    @audited("revert")
    async def revert(self, transaction: TransactionRef) -> BankTransaction:
        """
        Undo a reconciliation on the bank side.

        The matched ledger record keeps its reconciled flag; freeing it for
        re-matching is left to the ledger owner.
        """
        op = "revert"
        transaction_id = _ref_id(transaction)
        tx = await self.transactions.get(transaction_id)
        if tx is None:
            raise NotFoundError("Transaction not found", operation=op, transaction_id=transaction_id)
        if not tx.is_reconciled:
            raise NotReconciledError(
                "Transaction is not reconciled", operation=op, transaction_id=transaction_id,
            )

        previous = tx.reconciliation_snapshot()
        reverted = await self.transactions.clear_reconciliation(transaction_id)

        self.audit.log(AuditEntry(
            action=AuditAction.MATCH_REVERTED,
            operation=op,
            transaction_ids=[transaction_id],
            ledger_id=tx.matched_entity.id if tx.matched_entity else None,
            message="Reconciliation reverted",
            details={"previous": previous},
        ))
        return reverted

    async def _load_unreconciled(self, transaction_id: str, operation: str) -> BankTransaction:
        tx = await self.transactions.get(transaction_id)
        if tx is None:
            raise NotFoundError("Transaction not found", operation=operation, transaction_id=transaction_id)
        if tx.is_reconciled:
            raise AlreadyReconciledError(
                "Transaction already reconciled", operation=operation, transaction_id=transaction_id,
            )
        return tx

    def _require_revenue(self, tx: BankTransaction, operation: str, ledger_id: str) -> None:
        if not tx.is_revenue:
            raise ValidationError(
                "Revenue matches apply to incoming transactions only",
                operation=operation, transaction_id=tx.id, ledger_id=ledger_id,
            )

    async def _write_transaction(
        self,
        tx: BankTransaction,
        fields: ReconciliationFields,
        operation: str,
        ledger_id: Optional[str] = None,
        compensate: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> BankTransaction:
        """
        Guarded transaction write; releases the ledger side if it fails.

        The caller always sees the transaction write error, even when the
        release fails too; that failure is logged and audited instead.
        """
        try:
            updated = await self.transactions.mark_reconciled(tx.id, fields)
        except Exception as write_error:
            if compensate is not None:
                try:
                    await compensate()
                except Exception as e:
                    logger.error(
                        "Ledger release failed, manual cleanup needed",
                        operation=operation,
                        transaction_id=tx.id,
                        ledger_id=ledger_id,
                        error=str(e),
                        write_error=str(write_error),
                    )
                    self.audit.log(AuditEntry(
                        action=AuditAction.COMPENSATION_FAILED,
                        operation=operation,
                        transaction_ids=[tx.id],
                        ledger_id=ledger_id,
                        message="Ledger record left reconciled after transaction write failed",
                        success=False,
                        error_message=str(e),
                        details={"write_error": str(write_error)},
                    ))
                    raise write_error
                self.audit.log(AuditEntry(
                    action=AuditAction.COMPENSATION_APPLIED,
                    operation=operation,
                    transaction_ids=[tx.id],
                    ledger_id=ledger_id,
                    message="Ledger write released after transaction write failed",
                    success=False,
                ))
            raise

        self.audit.log(AuditEntry(
            action=AuditAction.MATCH_COMMITTED,
            operation=operation,
            transaction_ids=[tx.id],
            ledger_id=ledger_id,
            message=f"Reconciled as {fields.match_type.value}",
            details={
                "reconciliation_type": fields.reconciliation_type.value,
                "match_details": fields.match_details,
            },
        ))
        return updated
