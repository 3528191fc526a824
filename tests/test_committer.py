"""
Tests for committing and reverting reconciliations.
"""

import asyncio
from datetime import date, datetime

import pytest

from bankrec.exceptions import (
    AlreadyReconciledError,
    NoSelectionError,
    NotFoundError,
    NotReconciledError,
    RepositoryError,
    ValidationError,
)
from bankrec.models import (
    AuditAction,
    CandidateKind,
    ExpenseInvoiceCandidate,
    IntercompanyCandidate,
    MatchType,
    OrderOrigin,
    PaymentSourceCandidate,
    ReconciliationType,
    RevenueOrderCandidate,
)
from bankrec.reconciliation.committer import ReconciliationCommitter
from bankrec.repositories import InMemoryInvoiceRepository, InMemoryTransactionFeed

NOW = datetime(2025, 3, 12, 9, 30)


class FailingTransactionFeed(InMemoryTransactionFeed):
    """Transaction writes fail (for the given ids, or all) after the ledger side was claimed."""

    def __init__(self, rows=(), fail_ids=None):
        super().__init__(rows)
        self.fail_ids = fail_ids

    async def mark_reconciled(self, transaction_id, fields):
        if self.fail_ids is None or transaction_id in self.fail_ids:
            raise RepositoryError("connection reset", operation="mark_reconciled", transaction_id=transaction_id)
        return await super().mark_reconciled(transaction_id, fields)


class StuckInvoiceRepository(InMemoryInvoiceRepository):
    """Invoices can be claimed but never released."""

    async def release(self, invoice_id):
        raise RepositoryError("release failed", operation="release", ledger_id=invoice_id)


@pytest.fixture
def committer(transactions, invoices, orders, audit, settings):
    return ReconciliationCommitter(transactions, invoices, orders, audit, settings, clock=lambda: NOW)


@pytest.fixture
def expense(transactions, invoices, make_transaction, make_invoice):
    transactions.add(make_transaction(id="tx1", amount="-1000.00"))
    invoices.add(make_invoice(id="inv1", amount="1000.00", invoice_number="F-2025-01", provider_code="ACME"))


class TestInvoiceCommit:

    @pytest.mark.asyncio
    async def test_commit_sets_both_sides(self, committer, transactions, invoices, expense):
        tx = await committer.commit_invoice_match("tx1", "inv1", note="March rent")

        assert tx.is_reconciled is True
        assert tx.reconciliation_type == ReconciliationType.MANUAL
        assert tx.match_type == MatchType.INVOICE
        assert tx.matched_entity.kind == CandidateKind.EXPENSE_INVOICE
        assert tx.matched_entity.id == "inv1"
        assert tx.note == "March rent"
        assert tx.reconciled_at == NOW
        assert tx.match_details["matched_invoice_numbers"] == "F-2025-01"
        assert tx.match_details["matched_invoice_total"] == 100000

        invoice = await invoices.get("inv1")
        assert invoice.reconciled is True
        assert invoice.reconciled_with == "tx1"
        assert invoice.reconciled_amount_cents == 100000

        stored = await transactions.get("tx1")
        assert stored.reconciliation_snapshot() == tx.reconciliation_snapshot()

    @pytest.mark.asyncio
    async def test_reconciled_amount_uses_paid_override(
        self, committer, transactions, invoices, make_transaction, make_invoice
    ):
        transactions.add(make_transaction(id="tx1", amount="-950.00"))
        invoices.add(make_invoice(id="inv1", amount="1000.00", paid_amount="950.00"))

        await committer.commit_invoice_match("tx1", "inv1")

        assert (await invoices.get("inv1")).reconciled_amount_cents == 95000

    @pytest.mark.asyncio
    async def test_second_commit_of_same_invoice_fails(
        self, committer, transactions, invoices, expense, make_transaction
    ):
        transactions.add(make_transaction(id="tx2", amount="-1000.00"))
        first = await committer.commit_invoice_match("tx1", "inv1")

        with pytest.raises(AlreadyReconciledError) as exc_info:
            await committer.commit_invoice_match("tx2", "inv1")

        assert exc_info.value.ledger_id == "inv1"
        assert (await transactions.get("tx1")).reconciliation_snapshot() == first.reconciliation_snapshot()
        assert (await transactions.get("tx2")).is_reconciled is False
        assert (await invoices.get("inv1")).reconciled_with == "tx1"

    @pytest.mark.asyncio
    async def test_committing_reconciled_transaction_again_fails(self, committer, expense):
        await committer.commit_invoice_match("tx1", "inv1")

        with pytest.raises(AlreadyReconciledError):
            await committer.commit_invoice_match("tx1", "inv1")

    @pytest.mark.asyncio
    async def test_concurrent_commits_only_one_wins(
        self, committer, transactions, invoices, expense, make_transaction
    ):
        transactions.add(make_transaction(id="tx2", amount="-1000.00"))

        results = await asyncio.gather(
            committer.commit_invoice_match("tx1", "inv1"),
            committer.commit_invoice_match("tx2", "inv1"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyReconciledError)
        reconciled = [t for t in ("tx1", "tx2") if (await transactions.get(t)).is_reconciled]
        assert reconciled == [(await invoices.get("inv1")).reconciled_with]

    @pytest.mark.asyncio
    async def test_missing_records(self, committer, expense):
        with pytest.raises(NotFoundError):
            await committer.commit_invoice_match("nope", "inv1")
        with pytest.raises(NotFoundError) as exc_info:
            await committer.commit_invoice_match("tx1", "nope")

        assert exc_info.value.operation == "commit_invoice_match"
        assert exc_info.value.ledger_id == "nope"

    @pytest.mark.asyncio
    async def test_invoice_match_requires_expense(self, committer, transactions, invoices, make_transaction, make_invoice):
        transactions.add(make_transaction(id="rev", amount="1000.00"))
        invoices.add(make_invoice())

        with pytest.raises(ValidationError):
            await committer.commit_invoice_match("rev", "inv1")

        assert (await invoices.get("inv1")).reconciled is False

    @pytest.mark.asyncio
    async def test_failed_transaction_write_releases_invoice(
        self, invoices, orders, audit, settings, make_transaction, make_invoice
    ):
        transactions = FailingTransactionFeed([make_transaction(id="tx1")])
        invoices.add(make_invoice())
        committer = ReconciliationCommitter(transactions, invoices, orders, audit, settings, clock=lambda: NOW)

        with pytest.raises(RepositoryError):
            await committer.commit_invoice_match("tx1", "inv1")

        invoice = await invoices.get("inv1")
        assert invoice.reconciled is False
        assert invoice.reconciled_with is None
        assert audit.get_entries(AuditAction.COMPENSATION_APPLIED)
        assert audit.get_entries(AuditAction.COMMIT_FAILED)

    @pytest.mark.asyncio
    async def test_failed_release_does_not_hide_write_error(
        self, orders, audit, settings, make_transaction, make_invoice
    ):
        transactions = FailingTransactionFeed([make_transaction(id="tx1")])
        invoices = StuckInvoiceRepository([make_invoice()])
        committer = ReconciliationCommitter(transactions, invoices, orders, audit, settings, clock=lambda: NOW)

        with pytest.raises(RepositoryError) as excinfo:
            await committer.commit_invoice_match("tx1", "inv1")

        assert excinfo.value.message == "connection reset"
        assert excinfo.value.operation == "mark_reconciled"
        # Left claimed for manual cleanup
        assert (await invoices.get("inv1")).reconciled_with == "tx1"
        failed = audit.get_entries(AuditAction.COMPENSATION_FAILED)
        assert [e.ledger_id for e in failed] == ["inv1"]
        assert "release failed" in failed[0].error_message
        assert not audit.get_entries(AuditAction.COMPENSATION_APPLIED)


class TestRevert:

    @pytest.mark.asyncio
    async def test_revert_clears_transaction_but_not_invoice(self, committer, transactions, invoices, expense, audit):
        await committer.commit_invoice_match("tx1", "inv1", note="n")

        tx = await committer.revert("tx1")

        assert tx.is_reconciled is False
        assert tx.reconciliation_type == ReconciliationType.NONE
        assert tx.match_type is None
        assert tx.matched_entity is None
        assert tx.note is None
        assert tx.gateway is None
        assert tx.reconciled_at is None
        assert tx.match_details == {}
        assert (await invoices.get("inv1")).reconciled is True
        assert audit.get_entries(AuditAction.MATCH_REVERTED)

    @pytest.mark.asyncio
    async def test_revert_then_recommit_restores_metadata(self, committer, expense):
        original = await committer.commit_invoice_match("tx1", "inv1", note="rent")
        await committer.revert("tx1")

        again = await committer.commit_invoice_match("tx1", "inv1", note="rent")

        assert again.reconciliation_snapshot() == original.reconciliation_snapshot()

    @pytest.mark.asyncio
    async def test_revert_keeps_metadata_outside_reconciliation(self, committer, transactions, make_transaction):
        tx = make_transaction(id="tx1", amount="50.00")
        tx.metadata = {"fecha_valor": "2025-03-10"}
        transactions.add(tx)
        await committer.commit_manual_only("tx1", gateway="stripe")

        reverted = await committer.revert("tx1")

        assert reverted.metadata == {"fecha_valor": "2025-03-10"}

    @pytest.mark.asyncio
    async def test_revert_unreconciled(self, committer, expense):
        with pytest.raises(NotReconciledError):
            await committer.revert("tx1")
        with pytest.raises(NotFoundError):
            await committer.revert("missing")


class TestManualOnly:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("gateway,note", [(None, None), ("", ""), ("  ", None)])
    async def test_requires_gateway_or_note(self, committer, transactions, expense, audit, gateway, note):
        before = await transactions.get("tx1")

        with pytest.raises(NoSelectionError):
            await committer.commit_manual_only("tx1", gateway=gateway, note=note)

        after = await transactions.get("tx1")
        assert after.reconciliation_snapshot() == before.reconciliation_snapshot()
        assert audit.get_entries(AuditAction.MATCH_COMMITTED) == []
        assert audit.get_entries(AuditAction.COMMIT_FAILED)

    @pytest.mark.asyncio
    async def test_expense_drops_gateway(self, committer, expense):
        tx = await committer.commit_manual_only("tx1", gateway="stripe", note="card fee")

        assert tx.is_reconciled is True
        assert tx.match_type == MatchType.MANUAL
        assert tx.gateway is None
        assert tx.note == "card fee"
        assert tx.matched_entity is None

    @pytest.mark.asyncio
    async def test_revenue_keeps_gateway(self, committer, transactions, make_transaction):
        transactions.add(make_transaction(id="rev", amount="120.00"))

        tx = await committer.commit_manual_only("rev", gateway=" paypal ")

        assert tx.gateway == "paypal"
        assert tx.note is None
        assert tx.reconciliation_type == ReconciliationType.MANUAL


class TestRevenueCommits:

    @pytest.mark.asyncio
    async def test_payment_source_writes_transaction_only(self, committer, transactions, make_transaction):
        transactions.add(make_transaction(id="rev", amount="5000.00"))
        candidate = PaymentSourceCandidate(
            score=95,
            reason="Exact disbursement (3 txns)",
            amount_cents=500000,
            key="braintree-api-revenue|2025-03-09",
            source="braintree-api-revenue",
            disbursement_date=date(2025, 3, 9),
            transaction_count=3,
            row_ids=["a", "b", "c"],
            grouped=True,
        )

        tx = await committer.commit_payment_source_match("rev", candidate)

        assert tx.gateway == "braintree-api-revenue"
        assert tx.match_type == MatchType.PAYMENT_SOURCE
        assert tx.matched_entity.id == "braintree-api-revenue|2025-03-09"
        assert tx.match_details["matched_disbursement_date"] == "2025-03-09"
        assert tx.match_details["matched_transaction_count"] == 3

    @pytest.mark.asyncio
    async def test_revenue_order_flags_order(self, committer, transactions, orders, make_transaction, make_order):
        transactions.add(make_transaction(id="rev", amount="2000.00"))
        orders.add(make_order(id="o1", amount="1900.00", customer_name="Acme Corp", origin=OrderOrigin.INVOICE_ORDERS))
        candidate = RevenueOrderCandidate(
            score=70,
            amount_cents=190000,
            record_id="o1",
            order_id="SO-o1",
            invoice_number="AR-o1",
            customer_name="Acme Corp",
            origin=OrderOrigin.INVOICE_ORDERS,
        )

        tx = await committer.commit_revenue_order_match("rev", candidate, note="partial")

        order = await orders.get("o1", OrderOrigin.INVOICE_ORDERS)
        assert order.reconciled is True
        assert order.reconciled_with == "rev"
        assert tx.match_details["matched_customer_name"] == "Acme Corp"
        assert tx.match_details["matched_order_source"] == "invoice_orders"
        assert tx.match_details["matched_order_amount"] == 190000
        assert tx.note == "partial"

    @pytest.mark.asyncio
    async def test_failed_transaction_write_releases_order(
        self, invoices, orders, audit, settings, make_transaction, make_order
    ):
        transactions = FailingTransactionFeed([make_transaction(id="rev", amount="1000.00")])
        orders.add(make_order(id="ar1", amount="1000.00", customer_name="Acme Corp"))
        committer = ReconciliationCommitter(transactions, invoices, orders, audit, settings, clock=lambda: NOW)
        candidate = RevenueOrderCandidate(
            score=90, amount_cents=100000, record_id="ar1", origin=OrderOrigin.AR_INVOICES,
        )

        with pytest.raises(RepositoryError):
            await committer.commit_revenue_order_match("rev", candidate)

        order = await orders.get("ar1", OrderOrigin.AR_INVOICES)
        assert order.reconciled is False
        assert order.reconciled_with is None
        applied = audit.get_entries(AuditAction.COMPENSATION_APPLIED)
        assert [e.ledger_id for e in applied] == ["ar1"]

    @pytest.mark.asyncio
    async def test_intercompany_reconciles_both_legs(self, committer, transactions, make_transaction):
        transactions.add(make_transaction(id="in", amount="1000.00"))
        transactions.add(make_transaction(id="out", amount="-1000.00", source="sabadell"))
        candidate = IntercompanyCandidate(score=95, amount_cents=100000, transaction_id="out", source="sabadell")

        tx = await committer.commit_intercompany_match("in", candidate)

        other = await transactions.get("out")
        assert tx.matched_entity.id == "out"
        assert other.is_reconciled is True
        assert other.matched_entity.id == "in"
        assert other.match_type == MatchType.INTERCOMPANY

    @pytest.mark.asyncio
    async def test_intercompany_rolls_back_counterpart(
        self, invoices, orders, audit, settings, make_transaction
    ):
        transactions = FailingTransactionFeed([
            make_transaction(id="in", amount="1000.00"),
            make_transaction(id="out", amount="-1000.00", source="sabadell"),
        ], fail_ids={"in"})
        committer = ReconciliationCommitter(transactions, invoices, orders, audit, settings)
        candidate = IntercompanyCandidate(score=95, amount_cents=100000, transaction_id="out")

        with pytest.raises(RepositoryError):
            await committer.commit_intercompany_match("in", candidate)

        assert (await transactions.get("out")).is_reconciled is False
        assert audit.get_entries(AuditAction.COMPENSATION_APPLIED)


class TestAutomaticCommit:

    @pytest.mark.asyncio
    async def test_dispatch_marks_automatic(self, committer, expense):
        candidate = ExpenseInvoiceCandidate(score=95, reason="Exact amount, date ±3d", invoice_id="inv1")

        tx = await committer.commit_automatic("tx1", candidate)

        assert tx.reconciliation_type == ReconciliationType.AUTOMATIC
        assert tx.match_type == MatchType.INVOICE
        assert tx.match_details["auto_score"] == 95
        assert tx.match_details["auto_reason"] == "Exact amount, date ±3d"
