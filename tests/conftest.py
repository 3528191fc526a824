"""
Shared fixtures: settings isolated from the environment, in-memory
repositories and record factories.
"""

from datetime import date

import pytest

from bankrec.config import Settings
from bankrec.models import (
    APInvoice,
    AROrder,
    BankTransaction,
    GatewaySettlement,
    OrderOrigin,
)
from bankrec.repositories import (
    InMemoryInvoiceRepository,
    InMemoryOrderRepository,
    InMemorySettlementFeed,
    InMemoryTransactionFeed,
)
from bankrec.utils.audit_logger import AuditLogger
from bankrec.utils.money import to_cents

TX_DATE = date(2025, 3, 10)


@pytest.fixture
def settings(tmp_path):
    return Settings(_env_file=None, reports_dir=tmp_path / "reports")


@pytest.fixture
def audit(settings):
    return AuditLogger(run_id="test", settings=settings)


@pytest.fixture
def make_transaction():
    def factory(
        id="tx1",
        amount="-1000.00",
        tx_date=TX_DATE,
        source="bankinter-eur",
        description="",
        currency="EUR",
    ):
        return BankTransaction(
            id=id,
            source=source,
            currency=currency,
            transaction_date=tx_date,
            description=description,
            amount_cents=to_cents(amount),
        )
    return factory


@pytest.fixture
def make_invoice():
    def factory(
        id="inv1",
        amount="1000.00",
        ref_date=TX_DATE,
        provider_code="ACME",
        invoice_number=None,
        description="",
        paid_amount=None,
        invoice_type="INCURRED",
    ):
        return APInvoice(
            id=id,
            amount_cents=to_cents(amount),
            paid_amount_cents=to_cents(paid_amount) if paid_amount is not None else None,
            reference_date=ref_date,
            counterparty=provider_code,
            invoice_number=invoice_number or f"F-{id}",
            provider_code=provider_code,
            description=description,
            invoice_type=invoice_type,
        )
    return factory


@pytest.fixture
def make_order():
    def factory(
        id="ord1",
        amount="1000.00",
        ref_date=TX_DATE,
        customer_name="",
        origin=OrderOrigin.AR_INVOICES,
        source=None,
        customer_code=None,
    ):
        if origin == OrderOrigin.INVOICE_ORDERS and source is None:
            source = "invoice-orders"
        return AROrder(
            id=id,
            amount_cents=to_cents(amount),
            reference_date=ref_date,
            origin=origin,
            source=source,
            order_id=f"SO-{id}",
            invoice_number=f"AR-{id}",
            customer_name=customer_name,
            customer_code=customer_code,
        )
    return factory


@pytest.fixture
def make_settlement():
    def factory(
        id="gw1",
        amount="100.00",
        ref_date=TX_DATE,
        source="braintree-api-revenue",
        disbursement_date=None,
    ):
        return GatewaySettlement(
            id=id,
            amount_cents=to_cents(amount),
            reference_date=ref_date,
            source=source,
            disbursement_date=disbursement_date,
        )
    return factory


@pytest.fixture
def transactions():
    return InMemoryTransactionFeed()


@pytest.fixture
def invoices():
    return InMemoryInvoiceRepository()


@pytest.fixture
def orders():
    return InMemoryOrderRepository()


@pytest.fixture
def settlements():
    return InMemorySettlementFeed()
