"""
Tests for the PostgREST client and the hosted-database repositories.
HTTP is served by httpx.MockTransport; nothing leaves the process.
"""

import json
from datetime import date, datetime

import httpx
import pytest
from tenacity import wait_none

from bankrec.config import Settings
from bankrec.exceptions import AlreadyReconciledError, NotFoundError, RepositoryError
from bankrec.integrations import (
    PostgrestClient,
    SupabaseInvoiceRepository,
    SupabaseOrderRepository,
    SupabaseTransactionFeed,
)
from bankrec.integrations.postgrest import eq, in_
from bankrec.integrations.supabase_repositories import (
    resolve_customer_name,
    transaction_from_row,
)
from bankrec.models import (
    CandidateKind,
    MatchedEntity,
    MatchType,
    OrderOrigin,
    ReconciliationFields,
    ReconciliationType,
)

NOW = datetime(2025, 3, 11, 9, 30)


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if callable(response):
            return response(request)
        return response


def ok(rows):
    return httpx.Response(200, json=rows)


def body(request):
    return json.loads(request.content)


@pytest.fixture
def pg_settings(tmp_path):
    return Settings(
        _env_file=None,
        reports_dir=tmp_path / "reports",
        supabase_url="https://db.example.test",
        supabase_key="secret-key",
        page_size=2,
        max_retries=3,
    )


@pytest.fixture
def build_client(pg_settings):
    def factory(handler):
        return PostgrestClient(
            settings=pg_settings,
            transport=httpx.MockTransport(handler),
            retry_wait=wait_none(),
        )
    return factory


class TestFilters:

    def test_literals(self):
        assert eq(False) == "eq.false"
        assert eq(date(2025, 3, 10)) == "eq.2025-03-10"
        assert in_(["stripe-eur", "gocardless"]) == 'in.("stripe-eur","gocardless")'


class TestPostgrestClient:

    @pytest.mark.asyncio
    async def test_auth_headers_and_select_params(self, build_client):
        recorder = Recorder(ok([{"id": "1"}]))
        async with build_client(recorder) as client:
            rows = await client.select("csv_rows", [("reconciled", eq(False))], order="date.asc", limit=5)

        assert rows == [{"id": "1"}]
        request = recorder.requests[0]
        assert request.url.path == "/rest/v1/csv_rows"
        assert request.headers["apikey"] == "secret-key"
        assert request.headers["Authorization"] == "Bearer secret-key"
        assert request.url.params["reconciled"] == "eq.false"
        assert request.url.params["order"] == "date.asc"
        assert request.url.params["limit"] == "5"

    @pytest.mark.asyncio
    async def test_select_all_pages(self, build_client):
        recorder = Recorder(ok([{"id": "1"}, {"id": "2"}]), ok([{"id": "3"}, {"id": "4"}]), ok([{"id": "5"}]))
        client = build_client(recorder)

        rows = await client.select_all("csv_rows")

        assert [r["id"] for r in rows] == ["1", "2", "3", "4", "5"]
        assert [r.url.params.get("offset") for r in recorder.requests] == [None, "2", "4"]
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [ok([]), httpx.Response(404)])
    async def test_get_one_missing(self, build_client, response):
        client = build_client(Recorder(response))

        assert await client.get_one("invoices", "nope") is None

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, build_client):
        recorder = Recorder(httpx.Response(503), ok([{"id": "1"}]))
        client = build_client(recorder)

        rows = await client.select("invoices")

        assert rows == [{"id": "1"}]
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, build_client):
        recorder = Recorder(*[httpx.Response(500) for _ in range(3)])
        client = build_client(recorder)

        with pytest.raises(RepositoryError) as exc_info:
            await client.select("invoices")

        assert exc_info.value.status_code == 500
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, build_client):
        recorder = Recorder(httpx.Response(400, json={"message": "bad filter"}))
        client = build_client(recorder)

        with pytest.raises(RepositoryError) as exc_info:
            await client.select("invoices")

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {"message": "bad filter"}
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_auth_failure(self, build_client):
        client = build_client(Recorder(httpx.Response(401)))

        with pytest.raises(RepositoryError, match="Authentication failed"):
            await client.select("invoices")

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self, build_client):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = build_client(Recorder(boom, boom, boom))

        with pytest.raises(RepositoryError) as exc_info:
            await client.select("invoices")

        assert exc_info.value.status_code == 0
        assert isinstance(exc_info.value.cause, httpx.ConnectError)


class TestSupabaseTransactionFeed:

    @pytest.mark.asyncio
    async def test_mark_reconciled_merges_custom_data(self, build_client, pg_settings):
        stored = {
            "id": "tx1",
            "source": "bankinter-eur",
            "date": "2025-03-10",
            "description": "RECIBO ACME",
            "amount": -1000.0,
            "reconciled": False,
            "custom_data": {"bank_ref": "BR-1"},
        }

        def patched(request):
            return ok([{**stored, **body(request)}])

        recorder = Recorder(ok([stored]), patched)
        feed = SupabaseTransactionFeed(build_client(recorder), pg_settings)
        fields = ReconciliationFields(
            reconciliation_type=ReconciliationType.MANUAL,
            match_type=MatchType.INVOICE,
            reconciled_at=NOW,
            matched_entity=MatchedEntity(CandidateKind.EXPENSE_INVOICE, "inv1"),
            note="checked by hand",
            match_details={"matched_invoice_ids": ["inv1"]},
        )

        tx = await feed.mark_reconciled("tx1", fields)

        patch = recorder.requests[1]
        assert patch.method == "PATCH"
        assert patch.headers["Prefer"] == "return=representation"
        assert patch.url.params["id"] == "eq.tx1"
        assert patch.url.params["reconciled"] == "eq.false"
        custom = body(patch)["custom_data"]
        assert custom["bank_ref"] == "BR-1"
        assert custom["reconciliationType"] == "manual"
        assert custom["manual_note"] == "checked by hand"
        assert custom["matched_entity"] == {"kind": "expense_invoice", "id": "inv1"}
        assert custom["match_details"] == {"matched_invoice_ids": ["inv1"]}

        assert tx.is_reconciled is True
        assert tx.matched_entity == MatchedEntity(CandidateKind.EXPENSE_INVOICE, "inv1")
        assert tx.metadata == {"bank_ref": "BR-1"}

    @pytest.mark.asyncio
    async def test_mark_reconciled_refuses_reconciled_row(self, build_client, pg_settings):
        recorder = Recorder(ok([{"id": "tx1", "amount": 5, "reconciled": True}]))
        feed = SupabaseTransactionFeed(build_client(recorder), pg_settings)
        fields = ReconciliationFields(ReconciliationType.MANUAL, MatchType.MANUAL, NOW, note="x")

        with pytest.raises(AlreadyReconciledError):
            await feed.mark_reconciled("tx1", fields)

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_list_unreconciled_filters(self, build_client, pg_settings):
        recorder = Recorder(ok([{"id": "tx1", "source": "chase-usd", "amount": "12.50", "date": "2025-03-10"}]))
        feed = SupabaseTransactionFeed(build_client(recorder), pg_settings)

        rows = await feed.list_unreconciled(["chase-usd"], date(2025, 3, 1), date(2025, 3, 31))

        params = recorder.requests[0].url.params
        assert params["source"] == 'in.("chase-usd")'
        assert params["reconciled"] == "eq.false"
        assert params.get_list("date") == ["gte.2025-03-01", "lte.2025-03-31"]
        assert rows[0].amount_cents == 1250
        assert rows[0].currency == "USD"


class TestGuardedLedgerWrites:

    @pytest.mark.asyncio
    async def test_invoice_lost_race(self, build_client):
        recorder = Recorder(ok([]), ok([{"id": "inv1", "invoice_amount": 10, "is_reconciled": True}]))
        repo = SupabaseInvoiceRepository(build_client(recorder))

        with pytest.raises(AlreadyReconciledError):
            await repo.mark_reconciled("inv1", "tx1", 1000, NOW)

        assert recorder.requests[0].url.params["is_reconciled"] == "eq.false"
        assert body(recorder.requests[0])["reconciled_amount"] == "10"

    @pytest.mark.asyncio
    async def test_invoice_gone(self, build_client):
        repo = SupabaseInvoiceRepository(build_client(Recorder(ok([]), ok([]))))

        with pytest.raises(NotFoundError):
            await repo.mark_reconciled("inv1", "tx1", 1000, NOW)

    @pytest.mark.asyncio
    async def test_feed_order_guard_accepts_null(self, build_client):
        row = {"id": "o1", "source": "invoice-orders", "amount": 50, "reconciled": None,
               "custom_data": {"company_name": "Acme Corp"}}

        def patched(request):
            return ok([{**row, **body(request)}])

        recorder = Recorder(ok([row]), patched)
        repo = SupabaseOrderRepository(build_client(recorder))

        order = await repo.mark_reconciled("o1", OrderOrigin.INVOICE_ORDERS, "tx9", 5000, NOW)

        assert recorder.requests[1].url.params["or"] == "(reconciled.eq.false,reconciled.is.null)"
        assert order.reconciled is True
        assert order.reconciled_with == "tx9"
        assert order.customer_name == "Acme Corp"


class TestRowMapping:

    def test_transaction_reconciliation_fields(self, pg_settings):
        tx = transaction_from_row({
            "id": 7,
            "source": "bankinter-eur",
            "date": "2025-03-10T00:00:00Z",
            "amount": -99.99,
            "reconciled": True,
            "custom_data": {
                "reconciliationType": "automatic",
                "reconciled_at": "2025-03-11T09:30:00Z",
                "paymentSource": "stripe-eur",
                "match_type": "payment_source",
                "other": 1,
            },
        }, pg_settings)

        assert tx.id == "7"
        assert tx.amount_cents == -9999
        assert tx.transaction_date == date(2025, 3, 10)
        assert tx.reconciliation_type == ReconciliationType.AUTOMATIC
        assert tx.gateway == "stripe-eur"
        assert tx.match_type == MatchType.PAYMENT_SOURCE
        assert tx.reconciled_at.year == 2025
        assert tx.metadata == {"other": 1}

    @pytest.mark.parametrize("raw,expected", [
        ("invoice_link", ReconciliationType.MANUAL),
        (None, ReconciliationType.AUTOMATIC),
    ])
    def test_legacy_reconciliation_types(self, pg_settings, raw, expected):
        custom = {"reconciliationType": raw} if raw else {}
        tx = transaction_from_row(
            {"id": "1", "source": "sabadell", "amount": 1, "reconciled": True, "custom_data": custom},
            pg_settings,
        )

        assert tx.reconciliation_type == expected

    def test_unreconciled_row_ignores_stale_fields(self, pg_settings):
        tx = transaction_from_row(
            {"id": "1", "source": "sabadell", "amount": 1, "reconciled": False,
             "custom_data": {"paymentSource": "gocardless"}},
            pg_settings,
        )

        assert tx.reconciliation_type == ReconciliationType.NONE
        assert tx.gateway is None

    def test_customer_name_priority(self):
        assert resolve_customer_name({"email": "a@b.c", "company_name": "Acme"}) == "Acme"
        assert resolve_customer_name({}, "fallback") == "fallback"
