"""
Repositories over the hosted database tables.

- csv_rows: bank statement lines, gateway settlement rows and the generic
  order feed, with reconciliation metadata kept in the custom_data JSON
- invoices: accounts-payable invoices
- ar_invoices: structured accounts-receivable invoices

Guarded writes PATCH with a `reconciled = false` filter; an empty result
means either the row is gone or somebody else reconciled it first, and a
follow-up read tells the two apart.
"""

import asyncio
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..config import Settings, get_settings
from ..exceptions import AlreadyReconciledError, NotFoundError, NotReconciledError
from ..models import (
    APInvoice,
    AROrder,
    BankTransaction,
    CandidateKind,
    GatewaySettlement,
    MatchedEntity,
    MatchType,
    OrderOrigin,
    ReconciliationFields,
    ReconciliationType,
)
from ..repositories import InvoiceRepository, OrderRepository, SettlementFeed, TransactionFeed
from ..utils.money import cents_to_decimal, optional_cents, parse_date, to_cents
from .postgrest import PostgrestClient, eq, gte, in_, lte

logger = structlog.get_logger()

CSV_ROWS = "csv_rows"
INVOICES = "invoices"
AR_INVOICES = "ar_invoices"

# custom_data keys owned by the reconciliation flow
RECONCILIATION_KEYS = (
    "reconciliationType",
    "reconciled_at",
    "manual_note",
    "paymentSource",
    "match_type",
    "matched_entity",
    "match_details",
)

# Order-feed row keys that may hold the customer, in priority order
CUSTOMER_NAME_KEYS = (
    "customer_name",
    "company_name",
    "customer",
    "customerName",
    "company",
    "billing_name",
    "client_name",
    "account_name",
    "email",
)

UNRECONCILED_OR_NULL = ("or", "(reconciled.eq.false,reconciled.is.null)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def resolve_customer_name(custom_data: Dict[str, Any], fallback: str = "") -> str:
    for key in CUSTOMER_NAME_KEYS:
        value = custom_data.get(key)
        if value:
            return str(value)
    return fallback or ""


def _date_filters(column: str, start: Optional[date], end: Optional[date]) -> List[Tuple[str, str]]:
    filters = []
    if start:
        filters.append((column, gte(start)))
    if end:
        filters.append((column, lte(end)))
    return filters


def _money(cents: Optional[int]) -> Optional[str]:
    return None if cents is None else str(cents_to_decimal(cents))


def _nonzero_cents(value: Any, field_name: str) -> Optional[int]:
    cents = optional_cents(value, field_name)
    return cents or None


def strip_reconciliation(custom_data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in custom_data.items() if k not in RECONCILIATION_KEYS}


def reconciliation_custom_data(fields: ReconciliationFields) -> Dict[str, Any]:
    """custom_data entries written by a commit."""
    data: Dict[str, Any] = {
        "reconciliationType": fields.reconciliation_type.value,
        "reconciled_at": fields.reconciled_at.isoformat(),
        "match_type": fields.match_type.value,
        "match_details": dict(fields.match_details),
    }
    if fields.note:
        data["manual_note"] = fields.note
    if fields.gateway:
        data["paymentSource"] = fields.gateway
    if fields.matched_entity:
        data["matched_entity"] = {
            "kind": fields.matched_entity.kind.value,
            "id": fields.matched_entity.id,
        }
    return data


def transaction_from_row(row: Dict[str, Any], settings: Settings) -> BankTransaction:
    """Map a csv_rows bank line to a BankTransaction."""
    custom = dict(row.get("custom_data") or {})
    source = row.get("source") or ""
    reconciled = bool(row.get("reconciled"))

    reconciliation_type = ReconciliationType.NONE
    if reconciled:
        raw_type = custom.get("reconciliationType")
        try:
            reconciliation_type = ReconciliationType(raw_type)
        except ValueError:
            # Legacy link types were all set by hand; untyped rows came from bulk jobs
            reconciliation_type = ReconciliationType.MANUAL if raw_type else ReconciliationType.AUTOMATIC
        if reconciliation_type == ReconciliationType.NONE:
            reconciliation_type = ReconciliationType.AUTOMATIC

    match_type = None
    if reconciled and custom.get("match_type"):
        try:
            match_type = MatchType(custom["match_type"])
        except ValueError:
            match_type = None

    matched_entity = None
    entity = custom.get("matched_entity")
    if reconciled and isinstance(entity, dict) and entity.get("id"):
        try:
            matched_entity = MatchedEntity(CandidateKind(entity.get("kind")), str(entity["id"]))
        except ValueError:
            matched_entity = None

    return BankTransaction(
        id=str(row["id"]),
        source=source,
        currency=row.get("currency") or custom.get("currency") or settings.currency_of_account(source),
        transaction_date=parse_date(row.get("date")),
        description=row.get("description") or "",
        amount_cents=to_cents(row.get("amount"), "amount"),
        is_reconciled=reconciled,
        reconciliation_type=reconciliation_type,
        matched_entity=matched_entity,
        note=custom.get("manual_note") if reconciled else None,
        gateway=custom.get("paymentSource") if reconciled else None,
        match_type=match_type,
        reconciled_at=parse_timestamp(custom.get("reconciled_at")) if reconciled else None,
        match_details=dict(custom.get("match_details") or {}) if reconciled else {},
        metadata=strip_reconciliation(custom),
    )


def invoice_from_row(row: Dict[str, Any]) -> APInvoice:
    return APInvoice(
        id=str(row["id"]),
        amount_cents=to_cents(row.get("invoice_amount") or 0, "invoice_amount"),
        paid_amount_cents=_nonzero_cents(row.get("paid_amount"), "paid_amount"),
        reference_date=parse_date(row.get("schedule_date"), "schedule_date"),
        currency=row.get("currency") or "EUR",
        counterparty=row.get("provider_code") or "",
        reconciled=bool(row.get("is_reconciled")),
        reconciled_with=row.get("reconciled_transaction_id"),
        reconciled_amount_cents=optional_cents(row.get("reconciled_amount"), "reconciled_amount"),
        reconciled_at=parse_timestamp(row.get("reconciled_at")),
        raw_data=row,
        invoice_number=row.get("invoice_number"),
        provider_code=row.get("provider_code") or "",
        description=row.get("description") or "",
        invoice_type=row.get("invoice_type") or "",
    )


def ar_order_from_row(row: Dict[str, Any]) -> AROrder:
    amount = _nonzero_cents(row.get("total_amount"), "total_amount")
    if amount is None:
        amount = to_cents(row.get("charged_amount") or 0, "charged_amount")
    return AROrder(
        id=str(row["id"]),
        amount_cents=amount,
        reference_date=parse_date(row.get("order_date"), "order_date"),
        currency=row.get("currency") or "EUR",
        counterparty=row.get("company_name") or "",
        reconciled=bool(row.get("reconciled")),
        reconciled_with=row.get("reconciled_with"),
        reconciled_at=parse_timestamp(row.get("reconciled_at")),
        raw_data=row,
        origin=OrderOrigin.AR_INVOICES,
        order_id=row.get("order_id"),
        invoice_number=row.get("invoice_number"),
        customer_name=row.get("customer_name") or "",
        customer_code=row.get("customer_code"),
    )


def feed_order_from_row(row: Dict[str, Any]) -> AROrder:
    custom = dict(row.get("custom_data") or {})
    description = row.get("description") or ""
    return AROrder(
        id=str(row["id"]),
        amount_cents=abs(to_cents(row.get("amount") or 0, "amount")),
        reference_date=parse_date(row.get("date")),
        currency=custom.get("currency") or "EUR",
        counterparty=resolve_customer_name(custom, description),
        reconciled=bool(row.get("reconciled")),
        reconciled_with=custom.get("reconciled_with_bank_id"),
        reconciled_at=parse_timestamp(custom.get("reconciled_at")),
        raw_data=row,
        origin=OrderOrigin.INVOICE_ORDERS,
        source=row.get("source"),
        order_id=custom.get("order_id"),
        invoice_number=custom.get("invoice_number"),
        customer_name=resolve_customer_name(custom),
        customer_code=custom.get("customer_code"),
    )


def settlement_from_row(row: Dict[str, Any]) -> GatewaySettlement:
    custom = dict(row.get("custom_data") or {})
    return GatewaySettlement(
        id=str(row["id"]),
        amount_cents=to_cents(row.get("amount") or 0, "amount"),
        reference_date=parse_date(row.get("date")),
        currency=custom.get("currency") or custom.get("currency_iso_code") or "EUR",
        counterparty=resolve_customer_name(custom),
        reconciled=bool(row.get("reconciled")),
        raw_data=row,
        source=row.get("source") or "",
        disbursement_date=parse_date(custom.get("disbursement_date"), "disbursement_date"),
        description=row.get("description") or "",
    )


async def guarded_update(
    client: PostgrestClient,
    table: str,
    row_id: str,
    guard: Tuple[str, str],
    values: Dict[str, Any],
    label: str,
    transaction_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Compare-and-set update of one row.

    Raises:
        NotFoundError: Row does not exist
        AlreadyReconciledError: Guard did not hold
    """
    rows = await client.update(table, [("id", eq(row_id)), guard], values)
    if rows:
        return rows[0]

    existing = await client.get_one(table, row_id)
    if existing is None:
        raise NotFoundError(
            f"{label} not found",
            operation="mark_reconciled",
            transaction_id=transaction_id,
            ledger_id=row_id,
        )
    raise AlreadyReconciledError(
        f"{label} already reconciled",
        operation="mark_reconciled",
        transaction_id=transaction_id,
        ledger_id=row_id,
    )


class SupabaseTransactionFeed(TransactionFeed):
    """Bank lines in csv_rows."""

    def __init__(self, client: PostgrestClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()

    async def get(self, transaction_id: str) -> Optional[BankTransaction]:
        row = await self.client.get_one(CSV_ROWS, transaction_id)
        return transaction_from_row(row, self.settings) if row else None

    async def list_unreconciled(
        self,
        sources: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[BankTransaction]:
        if not sources:
            return []
        filters = [("source", in_(sources)), ("reconciled", eq(False))]
        filters.extend(_date_filters("date", start, end))
        rows = await self.client.select_all(CSV_ROWS, filters, order="date.asc,id.asc")
        return [transaction_from_row(r, self.settings) for r in rows]

    async def mark_reconciled(
        self,
        transaction_id: str,
        fields: ReconciliationFields,
    ) -> BankTransaction:
        existing = await self.client.get_one(CSV_ROWS, transaction_id)
        if existing is None:
            raise NotFoundError(
                "Transaction not found", operation="mark_reconciled", transaction_id=transaction_id,
            )
        if existing.get("reconciled"):
            raise AlreadyReconciledError(
                "Transaction already reconciled", operation="mark_reconciled", transaction_id=transaction_id,
            )

        custom = strip_reconciliation(dict(existing.get("custom_data") or {}))
        custom.update(reconciliation_custom_data(fields))
        row = await guarded_update(
            self.client,
            CSV_ROWS,
            transaction_id,
            ("reconciled", eq(False)),
            {"reconciled": True, "custom_data": custom},
            label="Transaction",
            transaction_id=transaction_id,
        )
        logger.debug("Transaction marked reconciled", transaction_id=transaction_id)
        return transaction_from_row(row, self.settings)

    async def clear_reconciliation(self, transaction_id: str) -> BankTransaction:
        existing = await self.client.get_one(CSV_ROWS, transaction_id)
        if existing is None:
            raise NotFoundError(
                "Transaction not found", operation="clear_reconciliation", transaction_id=transaction_id,
            )
        if not existing.get("reconciled"):
            raise NotReconciledError(
                "Transaction is not reconciled", operation="clear_reconciliation", transaction_id=transaction_id,
            )

        custom = strip_reconciliation(dict(existing.get("custom_data") or {}))
        rows = await self.client.update(
            CSV_ROWS,
            [("id", eq(transaction_id)), ("reconciled", eq(True))],
            {"reconciled": False, "custom_data": custom},
        )
        if not rows:
            raise NotReconciledError(
                "Transaction is not reconciled", operation="clear_reconciliation", transaction_id=transaction_id,
            )
        return transaction_from_row(rows[0], self.settings)


class SupabaseInvoiceRepository(InvoiceRepository):
    """Accounts-payable invoices."""

    def __init__(self, client: PostgrestClient):
        self.client = client

    async def get(self, invoice_id: str) -> Optional[APInvoice]:
        row = await self.client.get_one(INVOICES, invoice_id)
        return invoice_from_row(row) if row else None

    async def list_unreconciled(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        invoice_type: Optional[str] = None,
    ) -> List[APInvoice]:
        filters = [("is_reconciled", eq(False))]
        if invoice_type:
            filters.append(("invoice_type", eq(invoice_type)))
        filters.extend(_date_filters("schedule_date", start, end))
        rows = await self.client.select_all(INVOICES, filters, order="schedule_date.asc,id.asc")
        return [invoice_from_row(r) for r in rows]

    async def mark_reconciled(
        self,
        invoice_id: str,
        transaction_id: str,
        amount_cents: int,
        reconciled_at: datetime,
    ) -> APInvoice:
        row = await guarded_update(
            self.client,
            INVOICES,
            invoice_id,
            ("is_reconciled", eq(False)),
            {
                "is_reconciled": True,
                "reconciled_transaction_id": transaction_id,
                "reconciled_at": reconciled_at.isoformat(),
                "reconciled_amount": _money(amount_cents),
            },
            label="Invoice",
            transaction_id=transaction_id,
        )
        return invoice_from_row(row)

    async def release(self, invoice_id: str) -> None:
        await self.client.update(
            INVOICES,
            [("id", eq(invoice_id))],
            {
                "is_reconciled": False,
                "reconciled_transaction_id": None,
                "reconciled_at": None,
                "reconciled_amount": None,
            },
        )
        logger.info("Invoice released", invoice_id=invoice_id)


class SupabaseOrderRepository(OrderRepository):
    """Structured AR invoices plus order-feed rows from csv_rows."""

    def __init__(self, client: PostgrestClient):
        self.client = client

    async def get(self, record_id: str, origin: OrderOrigin) -> Optional[AROrder]:
        if origin == OrderOrigin.AR_INVOICES:
            row = await self.client.get_one(AR_INVOICES, record_id)
            return ar_order_from_row(row) if row else None
        row = await self.client.get_one(CSV_ROWS, record_id)
        return feed_order_from_row(row) if row else None

    async def list_unreconciled(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        feed_sources: Sequence[str] = (),
    ) -> List[AROrder]:
        ar_filters = [("reconciled", eq(False))]
        ar_filters.extend(_date_filters("order_date", start, end))
        queries = [self.client.select_all(AR_INVOICES, ar_filters, order="order_date.asc,id.asc")]

        if feed_sources:
            feed_filters = [("source", in_(feed_sources)), UNRECONCILED_OR_NULL]
            feed_filters.extend(_date_filters("date", start, end))
            queries.append(self.client.select_all(CSV_ROWS, feed_filters, order="date.asc,id.asc"))

        results = await asyncio.gather(*queries)
        orders = [ar_order_from_row(r) for r in results[0]]
        if len(results) > 1:
            orders.extend(feed_order_from_row(r) for r in results[1])
        return orders

    async def mark_reconciled(
        self,
        record_id: str,
        origin: OrderOrigin,
        transaction_id: str,
        amount_cents: int,
        reconciled_at: datetime,
    ) -> AROrder:
        if origin == OrderOrigin.AR_INVOICES:
            row = await guarded_update(
                self.client,
                AR_INVOICES,
                record_id,
                ("reconciled", eq(False)),
                {
                    "reconciled": True,
                    "reconciled_at": reconciled_at.isoformat(),
                    "reconciled_with": transaction_id,
                },
                label="Order",
                transaction_id=transaction_id,
            )
            return ar_order_from_row(row)

        existing = await self.client.get_one(CSV_ROWS, record_id)
        if existing is None:
            raise NotFoundError(
                "Order not found", operation="mark_reconciled",
                transaction_id=transaction_id, ledger_id=record_id,
            )
        custom = dict(existing.get("custom_data") or {})
        custom.update({
            "reconciled_at": reconciled_at.isoformat(),
            "reconciled_with_bank_id": transaction_id,
            "reconciled_bank_amount_total": _money(amount_cents),
        })
        row = await guarded_update(
            self.client,
            CSV_ROWS,
            record_id,
            UNRECONCILED_OR_NULL,
            {"reconciled": True, "custom_data": custom},
            label="Order",
            transaction_id=transaction_id,
        )
        return feed_order_from_row(row)

    async def release(self, record_id: str, origin: OrderOrigin) -> None:
        if origin == OrderOrigin.AR_INVOICES:
            await self.client.update(
                AR_INVOICES,
                [("id", eq(record_id))],
                {"reconciled": False, "reconciled_at": None, "reconciled_with": None},
            )
        else:
            existing = await self.client.get_one(CSV_ROWS, record_id)
            if existing is None:
                return
            custom = {
                k: v for k, v in (existing.get("custom_data") or {}).items()
                if k not in ("reconciled_at", "reconciled_with_bank_id", "reconciled_bank_amount_total")
            }
            await self.client.update(
                CSV_ROWS,
                [("id", eq(record_id))],
                {"reconciled": False, "custom_data": custom},
            )
        logger.info("Order released", record_id=record_id, origin=origin.value)


class SupabaseSettlementFeed(SettlementFeed):
    """Gateway settlement rows in csv_rows."""

    def __init__(self, client: PostgrestClient):
        self.client = client

    async def list_unreconciled(
        self,
        sources: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[GatewaySettlement]:
        if not sources:
            return []
        filters = [("source", in_(sources)), ("reconciled", eq(False))]
        filters.extend(_date_filters("date", start, end))
        rows = await self.client.select_all(CSV_ROWS, filters, order="date.asc,id.asc")
        return [settlement_from_row(r) for r in rows]
