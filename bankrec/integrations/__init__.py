"""External integrations for the reconciliation matcher."""

from .postgrest import PostgrestClient
from .supabase_repositories import (
    SupabaseInvoiceRepository,
    SupabaseOrderRepository,
    SupabaseSettlementFeed,
    SupabaseTransactionFeed,
)

__all__ = [
    "PostgrestClient",
    "SupabaseTransactionFeed",
    "SupabaseInvoiceRepository",
    "SupabaseOrderRepository",
    "SupabaseSettlementFeed",
]
