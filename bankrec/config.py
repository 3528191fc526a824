"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.

Matching windows and tolerances are heuristic constants carried over from the
back-office application; they live here so they can be tuned per deployment.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_NOISE_WORDS = [
    "recibo", "recib", "transferencia", "transfer", "pago", "paga", "pmt",
    "payment", "cobro", "cargo", "abono", "ingreso", "domiciliacion",
    "adeudo", "comision", "comisiones", "impuesto", "iva", "sepa",
    "swift", "ref", "fra", "factura", "orden", "concepto",
    "nro", "num", "numero", "cuenta", "cta", "iban",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BANKREC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)
    reports_dir: Path = Field(default=Path("./data/reports"))

    # Hosted database (PostgREST)
    supabase_url: str = Field(default="http://localhost:54321")
    supabase_key: str = Field(default="")
    request_timeout_seconds: float = Field(default=30.0)
    page_size: int = Field(default=1000)
    max_retries: int = Field(default=3)

    # Date windows (days)
    expense_exact_window_days: int = Field(default=3)
    expense_counterparty_days_before: int = Field(default=30)
    expense_counterparty_days_after: int = Field(default=15)
    expense_pool_days_before: int = Field(default=30)
    payment_source_window_days: int = Field(default=5)
    revenue_days_before: int = Field(default=30)
    revenue_days_after: int = Field(default=5)
    intercompany_window_days: int = Field(default=5)

    # Amount tolerances (ratios of the bank amount)
    expense_amount_tolerance: float = Field(default=0.15)
    payment_source_tolerance: float = Field(default=0.03)
    payment_source_floor_cents: int = Field(default=10)
    revenue_close_tolerance: float = Field(default=0.05)
    intercompany_tolerance: float = Field(default=0.02)
    exact_epsilon_cents: int = Field(default=1)
    supplier_fuzzy_threshold: float = Field(default=0.60)

    # Sources
    bank_accounts: List[str] = Field(
        default=["bankinter-eur", "bankinter-usd", "sabadell", "chase-usd"]
    )
    usd_bank_accounts: List[str] = Field(default=["bankinter-usd", "chase-usd"])
    payment_sources_usd: List[str] = Field(
        default=["braintree-api-revenue-usd", "stripe-usd"]
    )
    payment_sources_default: List[str] = Field(
        default=[
            "braintree-api-revenue",
            "braintree-api-revenue-gbp",
            "braintree-api-revenue-amex",
            "stripe-eur",
            "gocardless",
        ]
    )
    batched_gateway_marker: str = Field(default="braintree")
    order_feed_sources_usd: List[str] = Field(default=["invoice-orders-usd"])
    order_feed_sources_default: List[str] = Field(default=["invoice-orders"])
    expense_invoice_type: str = Field(default="INCURRED")
    noise_words: List[str] = Field(default_factory=lambda: list(DEFAULT_NOISE_WORDS))

    # Automatic pass
    auto_commit_threshold: int = Field(default=90)
    auto_max_concurrency: int = Field(default=4)

    def payment_sources_for(self, currency: str) -> List[str]:
        """Gateway feeds that can settle into an account of this currency."""
        if (currency or "").upper() == "USD":
            return list(self.payment_sources_usd)
        return list(self.payment_sources_default)

    def order_feed_sources_for(self, currency: str) -> List[str]:
        if (currency or "").upper() == "USD":
            return list(self.order_feed_sources_usd)
        return list(self.order_feed_sources_default)

    def currency_of_account(self, account: str) -> str:
        """Currency of a bank account key (USD accounts are listed explicitly)."""
        if account in self.usd_bank_accounts or "usd" in (account or "").lower():
            return "USD"
        return "EUR"

    def ratio(self, name: str) -> Decimal:
        """Return a tolerance setting as an exact Decimal."""
        return Decimal(str(getattr(self, name)))

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
