"""Bank-transaction reconciliation matcher."""

__version__ = "1.0.0"
