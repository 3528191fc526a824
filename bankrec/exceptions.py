"""Exceptions raised by the reconciliation core."""

from typing import Any, Optional


class ReconciliationError(Exception):
    """
    Base error for reconciliation operations.

    Carries the operation name and the ids involved so callers can render a
    user-facing message without parsing the text.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        transaction_id: Optional[str] = None,
        ledger_id: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.transaction_id = transaction_id
        self.ledger_id = ledger_id
        self.details = details

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.transaction_id:
            context.append(f"transaction={self.transaction_id}")
        if self.ledger_id:
            context.append(f"ledger={self.ledger_id}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class NotFoundError(ReconciliationError):
    """Referenced transaction or ledger record no longer exists."""


class AlreadyReconciledError(ReconciliationError):
    """Guarded update found the target already reconciled."""


class NoSelectionError(ReconciliationError):
    """Manual-only commit without a gateway label or a note."""


class ValidationError(ReconciliationError):
    """Malformed input."""


class NotReconciledError(ValidationError):
    """Revert requested for a transaction that is not reconciled."""


class RepositoryError(ReconciliationError):
    """Underlying storage read or write failed."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.cause = cause
