"""Domain exceptions raised by ledger operations.

Each class carries the HTTP status the API layer answers with, so routes never
translate errors themselves. Everything raised before a commit leaves no state
behind: the owning transaction is rolled back by its context manager.
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(LedgerError):
    status_code = 400


class PermissionDeniedError(LedgerError):
    status_code = 403


class NotFoundError(LedgerError):
    status_code = 404


class ConflictError(LedgerError):
    status_code = 409


class UsernameExhaustedError(ConflictError):
    pass


class ClaimAlreadyRedeemedError(ConflictError):
    pass


class ClaimExpiredError(ConflictError):
    status_code = 410


class IdempotencyConflictError(ConflictError):
    pass


class InsufficientFundsError(ConflictError):
    pass


class WalletAlreadyAssignedError(ConflictError):
    pass


class AlreadyResolvedError(ConflictError):
    pass


class ExternalServiceError(LedgerError):
    status_code = 502


class PaymentRejectedError(ExternalServiceError):
    """The payment service answered with a definitive failure."""


class PendingReconciliationError(ExternalServiceError):
    """The payment outcome is unknown; the reservation stays in place."""

    status_code = 202

    def __init__(self, detail: str, *, withdrawal_id: str) -> None:
        super().__init__(detail)
        self.withdrawal_id = withdrawal_id


class InvariantViolation(LedgerError):
    status_code = 500
