# Overview: Ledger error taxonomy shared by all services and mapped to HTTP status codes by routes.

"""
Ledger Errors

Every business rule violation is detected before any write, or inside a
transaction that is rolled back before the error propagates. None of these
errors is retried automatically.

Notification failures are NOT represented here: they are reported as a
flag next to a successful result (see notification_service).
"""


class LedgerError(Exception):
    """Base class for ledger rule violations."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": str(self), "kind": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """Malformed input: empty items, non-positive quantity/amount, missing reason."""
    status_code = 400


class NotFoundError(LedgerError):
    """Referenced order, shop, product or payment does not exist."""
    status_code = 404


class AccessDenied(LedgerError):
    """Caller does not own the order being edited, paid or returned."""
    status_code = 403


class IllegalStateTransition(LedgerError):
    """Operation not allowed for the order's current status."""
    status_code = 409


class CreditLimitExceeded(LedgerError):
    """Order total exceeds the shop's available credit."""
    status_code = 409


class ActiveBillCapExceeded(LedgerError):
    """Shop already carries its maximum number of unpaid approved bills."""
    status_code = 409


class OverpaymentError(LedgerError):
    """Collected amount would exceed the order total."""
    status_code = 409


class ReturnQuantityExceeded(LedgerError):
    """Return quantity exceeds what remains on the order line."""
    status_code = 409


class InsufficientInventory(LedgerError):
    """Admin edit of an approved order would drive product stock negative."""
    status_code = 409


class ConflictError(LedgerError):
    """Row cannot be changed because other ledger rows depend on it."""
    status_code = 409
