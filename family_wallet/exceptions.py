"""Typed errors raised by the wallet ledger and settlement engine.

Every error carries an HTTP ``status_code`` and a ``context`` dict holding
the requested and available amounts, so callers can correct their input
without a second round-trip.
"""


class WalletError(Exception):
    """Base class for all ledger errors."""

    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def as_response_body(self) -> dict:
        return {"error": self.message, **self.context}


class ValidationError(WalletError):
    """Malformed amounts or a missing child/wallet."""


class ChildNotFound(ValidationError):
    status_code = 404


class InvalidGiftSelection(WalletError):
    """One or more gift ids are not pending gifts owned by the child."""


class AmountMismatch(WalletError):
    """Declared payout total differs from chore portion plus gift total."""


class InsufficientBalance(WalletError):
    """The chore portion or the payout total exceeds the available funds."""


class InsufficientFunds(WalletError):
    """A wallet decrement would drive the balance below zero."""


class StorageFailure(WalletError):
    """The database transaction failed and was rolled back. Safe to retry."""

    status_code = 503
    retryable = True

    def as_response_body(self) -> dict:
        return {"error": self.message, "retryable": self.retryable}
