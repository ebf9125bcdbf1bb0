# app/core/errors.py
"""
Error taxonomy of the ledger engine.

Each error carries a reason ``code`` (returned to the caller) and the HTTP
status the API answers with. ``DuplicateTransaction`` and
``DrawAlreadySettled`` are recoverable: the effect was already applied, so
callers treat them as success.
"""


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


class DuplicateTransaction(LedgerError):
    code = "duplicate_transaction"
    status_code = 200


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"
    status_code = 400


class WithdrawalAlreadyPending(LedgerError):
    code = "withdrawal_already_pending"
    status_code = 409


class GatewayRejected(LedgerError):
    code = "gateway_rejected"
    status_code = 502


class DrawAlreadySettled(LedgerError):
    code = "draw_already_settled"
    status_code = 200


class StorageUnavailable(LedgerError):
    code = "storage_unavailable"
    status_code = 503


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class DrawClosed(LedgerError):
    code = "draw_closed"
    status_code = 400


class InvalidSelection(LedgerError):
    code = "invalid_selection"
    status_code = 400


class FeatureDisabled(LedgerError):
    code = "feature_disabled"
    status_code = 403


class InvalidAmount(LedgerError, ValueError):
    """Amount that is not a positive whole number of cents."""
    code = "invalid_amount"
    status_code = 400


class BetLimitExceeded(LedgerError):
    code = "bet_limit_exceeded"
    status_code = 400
