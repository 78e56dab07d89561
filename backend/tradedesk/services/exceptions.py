"""
Domain exceptions for the ledger services.

Every mutating service either commits in full or raises one of these and
leaves balances untouched. The HTTP layer maps each class to a status code
through ``error_code`` and ``status_code``.
"""


class LedgerError(Exception):
    """
    Base exception for all ledger, margin and funding errors.

    Carries a human-readable message plus a ``details`` dict with the
    numbers that caused the failure (requested vs. available amounts,
    ids, states).
    """

    error_code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InsufficientFundsError(LedgerError):
    """
    Raised when a wallet or connected account cannot cover a debit.

    For withdrawals and transfers the required amount includes the fee.
    """

    error_code = "insufficient_funds"
    status_code = 402

    def __init__(
        self,
        message: str = "Insufficient funds available",
        required_amount=None,
        available_amount=None,
        currency: str | None = None,
    ):
        details = {}
        if required_amount is not None:
            details["required_amount"] = str(required_amount)
        if available_amount is not None:
            details["available_amount"] = str(available_amount)
        if currency is not None:
            details["currency"] = currency

        super().__init__(message, details)
        self.required_amount = required_amount
        self.available_amount = available_amount
        self.currency = currency


class InsufficientLockedFundsError(LedgerError):
    """Raised when unlocking more than the wallet's locked balance."""

    error_code = "insufficient_locked_funds"
    status_code = 402

    def __init__(self, message: str = "Insufficient locked funds to unlock", requested=None, locked=None):
        details = {}
        if requested is not None:
            details["requested_amount"] = str(requested)
        if locked is not None:
            details["locked_amount"] = str(locked)
        super().__init__(message, details)


class InsufficientMarginError(LedgerError):
    """Raised when a trading wallet's available margin is below the required margin."""

    error_code = "insufficient_margin"
    status_code = 402

    def __init__(self, message: str = "Insufficient margin available", required_margin=None, available_margin=None):
        details = {}
        if required_margin is not None:
            details["required_margin"] = str(required_margin)
        if available_margin is not None:
            details["available_margin"] = str(available_margin)
        super().__init__(message, details)
        self.required_margin = required_margin
        self.available_margin = available_margin


class InvalidStateError(LedgerError):
    """Raised when an entity's status does not allow the requested transition."""

    error_code = "invalid_state"
    status_code = 409


class PositionAlreadyClosedError(InvalidStateError):
    error_code = "already_closed"


class InvalidLeverageError(LedgerError):
    error_code = "invalid_leverage"
    status_code = 422


class InvalidAmountError(LedgerError):
    error_code = "invalid_amount"
    status_code = 422


class CurrencyMismatchError(LedgerError):
    error_code = "currency_mismatch"
    status_code = 422


class NotFoundError(LedgerError):
    error_code = "not_found"
    status_code = 404


class UnauthorizedError(LedgerError):
    """Raised when the caller does not own the entity it is acting on."""

    error_code = "unauthorized"
    status_code = 403


class ConcurrentUpdateError(LedgerError):
    """
    Raised when a versioned row changed underneath the current transaction.

    The caller may retry the whole operation with freshly loaded rows.
    """

    error_code = "concurrent_update"
    status_code = 409
