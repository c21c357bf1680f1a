"""
Typed failures raised by the ledger.

Every error carries a machine-readable ``error_code``; the HTTP layer maps
these onto status codes. Only :class:`Contention` is worth retrying.
"""
from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger errors"""
    retryable = False

    def __init__(self, message: str, error_code: str = "LEDGER_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(LedgerError):
    """Malformed request parameters"""
    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, error_code="VALIDATION_ERROR")


class InvalidAmount(ValidationError):
    def __init__(self, amount, reason: str = "Amount must be greater than 0"):
        super().__init__(f"{reason}, got {amount}", field="amount")
        self.error_code = "INVALID_AMOUNT"


class InvalidPrice(ValidationError):
    def __init__(self, price):
        super().__init__(f"Price must be greater than 0, got {price}", field="price")
        self.error_code = "INVALID_PRICE"


class InvalidTradeType(ValidationError):
    def __init__(self, trade_type, reason: str = "Type must be 'buy' or 'sell'"):
        super().__init__(f"Invalid trade type '{trade_type}'. {reason}", field="type")
        self.error_code = "INVALID_TRADE_TYPE"


class InsufficientBalance(LedgerError):
    """Withdrawal or trade exceeds the available balance of ``asset``"""
    def __init__(self, asset: str, required: Decimal, available: Decimal):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient {asset} balance: required {required}, available {available}",
            error_code="INSUFFICIENT_BALANCE",
        )


class Contention(LedgerError):
    """Concurrent writers kept conflicting and the retry budget ran out"""
    retryable = True

    def __init__(self, message: str = "Concurrent update conflict", attempts: int = 0):
        self.attempts = attempts
        if attempts:
            message = f"{message} after {attempts} attempts"
        super().__init__(message, error_code="CONTENTION")


class NotFound(LedgerError):
    def __init__(self, resource_type: str, key: Optional[str] = None):
        if key:
            message = f"{resource_type} '{key}' not found"
        else:
            message = f"{resource_type} not found"
        super().__init__(message, error_code="NOT_FOUND")
