"""
Rental Returns Errors.

Exceptions raised by the return engine. Validation problems are NOT here:
they are returned as core.domain.ValidationError records inside result
objects and never raised.
"""

from typing import Optional


class ReturnEngineError(Exception):
    """Base class for every error the return engine raises."""


class InvalidScheduleError(ReturnEngineError):
    """A line's expected return date (or the actual return date) is missing or unparsable."""

    def __init__(self, message: str, line_id: Optional[str] = None):
        super().__init__(message)
        self.line_id = line_id


class DuplicateSubmissionError(ReturnEngineError):
    """An identical commit completed successfully less than the cooldown ago."""

    def __init__(self, remaining_seconds: int, transaction_code: str = ""):
        super().__init__(
            f"Return for {transaction_code or 'this transaction'} was just submitted. "
            f"Please wait {remaining_seconds} seconds."
        )
        self.remaining_seconds = remaining_seconds
        self.transaction_code = transaction_code


class AlreadyReturnedError(ReturnEngineError):
    """The gateway reports the transaction was already fully returned."""

    def __init__(self, transaction_code: str, message: str = ""):
        super().__init__(message or f"Transaction {transaction_code} has already been returned")
        self.transaction_code = transaction_code


class GatewayError(ReturnEngineError):
    """Network or server failure while talking to the transaction gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransactionNotFoundError(GatewayError):
    def __init__(self, transaction_code: str):
        super().__init__(f"Transaction {transaction_code} not found", status_code=404)
        self.transaction_code = transaction_code


class ReturnNotEligibleError(ReturnEngineError):
    """The transaction cannot be returned (wrong status or nothing left out)."""

    def __init__(self, transaction_code: str, reason: str):
        super().__init__(reason)
        self.transaction_code = transaction_code
        self.reason = reason


class UnknownLineError(ReturnEngineError, KeyError):
    def __init__(self, line_id: str):
        super().__init__(line_id)
        self.line_id = line_id

    def __str__(self) -> str:
        return f"Line {self.line_id} is not part of this return"


class SplitEditError(ReturnEngineError, ValueError):
    """A split edit that cannot be applied at all (bad index, last split, too many splits)."""


class SessionNotFoundError(ReturnEngineError):
    def __init__(self, transaction_code: str):
        super().__init__(f"No open return session for transaction {transaction_code}")
        self.transaction_code = transaction_code
