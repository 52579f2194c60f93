from __future__ import annotations

from typing import Any, Optional

from ledger_harness.utils.error_codes import ErrorCode, ERROR_MESSAGES


def _normalize_error_code(value: ErrorCode | str | None) -> ErrorCode:
    if value is None:
        return ErrorCode.H011
    if isinstance(value, ErrorCode):
        return value
    try:
        return ErrorCode(str(value))
    except ValueError:
        return ErrorCode.H011


class LedgerHarnessException(Exception):
    """Base exception for the harness.

    Every failure a scenario can hit is one of these; none is ever downgraded
    to a warning.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | str = ErrorCode.H011,
        details: Optional[dict[str, Any]] = None,
    ):
        normalized = _normalize_error_code(code)
        if message is None:
            message = ERROR_MESSAGES.get(normalized, ERROR_MESSAGES[ErrorCode.H011])

        self.message = message
        self.code = normalized.value
        self.details = details or {}
        super().__init__(self.message)


class ContextFieldMissingError(LedgerHarnessException):
    def __init__(self, field: str):
        super().__init__(
            f"Scenario context field '{field}' was read before any step set it",
            code=ErrorCode.H001,
            details={"field": field},
        )
        self.field = field


class PreconditionFailedError(LedgerHarnessException):
    def __init__(
        self,
        message: str | None = None,
        *,
        expected: Any = None,
        actual: Any = None,
        details: Optional[dict[str, Any]] = None,
    ):
        merged = {"expected": expected, "actual": actual, **(details or {})}
        super().__init__(message, code=ErrorCode.H002, details=merged)
        self.expected = expected
        self.actual = actual


class AssertionMismatchError(LedgerHarnessException, AssertionError):
    def __init__(
        self,
        message: str | None = None,
        *,
        expected: Any = None,
        actual: Any = None,
        details: Optional[dict[str, Any]] = None,
    ):
        merged = {"expected": expected, "actual": actual, **(details or {})}
        super().__init__(message, code=ErrorCode.H003, details=merged)
        self.expected = expected
        self.actual = actual


class ExpectedFailureMissingError(LedgerHarnessException, AssertionError):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.H004, details=details)


class LedgerTimeoutError(LedgerHarnessException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.H005, details=details)


class ReceiptStatusError(LedgerHarnessException):
    """The ledger processed a transaction and rejected it."""

    def __init__(
        self,
        status: str,
        *,
        transaction_id: str | None = None,
        message: str | None = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message or f"Transaction {transaction_id or '<unknown>'} failed with status {status}",
            code=ErrorCode.H006,
            details={"status": status, "transaction_id": transaction_id, **(details or {})},
        )
        self.status = status
        self.transaction_id = transaction_id


class InvalidSignatureException(LedgerHarnessException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.H007, details=details)


class NotFoundException(LedgerHarnessException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message or "Not Found", code=ErrorCode.H008, details=details)


class BadRequestException(LedgerHarnessException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.H009, details=details)


class ConflictException(LedgerHarnessException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.H010, details=details)
