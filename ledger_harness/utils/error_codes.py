from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Harness error codes."""

    H001 = "H001"  # Context: Field not set
    H002 = "H002"  # Fixture: Precondition failed
    H003 = "H003"  # Assertion: Value mismatch
    H004 = "H004"  # Assertion: Expected failure did not happen
    H005 = "H005"  # Timeout: Operation timeout
    H006 = "H006"  # Ledger: Transaction rejected
    H007 = "H007"  # Crypto: Invalid key or signature
    H008 = "H008"  # Ledger: Entity not found
    H009 = "H009"  # Validation: Invalid input
    H010 = "H010"  # Conflict: State conflict
    H011 = "H011"  # Internal: Internal error


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.H001: "Scenario context field is not set",
    ErrorCode.H002: "Precondition failed",
    ErrorCode.H003: "Assertion mismatch",
    ErrorCode.H004: "Expected operation failure did not happen",
    ErrorCode.H005: "Operation timeout",
    ErrorCode.H006: "Transaction rejected by the ledger",
    ErrorCode.H007: "Invalid key or signature",
    ErrorCode.H008: "Entity not found",
    ErrorCode.H009: "Validation error",
    ErrorCode.H010: "State conflict",
    ErrorCode.H011: "Internal harness error",
}
