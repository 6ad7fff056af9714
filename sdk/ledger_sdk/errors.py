"""
Error types for the ledger SDK.

This module defines all exception types raised by the SDK:
- LedgerClientError: Base exception
- ConnectionError: Server connection issues
- ValidationError: Transaction rejected as malformed or unbalanced
- ConflictError: Transaction id already committed
- NotFoundError: Transaction, account or tag does not exist
- UnavailableError: Server storage temporarily failing, safe to retry

Invariants:
    - All errors inherit from LedgerClientError
    - Errors keep the server's error_code and details
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerClientError(Exception):
    """Base exception for all ledger SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LEDGER_ERROR"
        self.details = details or {}


class ConnectionError(LedgerClientError):
    """Failed to reach the ledger server."""

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"address": address})
        self.address = address


class ValidationError(LedgerClientError):
    """Transaction failed server-side validation.

    Attributes:
        rule: Name of the failed rule, when the server reported one
    """

    @property
    def rule(self) -> Optional[str]:
        return self.details.get("rule")


class ConflictError(LedgerClientError):
    """Transaction id already exists."""


class NotFoundError(LedgerClientError):
    """Referenced transaction, account or tag does not exist."""


class UnavailableError(LedgerClientError):
    """Server storage failed; the request can be retried."""


ERRORS_BY_CODE = {
    "INVALID_ARGUMENT": ValidationError,
    "ALREADY_EXISTS": ConflictError,
    "NOT_FOUND": NotFoundError,
    "UNAVAILABLE": UnavailableError,
}


def error_from_response(response: Dict[str, Any]) -> LedgerClientError:
    """Build the SDK exception for a failed response."""
    code = response.get("error_code") or "INTERNAL"
    error_cls = ERRORS_BY_CODE.get(code, LedgerClientError)
    return error_cls(
        response.get("error", "Unknown error"),
        code=code,
        details=response.get("details") or {},
    )
