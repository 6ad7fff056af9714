"""
Error types for the ledger server.

Every failure surfaced by the commit pipeline is a LedgerError subclass:
- ValidationError: malformed or unbalanced transaction, never persisted
- ConflictError: duplicate natural key detected by the storage layer
- NotFoundError: delete or tag removal referencing a missing identifier
- StorageError: storage engine unavailable, timed out or failed unexpectedly

Invariants:
    - All errors inherit from LedgerError
    - Each error carries a stable code used by the RPC layer
    - The underlying cause is chained with ``raise ... from``

How to change safely:
    - Add new subclasses rather than changing existing codes
    - Keep codes in sync with api/grpc_server.py and the SDK
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for all ledger errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "LEDGER_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Transaction failed validation.

    Attributes:
        rule: Name of the rule that failed
        split_index: Index of the offending split (None for transaction-level rules)
        currency: Currency name for balance failures
    """

    code = "INVALID_ARGUMENT"

    def __init__(
        self,
        message: str,
        rule: str,
        split_index: int | None = None,
        currency: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"rule": rule, "split_index": split_index, "currency": currency},
        )
        self.rule = rule
        self.split_index = split_index
        self.currency = currency


class ConflictError(LedgerError):
    """A natural key already exists."""

    code = "ALREADY_EXISTS"

    def __init__(self, message: str, entity: str | None = None, key: str | None = None) -> None:
        super().__init__(message, details={"entity": entity, "key": key})
        self.entity = entity
        self.key = key


class NotFoundError(LedgerError):
    """Referenced transaction, account or tag does not exist."""

    code = "NOT_FOUND"

    def __init__(self, message: str, entity: str | None = None, key: str | None = None) -> None:
        super().__init__(message, details={"entity": entity, "key": key})
        self.entity = entity
        self.key = key


class StorageError(LedgerError):
    """Storage engine failure.

    Raised when:
    - The database file cannot be opened
    - A lock could not be acquired within the busy timeout
    - Any other unexpected SQLite error occurs

    Callers may retry; the failed operation left no partial state.
    """

    code = "UNAVAILABLE"
    retryable = True
