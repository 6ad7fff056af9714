"""
Ledger Python SDK - Client library for the ledger service.

Example:
    >>> from sdk.ledger_sdk import LedgerClient
    >>>
    >>> async with LedgerClient("localhost:50051") as ledger:
    ...     await ledger.submit_transaction(
    ...         "T1",
    ...         "2024-01-01",
    ...         [
    ...             {"currency": "USD", "accounts": ["1000"], "amount": 100},
    ...             {"currency": "USD", "accounts": ["2000"], "amount": -100},
    ...         ],
    ...     )
    ...     await ledger.delete_transaction("T1")

Invariants:
    - Failed RPCs raise typed errors, never return error dictionaries
    - Transaction commits are atomic on the server
"""

from .client import LedgerClient
from .errors import (
    ConflictError,
    ConnectionError,
    LedgerClientError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)

__all__ = [
    "LedgerClient",
    "ConflictError",
    "ConnectionError",
    "LedgerClientError",
    "NotFoundError",
    "UnavailableError",
    "ValidationError",
]
