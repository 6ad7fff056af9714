"""
Ledger core: the transaction commit pipeline.

This module handles:
- SQLite storage with uniqueness constraints on natural keys
- Resolve-or-create of users, currencies and accounts
- Structural and double-entry balance validation
- Atomic commit and delete of transactions with their splits

Invariants:
    - A transaction and its splits become visible together or not at all
    - Natural keys are never duplicated, even under concurrent commits
    - Reference data (users, currencies, accounts) is append-only

How to change safely:
    - Use store.transaction() for every multi-statement write
    - Test concurrent commits against a file-backed store
"""

from .coordinator import CommitCoordinator, CommitPolicy
from .registry import EntityRegistry
from .store import LedgerStore
from .types import Account, CommitResult, Currency, Split, Transaction, User
from .validator import validate_or_raise, validate_transaction

__all__ = [
    "CommitCoordinator",
    "CommitPolicy",
    "EntityRegistry",
    "LedgerStore",
    "Account",
    "CommitResult",
    "Currency",
    "Split",
    "Transaction",
    "User",
    "validate_or_raise",
    "validate_transaction",
]
