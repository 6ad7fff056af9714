"""
Commit coordinator for the ledger.

The coordinator turns a submitted Transaction into persisted state:
1. Validate the transaction (no storage access)
2. Collect the distinct poster, currencies and accounts it references
3. Open one storage transaction and resolve or create each entity,
   ensuring the default tag on every referenced account
4. Insert the header, splits and split-account links in the same
   storage transaction and commit

If any step fails the storage transaction rolls back, so a transaction
is either absent or fully committed; no reader sees a header without
its splits.

Invariants:
    - Entity references exist before a split row is written
    - A transaction id can be committed once; re-submission is a conflict
    - Deleting removes header, splits and links together

How to change safely:
    - Keep every write of a commit inside the single store.transaction()
    - Add new validation rules to validator.py, not here
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace

from ..errors import LedgerError, NotFoundError
from .registry import EntityRegistry
from .store import LedgerStore
from .types import Account, CommitResult, Split, Transaction
from .validator import validate_or_raise

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitPolicy:
    """Behavioural switches for the coordinator.

    Attributes:
        default_poster: Username used when a transaction names no poster
        default_decimals: Decimals for currencies first seen without a precision
        default_tag: Tag ensured on every account a commit references
        enforce_balance: Reject transactions whose splits don't sum to zero per currency
        strict_delete: Raise NotFoundError when deleting an unknown transaction
    """

    default_poster: str = "MainUser"
    default_decimals: int = 2
    default_tag: str = "main"
    enforce_balance: bool = True
    strict_delete: bool = True


class CommitCoordinator:
    """Orchestrates commit and delete of ledger transactions.

    Attributes:
        store: Ledger store
        registry: Entity registry sharing the same store
        policy: Commit policy

    Example:
        >>> coordinator = CommitCoordinator(store)
        >>> result = await coordinator.commit(Transaction.from_dict(payload))
        >>> await coordinator.delete(result.transaction_id)
    """

    def __init__(
        self,
        store: LedgerStore,
        registry: EntityRegistry | None = None,
        policy: CommitPolicy | None = None,
    ) -> None:
        self.store = store
        self.registry = registry or EntityRegistry(store)
        self.policy = policy or CommitPolicy()

    def _prepare(self, txn: Transaction) -> Transaction:
        """Fill in generated split ids, split dates and the poster."""
        splits: list[Split] = [
            replace(
                split,
                id=split.id or uuid.uuid4().hex,
                date=split.date or txn.postdate,
            )
            for split in txn.splits
        ]
        return replace(txn, splits=splits, poster=txn.poster or self.policy.default_poster)

    def _currency_decimals(self, txn: Transaction) -> dict[str, int]:
        decimals: dict[str, int] = {}
        for split in txn.splits:
            if split.currency in decimals:
                continue
            if split.currency_decimals is not None:
                decimals[split.currency] = split.currency_decimals
            else:
                decimals[split.currency] = self.policy.default_decimals
        return decimals

    async def commit(self, txn: Transaction) -> CommitResult:
        """Validate and atomically persist a transaction.

        Args:
            txn: Transaction to commit

        Returns:
            CommitResult describing what was written

        Raises:
            ValidationError: If the transaction is malformed or unbalanced
            ConflictError: If the transaction id (or a split id) already exists
            StorageError: If the storage engine fails
        """
        validate_or_raise(txn, enforce_balance=self.policy.enforce_balance)
        txn = self._prepare(txn)
        decimals = self._currency_decimals(txn)

        created_accounts: list[str] = []
        created_currencies: list[str] = []

        try:
            with self.store.transaction() as conn:
                poster, _ = self.registry.resolve_user(conn, txn.poster)

                for name in txn.currency_names():
                    _, created = self.registry.resolve_currency(conn, name, decimals[name])
                    if created:
                        created_currencies.append(name)

                for code in txn.account_codes():
                    _, created = self.registry.resolve_account(conn, code)
                    if created:
                        created_accounts.append(code)
                    self.registry.tag_account(conn, code, self.policy.default_tag)

                self.store.insert_transaction(conn, txn, poster.user_id)
        except LedgerError as e:
            logger.warning(
                "Transaction commit failed",
                extra={"transaction_id": txn.id, "error_code": e.code, "error": e.message},
            )
            raise

        logger.info(
            "Committed transaction",
            extra={
                "transaction_id": txn.id,
                "splits": len(txn.splits),
                "created_accounts": created_accounts,
                "created_currencies": created_currencies,
            },
        )

        return CommitResult(
            transaction_id=txn.id,
            split_ids=[s.id for s in txn.splits],
            created_accounts=created_accounts,
            created_currencies=created_currencies,
        )

    async def delete(self, transaction_id: str) -> bool:
        """Delete a committed transaction and all of its splits.

        Returns:
            True if deleted; False if not found and strict_delete is off

        Raises:
            NotFoundError: If not found and strict_delete is on
            StorageError: If the storage engine fails
        """
        with self.store.transaction() as conn:
            deleted = self.store.delete_transaction(conn, transaction_id)
            if not deleted and self.policy.strict_delete:
                raise NotFoundError(
                    f"Transaction not found: {transaction_id}",
                    entity="transaction",
                    key=transaction_id,
                )

        if deleted:
            logger.info("Deleted transaction", extra={"transaction_id": transaction_id})
        else:
            logger.info("Delete of unknown transaction ignored", extra={"transaction_id": transaction_id})
        return deleted

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        return await self.store.get_transaction(transaction_id)

    async def get_account(self, code: str) -> Account | None:
        return await self.registry.get_account(code)

    async def add_tag(self, account: str, tag: str) -> bool:
        return await self.registry.add_tag(account, tag)

    async def remove_tag(self, account: str, tag: str) -> None:
        await self.registry.remove_tag(account, tag)
