"""
Entity registry for the ledger.

Resolves users, currencies and accounts by natural key, creating them on
first reference, and manages the tags attached to accounts.

Resolve-or-create is a single logical operation: look the key up, insert
it when missing, and if the insert hits the uniqueness constraint (another
writer created the key in between) re-read the existing row. The stored
record always wins; a later request with a different name or decimals
does not change it.

Invariants:
    - Natural keys are never duplicated (enforced by UNIQUE/PRIMARY KEY)
    - Users, currencies and accounts are never deleted
    - Tags on an account form a set

How to change safely:
    - Keep every insert followed by the duplicate-key re-read
    - Use the conn-scoped methods from the coordinator so resolution joins
      the commit's storage transaction
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import NotFoundError, StorageError
from .store import LedgerStore
from .types import Account, Currency, User

logger = logging.getLogger(__name__)


class EntityRegistry:
    """Find-or-create access to ledger reference data.

    Each entity kind has a conn-scoped method (``resolve_user``,
    ``resolve_currency``, ``resolve_account``) that runs inside a caller's
    storage transaction, and a public async method that runs in its own.

    Example:
        >>> registry = EntityRegistry(store)
        >>> usd = await registry.resolve_or_create_currency("USD", 2)
        >>> cash = await registry.resolve_or_create_account("1000", "Cash")
        >>> await registry.add_tag("1000", "assets")
    """

    def __init__(self, store: LedgerStore) -> None:
        """Initialize the registry.

        Args:
            store: Ledger store the registry reads and writes
        """
        self.store = store

    # Users

    def _find_user(self, conn: sqlite3.Connection, username: str) -> User | None:
        row = conn.execute(
            "SELECT user_id, username FROM users WHERE username = ? LIMIT 1",
            (username,),
        ).fetchone()
        return User(user_id=row["user_id"], username=row["username"]) if row else None

    def resolve_user(self, conn: sqlite3.Connection, username: str) -> tuple[User, bool]:
        """Resolve a user inside an open storage transaction.

        Returns:
            Tuple of (user, created)
        """
        user = self._find_user(conn, username)
        if user is not None:
            return user, False

        try:
            cursor = conn.execute("INSERT INTO users (username) VALUES (?)", (username,))
        except sqlite3.IntegrityError:
            logger.debug("User created concurrently, re-reading", extra={"username": username})
            return self._refetch(self._find_user(conn, username), "user", username), False

        logger.debug("Created user", extra={"username": username})
        return User(user_id=cursor.lastrowid, username=username), True

    async def resolve_or_create_user(self, username: str) -> User:
        with self.store.transaction() as conn:
            user, _ = self.resolve_user(conn, username)
            return user

    async def get_user(self, username: str) -> User | None:
        with self.store.snapshot() as conn:
            return self._find_user(conn, username)

    # Currencies

    def _find_currency(self, conn: sqlite3.Connection, name: str) -> Currency | None:
        row = conn.execute(
            "SELECT name, decimals FROM currencies WHERE name = ? LIMIT 1",
            (name,),
        ).fetchone()
        return Currency(name=row["name"], decimals=row["decimals"]) if row else None

    def resolve_currency(
        self, conn: sqlite3.Connection, name: str, decimals: int
    ) -> tuple[Currency, bool]:
        """Resolve a currency inside an open storage transaction.

        Returns:
            Tuple of (currency, created)
        """
        currency = self._find_currency(conn, name)
        if currency is not None:
            return currency, False

        try:
            conn.execute(
                "INSERT INTO currencies (name, decimals) VALUES (?, ?)",
                (name, decimals),
            )
        except sqlite3.IntegrityError:
            logger.debug("Currency created concurrently, re-reading", extra={"currency": name})
            return self._refetch(self._find_currency(conn, name), "currency", name), False

        logger.debug("Created currency", extra={"currency": name, "decimals": decimals})
        return Currency(name=name, decimals=decimals), True

    async def resolve_or_create_currency(self, name: str, decimals: int) -> Currency:
        with self.store.transaction() as conn:
            currency, _ = self.resolve_currency(conn, name, decimals)
            return currency

    async def get_currency(self, name: str) -> Currency | None:
        with self.store.snapshot() as conn:
            return self._find_currency(conn, name)

    # Accounts

    def _find_account(self, conn: sqlite3.Connection, code: str) -> Account | None:
        row = conn.execute(
            "SELECT account_id, name FROM accounts WHERE account_id = ? LIMIT 1",
            (code,),
        ).fetchone()
        if not row:
            return None

        tags = conn.execute(
            "SELECT tag FROM account_tags WHERE account_id = ? ORDER BY tag",
            (code,),
        ).fetchall()
        return Account(code=row["account_id"], name=row["name"], tags=tuple(t["tag"] for t in tags))

    def resolve_account(
        self, conn: sqlite3.Connection, code: str, name: str | None = None
    ) -> tuple[Account, bool]:
        """Resolve an account inside an open storage transaction.

        Args:
            conn: Connection of the enclosing storage transaction
            code: Account code
            name: Display name for a new account (defaults to the code)

        Returns:
            Tuple of (account, created)
        """
        account = self._find_account(conn, code)
        if account is not None:
            return account, False

        name = name or code
        try:
            conn.execute(
                "INSERT INTO accounts (account_id, name) VALUES (?, ?)",
                (code, name),
            )
        except sqlite3.IntegrityError:
            logger.debug("Account created concurrently, re-reading", extra={"account": code})
            return self._refetch(self._find_account(conn, code), "account", code), False

        logger.debug("Created account", extra={"account": code})
        return Account(code=code, name=name), True

    async def resolve_or_create_account(self, code: str, name: str | None = None) -> Account:
        with self.store.transaction() as conn:
            account, _ = self.resolve_account(conn, code, name)
            return account

    async def get_account(self, code: str) -> Account | None:
        """Get an account with its tags.

        Returns:
            Account or None if not found
        """
        with self.store.snapshot() as conn:
            return self._find_account(conn, code)

    # Tags

    def tag_account(self, conn: sqlite3.Connection, code: str, tag: str) -> bool:
        """Attach a tag inside an open storage transaction.

        Returns:
            True if the tag was added, False if the account already had it

        Raises:
            NotFoundError: If the account does not exist
        """
        if not self._account_exists(conn, code):
            raise NotFoundError(f"Account not found: {code}", entity="account", key=code)

        cursor = conn.execute(
            "INSERT OR IGNORE INTO account_tags (account_id, tag) VALUES (?, ?)",
            (code, tag),
        )
        return cursor.rowcount > 0

    async def add_tag(self, code: str, tag: str) -> bool:
        """Attach a tag to an account.

        Adding a tag the account already carries is a no-op.

        Returns:
            True if the tag was added, False if it was already present

        Raises:
            NotFoundError: If the account does not exist
        """
        with self.store.transaction() as conn:
            added = self.tag_account(conn, code, tag)

        logger.info("Tagged account", extra={"account": code, "tag": tag, "added": added})
        return added

    async def remove_tag(self, code: str, tag: str) -> None:
        """Detach a tag from an account.

        Raises:
            NotFoundError: If the account does not exist or lacks the tag
        """
        with self.store.transaction() as conn:
            if not self._account_exists(conn, code):
                raise NotFoundError(f"Account not found: {code}", entity="account", key=code)

            cursor = conn.execute(
                "DELETE FROM account_tags WHERE account_id = ? AND tag = ?",
                (code, tag),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Tag {tag!r} not found on account {code}", entity="tag", key=tag
                )

        logger.info("Removed tag from account", extra={"account": code, "tag": tag})

    def _account_exists(self, conn: sqlite3.Connection, code: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM accounts WHERE account_id = ? LIMIT 1", (code,)
        ).fetchone()
        return row is not None

    @staticmethod
    def _refetch(record, entity: str, key: str):
        # A duplicate key with no readable row means the constraint fired on something else
        if record is None:
            raise StorageError(f"{entity} {key!r} violated a constraint but could not be read back")
        return record
