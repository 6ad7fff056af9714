"""
SQLite storage engine for the ledger.

This module owns the database handle for the ledger and provides:
- Schema creation with uniqueness constraints on every natural key
- Per-operation connections configured for concurrent access
- Atomic write scopes (BEGIN IMMEDIATE ... COMMIT / ROLLBACK)
- Consistent read scopes for multi-table reads
- Transaction header and split persistence

Two backends are supported: a file-backed database under the data
directory, and an in-memory database shared between the connections of
one store (useful for tests and throwaway nodes).

Invariants:
    - Foreign keys are enforced on every connection
    - A transaction header and all of its splits are written in one scope
    - Every sqlite3 error leaving a scope is translated to a LedgerError
      with the original error chained

How to change safely:
    - Schema changes must keep existing columns and constraints
    - Bump SCHEMA_VERSION when adding tables
    - Keep all multi-statement writes inside transaction()

Table schema:
    users(user_id INTEGER PK, username TEXT UNIQUE)
    currencies(name TEXT PK, decimals INTEGER)
    accounts(account_id TEXT PK, name TEXT)
    account_tags(account_id TEXT, tag TEXT, PK(account_id, tag))
    transactions(transaction_id TEXT PK, postdate TEXT, brief TEXT,
                 poster_user_id INTEGER, created_at INTEGER)
    splits(split_id TEXT PK, split_date TEXT, description TEXT,
           currency TEXT, amount INTEGER, transaction_id TEXT, position INTEGER)
    split_accounts(split_id TEXT, account_id TEXT, position INTEGER,
                   PK(split_id, account_id))
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import ConflictError, LedgerError, StorageError
from .types import Split, Transaction

logger = logging.getLogger(__name__)


class LedgerStore:
    """SQLite store holding the ledger tables.

    Thread safety:
        Each operation opens its own connection. File-backed stores rely
        on SQLite WAL mode and the busy timeout for concurrent writers.

    Example:
        >>> store = LedgerStore("/var/lib/ledger")
        >>> store.open()
        >>> with store.transaction() as conn:
        ...     store.insert_transaction(conn, txn, poster_user_id=1)
        >>> store.close()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str | None = None,
        in_memory: bool = False,
        db_name: str = "ledger.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the database file (ignored when in_memory)
            in_memory: Use a shared in-memory database instead of a file
            db_name: Database file name inside data_dir
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
        """
        if not in_memory and not data_dir:
            raise ValueError("data_dir is required for a file-backed store")

        self.data_dir = Path(data_dir) if data_dir else None
        self.in_memory = in_memory
        self.db_name = db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._memory_uri = f"file:ledger-{uuid.uuid4().hex}?mode=memory&cache=shared"
        self._anchor: sqlite3.Connection | None = None
        self._opened = False

    @property
    def db_path(self) -> Path | None:
        """Database file path, or None for in-memory stores."""
        if self.in_memory or self.data_dir is None:
            return None
        return self.data_dir / self.db_name

    @property
    def is_open(self) -> bool:
        return self._opened

    @staticmethod
    def clear(data_dir: str) -> None:
        """Remove a previously stored data directory."""
        path = Path(data_dir)
        if not path.exists():
            return
        shutil.rmtree(path)
        logger.info("Cleared data directory", extra={"data_dir": str(path)})

    def open(self) -> None:
        """Create the database and schema if they don't exist.

        Raises:
            StorageError: If the database cannot be opened
        """
        if self._opened:
            return

        try:
            if self.in_memory:
                # The shared in-memory database lives as long as one connection does
                self._anchor = sqlite3.connect(self._memory_uri, uri=True, isolation_level=None)
            else:
                assert self.data_dir is not None
                self.data_dir.mkdir(parents=True, exist_ok=True)

            with self._connect() as conn:
                self._create_schema(conn)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open ledger database: {e}") from e

        self._opened = True
        logger.info(
            "Opened ledger database",
            extra={"path": str(self.db_path) if self.db_path else ":memory:"},
        )

    def close(self) -> None:
        """Release the database handle."""
        if self._anchor is not None:
            self._anchor.close()
            self._anchor = None
        self._opened = False
        logger.info("Closed ledger database")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection for one operation."""
        if self.in_memory:
            conn = sqlite3.connect(
                self._memory_uri,
                uri=True,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
        else:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode and not self.in_memory:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS users (
                user_id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE
            );

            CREATE TABLE IF NOT EXISTS currencies (
                name TEXT NOT NULL PRIMARY KEY,
                decimals INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS accounts (
                account_id TEXT NOT NULL PRIMARY KEY,
                name TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS account_tags (
                account_id TEXT NOT NULL REFERENCES accounts(account_id),
                tag TEXT NOT NULL,
                PRIMARY KEY (account_id, tag)
            );

            CREATE TABLE IF NOT EXISTS transactions (
                transaction_id TEXT NOT NULL PRIMARY KEY,
                postdate TEXT NOT NULL,
                brief TEXT NOT NULL DEFAULT '',
                poster_user_id INTEGER REFERENCES users(user_id),
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS splits (
                split_id TEXT NOT NULL PRIMARY KEY,
                split_date TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                currency TEXT NOT NULL REFERENCES currencies(name),
                amount INTEGER NOT NULL,
                transaction_id TEXT NOT NULL REFERENCES transactions(transaction_id),
                position INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_splits_transaction
                ON splits(transaction_id, position);

            CREATE TABLE IF NOT EXISTS split_accounts (
                split_id TEXT NOT NULL REFERENCES splits(split_id),
                account_id TEXT NOT NULL REFERENCES accounts(account_id),
                position INTEGER NOT NULL,
                PRIMARY KEY (split_id, account_id)
            );

            CREATE INDEX IF NOT EXISTS idx_split_accounts_account
                ON split_accounts(account_id);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Atomic write scope.

        Everything executed on the yielded connection becomes visible
        together on exit, or not at all if the block raises.

        Raises:
            ConflictError: On a uniqueness or foreign key violation
            StorageError: On any other SQLite failure
        """
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        except LedgerError:
            raise
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Constraint violation: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Storage failure: {e}") from e

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """Read scope seeing one consistent state of the database.

        Raises:
            StorageError: On any SQLite failure
        """
        try:
            with self._connect() as conn:
                conn.execute("BEGIN")
                try:
                    yield conn
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except LedgerError:
            raise
        except sqlite3.Error as e:
            raise StorageError(f"Storage failure: {e}") from e

    def insert_transaction(
        self,
        conn: sqlite3.Connection,
        txn: Transaction,
        poster_user_id: int | None,
    ) -> None:
        """Insert a transaction header with all its splits.

        Must be called inside transaction() so the header and splits
        become visible together. Split ids and dates must already be set.

        Raises:
            ConflictError: If the transaction id or a split id already exists
        """
        try:
            conn.execute(
                """
                INSERT INTO transactions (transaction_id, postdate, brief,
                                          poster_user_id, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (txn.id, txn.postdate, txn.description, poster_user_id, int(time.time() * 1000)),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Transaction already exists: {txn.id}", entity="transaction", key=txn.id
            ) from e

        split_rows = [
            (s.id, s.date, s.description, s.currency, s.amount, txn.id, position)
            for position, s in enumerate(txn.splits)
        ]
        link_rows = [
            (s.id, code, position)
            for s in txn.splits
            for position, code in enumerate(dict.fromkeys(s.accounts))
        ]

        try:
            conn.executemany(
                """
                INSERT INTO splits (split_id, split_date, description, currency,
                                    amount, transaction_id, position)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                split_rows,
            )
            conn.executemany(
                "INSERT INTO split_accounts (split_id, account_id, position) VALUES (?, ?, ?)",
                link_rows,
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Split constraint violation in transaction {txn.id}: {e}",
                entity="split",
                key=txn.id,
            ) from e

        logger.debug(
            "Inserted transaction rows",
            extra={"transaction_id": txn.id, "splits": len(split_rows), "links": len(link_rows)},
        )

    def delete_transaction(self, conn: sqlite3.Connection, transaction_id: str) -> bool:
        """Delete a transaction header, its splits and their account links.

        Returns:
            True if deleted, False if not found
        """
        conn.execute(
            """
            DELETE FROM split_accounts WHERE split_id IN
                (SELECT split_id FROM splits WHERE transaction_id = ?)
            """,
            (transaction_id,),
        )
        conn.execute("DELETE FROM splits WHERE transaction_id = ?", (transaction_id,))
        cursor = conn.execute(
            "DELETE FROM transactions WHERE transaction_id = ?", (transaction_id,)
        )
        return cursor.rowcount > 0

    def fetch_transaction(self, conn: sqlite3.Connection, transaction_id: str) -> Transaction | None:
        """Load a transaction with its splits using the given connection."""
        row = conn.execute(
            """
            SELECT t.transaction_id, t.postdate, t.brief, u.username
            FROM transactions t
            LEFT JOIN users u ON u.user_id = t.poster_user_id
            WHERE t.transaction_id = ?
            """,
            (transaction_id,),
        ).fetchone()
        if not row:
            return None

        split_rows = conn.execute(
            """
            SELECT split_id, split_date, description, currency, amount
            FROM splits WHERE transaction_id = ?
            ORDER BY position
            """,
            (transaction_id,),
        ).fetchall()

        accounts_by_split: dict[str, list[str]] = {}
        for link in conn.execute(
            """
            SELECT sa.split_id, sa.account_id FROM split_accounts sa
            JOIN splits s ON s.split_id = sa.split_id
            WHERE s.transaction_id = ?
            ORDER BY sa.split_id, sa.position
            """,
            (transaction_id,),
        ):
            accounts_by_split.setdefault(link["split_id"], []).append(link["account_id"])

        return Transaction(
            id=row["transaction_id"],
            postdate=row["postdate"],
            description=row["brief"],
            poster=row["username"],
            splits=[
                Split(
                    id=s["split_id"],
                    date=s["split_date"],
                    description=s["description"],
                    currency=s["currency"],
                    accounts=accounts_by_split.get(s["split_id"], []),
                    amount=s["amount"],
                )
                for s in split_rows
            ],
        )

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        """Get a committed transaction by id.

        Header and splits are read in one snapshot.

        Returns:
            Transaction or None if not found
        """
        with self.snapshot() as conn:
            return self.fetch_transaction(conn, transaction_id)

    async def get_stats(self) -> dict[str, int]:
        """Row counts per table.

        Returns:
            Dictionary with counts
        """
        tables = (
            "users",
            "currencies",
            "accounts",
            "account_tags",
            "transactions",
            "splits",
            "split_accounts",
        )
        with self.snapshot() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in tables
            }

    async def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            with self.snapshot() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except StorageError:
            logger.warning("Ledger database ping failed", exc_info=True)
            return False
