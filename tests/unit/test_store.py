"""
Unit tests for the SQLite ledger store.

Tests cover:
- Schema creation for file and in-memory backends
- Atomic write scopes and rollback
- Transaction insert, fetch and delete
- Error translation
"""

import os
import sqlite3
import tempfile

import pytest

from dbledger.ledger_server.errors import ConflictError, StorageError
from dbledger.ledger_server.ledger import LedgerStore, Split, Transaction


def seed_reference_data(conn):
    conn.execute("INSERT INTO users (username) VALUES ('MainUser')")
    conn.execute("INSERT INTO currencies (name, decimals) VALUES ('USD', 2)")
    conn.execute("INSERT INTO accounts (account_id, name) VALUES ('1000', 'Cash')")
    conn.execute("INSERT INTO accounts (account_id, name) VALUES ('2000', 'Equity')")


def make_txn(id="T1"):
    return Transaction(
        id=id,
        postdate="2024-01-01",
        description="Owner contribution",
        splits=[
            Split(id=f"{id}-a", date="2024-01-01", currency="USD", accounts=["1000"], amount=100),
            Split(
                id=f"{id}-b", date="2024-01-01", currency="USD", accounts=["2000", "1000"], amount=-100
            ),
        ],
    )


class TestLedgerStore:
    """Tests for LedgerStore on a file-backed database."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield os.path.join(tmpdir, "ledger")

    @pytest.fixture
    def store(self, data_dir):
        store = LedgerStore(data_dir)
        store.open()
        yield store
        store.close()

    def test_open_creates_directory_and_file(self, store, data_dir):
        assert store.is_open
        assert os.path.exists(os.path.join(data_dir, "ledger.db"))

    def test_requires_data_dir(self):
        with pytest.raises(ValueError):
            LedgerStore()

    @pytest.mark.asyncio
    async def test_fresh_store_is_empty(self, store):
        stats = await store.get_stats()

        assert set(stats) == {
            "users",
            "currencies",
            "accounts",
            "account_tags",
            "transactions",
            "splits",
            "split_accounts",
        }
        assert all(count == 0 for count in stats.values())

    @pytest.mark.asyncio
    async def test_insert_and_fetch(self, store):
        with store.transaction() as conn:
            seed_reference_data(conn)
            store.insert_transaction(conn, make_txn(), poster_user_id=1)

        txn = await store.get_transaction("T1")

        assert txn is not None
        assert txn.poster == "MainUser"
        assert txn.description == "Owner contribution"
        assert [s.id for s in txn.splits] == ["T1-a", "T1-b"]
        assert txn.splits[1].accounts == ["2000", "1000"]
        assert txn.splits[1].amount == -100

    @pytest.mark.asyncio
    async def test_get_missing_transaction(self, store):
        assert await store.get_transaction("nope") is None

    @pytest.mark.asyncio
    async def test_duplicate_transaction_id(self, store):
        with store.transaction() as conn:
            seed_reference_data(conn)
            store.insert_transaction(conn, make_txn(), poster_user_id=1)

        with pytest.raises(ConflictError) as exc_info:
            with store.transaction() as conn:
                store.insert_transaction(conn, make_txn(), poster_user_id=1)

        assert exc_info.value.entity == "transaction"
        assert exc_info.value.key == "T1"

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, store):
        """Nothing written inside a failing scope is kept."""
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                seed_reference_data(conn)
                store.insert_transaction(conn, make_txn(), poster_user_id=1)
                raise RuntimeError("abort")

        stats = await store.get_stats()
        assert stats["transactions"] == 0
        assert stats["splits"] == 0
        assert stats["accounts"] == 0

    @pytest.mark.asyncio
    async def test_unknown_currency_rejected(self, store):
        """Foreign keys stop splits that reference missing currencies."""
        with pytest.raises(ConflictError):
            with store.transaction() as conn:
                conn.execute("INSERT INTO accounts (account_id, name) VALUES ('1000', 'Cash')")
                conn.execute("INSERT INTO accounts (account_id, name) VALUES ('2000', 'Equity')")
                store.insert_transaction(conn, make_txn(), poster_user_id=None)

        assert (await store.get_stats())["transactions"] == 0

    @pytest.mark.asyncio
    async def test_delete_transaction(self, store):
        with store.transaction() as conn:
            seed_reference_data(conn)
            store.insert_transaction(conn, make_txn(), poster_user_id=1)

        with store.transaction() as conn:
            assert store.delete_transaction(conn, "T1") is True

        with store.transaction() as conn:
            assert store.delete_transaction(conn, "T1") is False

        stats = await store.get_stats()
        assert stats["transactions"] == 0
        assert stats["splits"] == 0
        assert stats["split_accounts"] == 0
        assert stats["accounts"] == 2

    def test_sqlite_error_translated(self, store):
        with pytest.raises(StorageError) as exc_info:
            with store.transaction() as conn:
                conn.execute("SELECT * FROM no_such_table")

        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    @pytest.mark.asyncio
    async def test_reopen_keeps_data(self, data_dir):
        store = LedgerStore(data_dir)
        store.open()
        with store.transaction() as conn:
            seed_reference_data(conn)
            store.insert_transaction(conn, make_txn(), poster_user_id=1)
        store.close()

        reopened = LedgerStore(data_dir)
        reopened.open()
        try:
            assert await reopened.get_transaction("T1") is not None
        finally:
            reopened.close()

    def test_snapshot_keeps_original_error(self, store):
        """A failing read body surfaces its own error even if the scope already ended."""
        with pytest.raises(RuntimeError, match="read failed"):
            with store.snapshot() as conn:
                conn.execute("COMMIT")
                raise RuntimeError("read failed")

    def test_transaction_keeps_original_error(self, store):
        with pytest.raises(RuntimeError, match="write failed"):
            with store.transaction() as conn:
                conn.execute("ROLLBACK")
                raise RuntimeError("write failed")

    @pytest.mark.asyncio
    async def test_snapshot_usable_after_failed_read(self, store):
        with pytest.raises(StorageError):
            with store.snapshot() as conn:
                conn.execute("SELECT * FROM no_such_table")

        assert await store.ping() is True

    def test_clear_removes_directory(self, store, data_dir):
        store.close()
        LedgerStore.clear(data_dir)

        assert not os.path.exists(data_dir)

    def test_clear_missing_directory(self, data_dir):
        LedgerStore.clear(data_dir)

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestInMemoryStore:
    """Tests for the shared in-memory backend."""

    @pytest.fixture
    def store(self):
        store = LedgerStore(in_memory=True)
        store.open()
        yield store
        store.close()

    def test_no_file_path(self, store):
        assert store.db_path is None

    @pytest.mark.asyncio
    async def test_connections_share_data(self, store):
        with store.transaction() as conn:
            seed_reference_data(conn)
            store.insert_transaction(conn, make_txn(), poster_user_id=1)

        assert (await store.get_transaction("T1")).id == "T1"

    @pytest.mark.asyncio
    async def test_stores_are_isolated(self, store):
        other = LedgerStore(in_memory=True)
        other.open()
        try:
            with store.transaction() as conn:
                seed_reference_data(conn)

            assert (await other.get_stats())["users"] == 0
        finally:
            other.close()
