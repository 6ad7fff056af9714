"""
Unit tests for the entity registry.

Tests cover:
- Resolve-or-create of users, currencies and accounts
- Existing records win over later requests
- Recovery when another writer creates the key first
- Account tags
"""

import tempfile

import pytest

from dbledger.ledger_server.errors import NotFoundError
from dbledger.ledger_server.ledger import EntityRegistry, LedgerStore


class TestEntityRegistry:
    """Tests for EntityRegistry."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        store = LedgerStore(data_dir, wal_mode=False)
        store.open()
        yield store
        store.close()

    @pytest.fixture
    def registry(self, store):
        return EntityRegistry(store)

    @pytest.mark.asyncio
    async def test_create_user_once(self, registry, store):
        first = await registry.resolve_or_create_user("alice")
        second = await registry.resolve_or_create_user("alice")

        assert first == second
        assert (await store.get_stats())["users"] == 1

    @pytest.mark.asyncio
    async def test_distinct_users_get_distinct_ids(self, registry):
        alice = await registry.resolve_or_create_user("alice")
        bob = await registry.resolve_or_create_user("bob")

        assert alice.user_id != bob.user_id
        assert (await registry.get_user("bob")) == bob

    @pytest.mark.asyncio
    async def test_currency_keeps_first_decimals(self, registry):
        """A later request with different decimals doesn't change the record."""
        await registry.resolve_or_create_currency("BTC", 8)
        again = await registry.resolve_or_create_currency("BTC", 2)

        assert again.decimals == 8
        assert (await registry.get_currency("BTC")).decimals == 8

    @pytest.mark.asyncio
    async def test_account_name_defaults_to_code(self, registry):
        account = await registry.resolve_or_create_account("1000")

        assert account.name == "1000"
        assert account.tags == ()

    @pytest.mark.asyncio
    async def test_account_keeps_first_name(self, registry):
        await registry.resolve_or_create_account("1000", "Cash")
        again = await registry.resolve_or_create_account("1000", "Bank")

        assert again.name == "Cash"

    @pytest.mark.asyncio
    async def test_get_missing(self, registry):
        assert await registry.get_user("nobody") is None
        assert await registry.get_currency("XXX") is None
        assert await registry.get_account("9999") is None

    @pytest.mark.asyncio
    async def test_resolve_reports_creation(self, registry, store):
        with store.transaction() as conn:
            _, created = registry.resolve_currency(conn, "USD", 2)
            _, created_again = registry.resolve_currency(conn, "USD", 2)

        assert created is True
        assert created_again is False

    @pytest.mark.asyncio
    async def test_insert_race_rereads_existing(self, registry, store, monkeypatch):
        """When the lookup misses but the insert collides, the stored row is returned."""
        await registry.resolve_or_create_account("1000", "Cash")

        original = EntityRegistry._find_account
        calls = {"n": 0}

        def stale_first_lookup(self, conn, code):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return original(self, conn, code)

        monkeypatch.setattr(EntityRegistry, "_find_account", stale_first_lookup)

        with store.transaction() as conn:
            account, created = registry.resolve_account(conn, "1000", "Other")

        assert created is False
        assert account.name == "Cash"
        assert (await store.get_stats())["accounts"] == 1

    @pytest.mark.asyncio
    async def test_user_insert_race_rereads_existing(self, registry, store, monkeypatch):
        existing = await registry.resolve_or_create_user("alice")

        original = EntityRegistry._find_user
        calls = {"n": 0}

        def stale_first_lookup(self, conn, username):
            calls["n"] += 1
            return None if calls["n"] == 1 else original(self, conn, username)

        monkeypatch.setattr(EntityRegistry, "_find_user", stale_first_lookup)

        with store.transaction() as conn:
            user, created = registry.resolve_user(conn, "alice")

        assert created is False
        assert user == existing

    @pytest.mark.asyncio
    async def test_add_tag(self, registry):
        await registry.resolve_or_create_account("1000")

        assert await registry.add_tag("1000", "assets") is True
        assert await registry.add_tag("1000", "assets") is False
        await registry.add_tag("1000", "current")

        account = await registry.get_account("1000")
        assert account.tags == ("assets", "current")

    @pytest.mark.asyncio
    async def test_add_tag_unknown_account(self, registry):
        with pytest.raises(NotFoundError):
            await registry.add_tag("9999", "assets")

    @pytest.mark.asyncio
    async def test_remove_tag(self, registry):
        await registry.resolve_or_create_account("1000")
        await registry.add_tag("1000", "assets")

        await registry.remove_tag("1000", "assets")

        assert (await registry.get_account("1000")).tags == ()

    @pytest.mark.asyncio
    async def test_remove_missing_tag(self, registry):
        await registry.resolve_or_create_account("1000")

        with pytest.raises(NotFoundError) as exc_info:
            await registry.remove_tag("1000", "assets")

        assert exc_info.value.entity == "tag"

    @pytest.mark.asyncio
    async def test_remove_tag_unknown_account(self, registry):
        with pytest.raises(NotFoundError) as exc_info:
            await registry.remove_tag("9999", "assets")

        assert exc_info.value.entity == "account"
