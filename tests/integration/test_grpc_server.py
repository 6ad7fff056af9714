"""
Integration tests for the gRPC server and the SDK client.

Tests cover:
- Submit, get and delete over the wire
- Typed SDK errors for validation, conflict and not-found failures
- Tag management
- NodeVersion and Health
"""

from contextlib import asynccontextmanager

import pytest

from dbledger.ledger_server import __version__
from dbledger.ledger_server.api import GrpcServer, LedgerServicer
from dbledger.ledger_server.ledger import CommitCoordinator, LedgerStore
from sdk.ledger_sdk import (
    ConflictError,
    ConnectionError,
    LedgerClient,
    NotFoundError,
    ValidationError,
)

BALANCED = [
    {"currency": "USD", "accounts": ["1000"], "amount": 100},
    {"currency": "USD", "accounts": ["2000"], "amount": -100},
]


@asynccontextmanager
async def running_server(store):
    server = GrpcServer(LedgerServicer(CommitCoordinator(store)), host="127.0.0.1", port=0)
    await server.start()
    try:
        async with LedgerClient(f"127.0.0.1:{server.port}") as client:
            yield client
    finally:
        await server.stop(grace_period=0)


class TestGrpcServer:
    """Tests for the Transactor service over gRPC."""

    @pytest.fixture
    def store(self):
        store = LedgerStore(in_memory=True)
        store.open()
        yield store
        store.close()

    @pytest.mark.asyncio
    async def test_submit_and_get(self, store):
        async with running_server(store) as client:
            result = await client.submit_transaction("T1", "2024-01-01", BALANCED, "Owner contribution")

            assert result["success"] is True
            assert result["transaction_id"] == "T1"
            assert len(result["split_ids"]) == 2

            txn = await client.get_transaction("T1")
            assert txn["description"] == "Owner contribution"
            assert [s["amount"] for s in txn["splits"]] == [100, -100]

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        async with running_server(store) as client:
            assert await client.get_transaction("nope") is None

    @pytest.mark.asyncio
    async def test_unbalanced_raises_validation_error(self, store):
        async with running_server(store) as client:
            with pytest.raises(ValidationError) as exc_info:
                await client.submit_transaction(
                    "T1",
                    "2024-01-01",
                    [{"currency": "USD", "accounts": ["1000"], "amount": 100}],
                )

            assert exc_info.value.rule == "balance"
            assert await client.get_transaction("T1") is None

    @pytest.mark.asyncio
    async def test_malformed_payload(self, store):
        async with running_server(store) as client:
            with pytest.raises(ValidationError) as exc_info:
                await client.submit_transaction("T1", "2024-01-01", ["not a split"])

            assert exc_info.value.rule == "payload"

    @pytest.mark.asyncio
    async def test_out_of_range_amount_is_invalid_argument(self, store):
        async with running_server(store) as client:
            with pytest.raises(ValidationError) as exc_info:
                await client.submit_transaction(
                    "T1",
                    "2024-01-01",
                    [
                        {"currency": "USD", "accounts": ["1000"], "amount": 2**63},
                        {"currency": "USD", "accounts": ["2000"], "amount": -(2**63)},
                    ],
                )

            assert exc_info.value.code == "INVALID_ARGUMENT"
            assert exc_info.value.rule == "split_structure"

    @pytest.mark.asyncio
    async def test_non_string_split_field_is_invalid_argument(self, store):
        async with running_server(store) as client:
            splits = [dict(BALANCED[0], description={"x": 1}), BALANCED[1]]

            with pytest.raises(ValidationError) as exc_info:
                await client.submit_transaction("T1", "2024-01-01", splits)

            assert exc_info.value.code == "INVALID_ARGUMENT"

    @pytest.mark.asyncio
    async def test_duplicate_raises_conflict(self, store):
        async with running_server(store) as client:
            await client.submit_transaction("T1", "2024-01-01", BALANCED)

            with pytest.raises(ConflictError):
                await client.submit_transaction("T1", "2024-01-01", BALANCED)

    @pytest.mark.asyncio
    async def test_delete(self, store):
        async with running_server(store) as client:
            await client.submit_transaction("T1", "2024-01-01", BALANCED)

            assert await client.delete_transaction("T1") is True
            assert await client.get_transaction("T1") is None

            with pytest.raises(NotFoundError):
                await client.delete_transaction("T1")

    @pytest.mark.asyncio
    async def test_tags(self, store):
        async with running_server(store) as client:
            await client.submit_transaction("T1", "2024-01-01", BALANCED)

            assert await client.add_tag("1000", "assets") is True
            assert await client.add_tag("1000", "assets") is False
            await client.remove_tag("1000", "assets")

            with pytest.raises(NotFoundError):
                await client.remove_tag("1000", "assets")
            with pytest.raises(NotFoundError):
                await client.add_tag("9999", "assets")

    @pytest.mark.asyncio
    async def test_node_version_and_health(self, store):
        async with running_server(store) as client:
            assert await client.node_version("ping") == __version__

            health = await client.health()
            assert health["healthy"] is True
            assert health["components"]["storage"] == "healthy"

    @pytest.mark.asyncio
    async def test_poster_recorded(self, store):
        async with running_server(store) as client:
            await client.submit_transaction("T1", "2024-01-01", BALANCED, poster="alice")

            assert (await client.get_transaction("T1"))["poster"] == "alice"


class TestLedgerClient:
    """Tests for client behaviour without a reachable server."""

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        client = LedgerClient("127.0.0.1:1")

        with pytest.raises(RuntimeError):
            await client.node_version()

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        async with LedgerClient("127.0.0.1:1", timeout=1.0) as client:
            with pytest.raises(ConnectionError) as exc_info:
                await client.node_version()

            assert exc_info.value.address == "127.0.0.1:1"
