"""
gRPC client for the ledger service.

Messages are JSON documents sent to the ``ledger.Transactor`` service
through grpc.aio generic unary calls.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import grpc
from grpc import aio as grpc_aio

from .errors import ConnectionError, error_from_response

logger = logging.getLogger(__name__)

SERVICE_NAME = "ledger.Transactor"


def _encode(message: dict[str, Any]) -> bytes:
    return json.dumps(message).encode("utf-8")


def _decode(data: bytes) -> dict[str, Any]:
    return json.loads(data.decode("utf-8")) if data else {}


class LedgerClient:
    """Client for connecting to a ledger server.

    Example:
        >>> async with LedgerClient("localhost:50051") as ledger:
        ...     version = await ledger.node_version()
    """

    def __init__(self, address: str = "localhost:50051", timeout: float = 10.0) -> None:
        """Initialize the client.

        Args:
            address: Server address (host:port)
            timeout: Per-call deadline in seconds
        """
        self.address = address
        self.timeout = timeout
        self._channel: grpc_aio.Channel | None = None

    async def connect(self) -> None:
        """Open the channel to the server."""
        if self._channel is not None:
            return
        self._channel = grpc_aio.insecure_channel(self.address)
        logger.debug(f"Connected to ledger server at {self.address}")

    async def close(self) -> None:
        """Close the connection."""
        if self._channel:
            await self._channel.close()
            self._channel = None
            logger.debug("Disconnected from ledger server")

    async def __aenter__(self) -> LedgerClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _call(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        if self._channel is None:
            raise RuntimeError("Not connected. Call connect() first.")

        rpc = self._channel.unary_unary(
            f"/{SERVICE_NAME}/{method}",
            request_serializer=_encode,
            response_deserializer=_decode,
        )
        try:
            return await rpc(request, timeout=self.timeout)
        except grpc.RpcError as e:
            raise ConnectionError(f"{method} failed: {e}", address=self.address) from e

    async def _call_checked(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        response = await self._call(method, request)
        if "error_code" in response:
            raise error_from_response(response)
        return response

    async def submit_transaction(
        self,
        transaction_id: str,
        postdate: str,
        splits: list[dict[str, Any]],
        description: str = "",
        poster: str | None = None,
    ) -> dict[str, Any]:
        """Submit a transaction.

        Args:
            transaction_id: Unique transaction identifier
            postdate: Posting date (e.g. "2024-01-01")
            splits: Splits as dicts with currency, accounts and amount
            description: Free text
            poster: Username of the poster (server default when omitted)

        Returns:
            Commit result with transaction_id and split_ids

        Raises:
            ValidationError: If the transaction is malformed or unbalanced
            ConflictError: If the transaction id already exists
        """
        request: dict[str, Any] = {
            "id": transaction_id,
            "postdate": postdate,
            "description": description,
            "splits": splits,
        }
        if poster:
            request["poster"] = poster
        return await self._call_checked("SubmitTransaction", request)

    async def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        response = await self._call_checked("DeleteTransaction", {"id": transaction_id})
        return bool(response.get("deleted"))

    async def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        """Get a committed transaction, or None if absent."""
        response = await self._call_checked("GetTransaction", {"id": transaction_id})
        return response.get("transaction") if response.get("found") else None

    async def add_tag(self, account: str, tag: str) -> bool:
        response = await self._call_checked("AddTag", {"account": account, "tag": tag})
        return bool(response.get("added"))

    async def remove_tag(self, account: str, tag: str) -> None:
        await self._call_checked("RemoveTag", {"account": account, "tag": tag})

    async def node_version(self, message: str = "") -> str:
        response = await self._call("NodeVersion", {"message": message})
        return response["version"]

    async def health(self) -> dict[str, Any]:
        return await self._call("Health", {})
