"""
gRPC server implementation for the ledger.

This module provides the gRPC API server that handles all client requests.
Messages are JSON documents carried over grpc.aio through generic method
handlers, so no generated stubs are needed on either side.

Service ``ledger.Transactor``:
    SubmitTransaction, DeleteTransaction, GetTransaction,
    AddTag, RemoveTag, NodeVersion, Health

Invariants:
    - Every response is a JSON object; failures carry error and error_code
    - Typed ledger errors map to stable error codes
    - Unexpected errors are logged with traceback and reported as INTERNAL

How to change safely:
    - Add new RPCs without modifying existing ones
    - Use optional fields for backward compatibility
    - Keep the HTTP mirror and SDK in step with new RPCs
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import grpc
from grpc import aio as grpc_aio

from .. import __version__
from ..errors import LedgerError
from ..ledger import CommitCoordinator, Transaction

logger = logging.getLogger(__name__)

SERVICE_NAME = "ledger.Transactor"

METHODS = (
    "SubmitTransaction",
    "DeleteTransaction",
    "GetTransaction",
    "AddTag",
    "RemoveTag",
    "NodeVersion",
    "Health",
)


def encode_message(message: dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def decode_message(data: bytes) -> dict[str, Any]:
    if not data:
        return {}
    return json.loads(data.decode("utf-8"))


def error_response(error: LedgerError) -> dict[str, Any]:
    """Build the structured failure body for a ledger error."""
    return {"success": False, **error.to_dict()}


class LedgerServicer:
    """Service implementation for the ledger.

    Each method takes the decoded request message and returns the response
    message. The servicer is transport-agnostic; both the gRPC and HTTP
    servers call into it.

    Attributes:
        coordinator: Commit coordinator
    """

    def __init__(self, coordinator: CommitCoordinator) -> None:
        """Initialize the servicer.

        Args:
            coordinator: CommitCoordinator instance
        """
        self.coordinator = coordinator

    async def submit_transaction(self, request: dict[str, Any]) -> dict[str, Any]:
        """Validate and commit a transaction."""
        try:
            txn = Transaction.from_dict(request)
        except (TypeError, ValueError) as e:
            return {
                "success": False,
                "error": f"Malformed transaction: {e}",
                "error_code": "INVALID_ARGUMENT",
                "details": {"rule": "payload"},
            }

        try:
            result = await self.coordinator.commit(txn)
        except LedgerError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"SubmitTransaction failed: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_code": "INTERNAL"}

        return {"success": True, **result.to_dict()}

    async def delete_transaction(self, request: dict[str, Any]) -> dict[str, Any]:
        """Delete a transaction by id."""
        transaction_id = request.get("id")
        if not transaction_id:
            return {"success": False, "error": "id is required", "error_code": "INVALID_ARGUMENT"}

        try:
            deleted = await self.coordinator.delete(transaction_id)
        except LedgerError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"DeleteTransaction failed: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_code": "INTERNAL"}

        return {"success": True, "deleted": deleted}

    async def get_transaction(self, request: dict[str, Any]) -> dict[str, Any]:
        """Get a committed transaction by id."""
        transaction_id = request.get("id")
        if not transaction_id:
            return {"found": False, "error": "id is required", "error_code": "INVALID_ARGUMENT"}

        try:
            txn = await self.coordinator.get_transaction(transaction_id)
        except LedgerError as e:
            return {"found": False, **e.to_dict()}
        except Exception as e:
            logger.error(f"GetTransaction failed: {e}", exc_info=True)
            return {"found": False, "error": str(e), "error_code": "INTERNAL"}

        if txn is None:
            return {"found": False}
        return {"found": True, "transaction": txn.to_dict()}

    async def add_tag(self, request: dict[str, Any]) -> dict[str, Any]:
        """Attach a tag to an account."""
        account, tag = request.get("account"), request.get("tag")
        if not account or not tag:
            return {
                "success": False,
                "error": "account and tag are required",
                "error_code": "INVALID_ARGUMENT",
            }

        try:
            added = await self.coordinator.add_tag(account, tag)
        except LedgerError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"AddTag failed: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_code": "INTERNAL"}

        return {"success": True, "added": added}

    async def remove_tag(self, request: dict[str, Any]) -> dict[str, Any]:
        """Detach a tag from an account."""
        account, tag = request.get("account"), request.get("tag")
        if not account or not tag:
            return {
                "success": False,
                "error": "account and tag are required",
                "error_code": "INVALID_ARGUMENT",
            }

        try:
            await self.coordinator.remove_tag(account, tag)
        except LedgerError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"RemoveTag failed: {e}", exc_info=True)
            return {"success": False, "error": str(e), "error_code": "INTERNAL"}

        return {"success": True}

    async def node_version(self, request: dict[str, Any]) -> dict[str, Any]:
        """Liveness and version probe."""
        return {"message": request.get("message", ""), "version": __version__}

    async def health(self, request: dict[str, Any] | None = None) -> dict[str, Any]:
        """Get server health status."""
        storage_ok = await self.coordinator.store.ping()
        components = {"storage": "healthy" if storage_ok else "unhealthy"}

        return {
            "healthy": all(v == "healthy" for v in components.values()),
            "version": __version__,
            "components": components,
        }

    def handlers(self) -> dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]]:
        """RPC method name to servicer coroutine."""
        return {
            "SubmitTransaction": self.submit_transaction,
            "DeleteTransaction": self.delete_transaction,
            "GetTransaction": self.get_transaction,
            "AddTag": self.add_tag,
            "RemoveTag": self.remove_tag,
            "NodeVersion": self.node_version,
            "Health": self.health,
        }


def _unary_handler(
    method: str,
    call: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
) -> grpc.RpcMethodHandler:
    async def handle(request: dict[str, Any], context: grpc_aio.ServicerContext) -> dict[str, Any]:
        if not isinstance(request, dict):
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "request must be a JSON object")
        logger.debug(f"{method} called", extra={"peer": context.peer()})
        return await call(request)

    return grpc.unary_unary_rpc_method_handler(
        handle,
        request_deserializer=decode_message,
        response_serializer=encode_message,
    )


class GrpcServer:
    """gRPC server wrapper for the ledger.

    This class manages the gRPC server lifecycle including:
    - Server initialization
    - Service registration
    - Graceful shutdown

    Example:
        >>> server = GrpcServer(servicer, port=50051)
        >>> await server.start()
        >>> # Server is now running
        >>> await server.stop()
    """

    def __init__(
        self,
        servicer: LedgerServicer,
        host: str = "0.0.0.0",
        port: int = 50051,
        max_workers: int = 10,
        max_message_size: int = 4 * 1024 * 1024,
    ) -> None:
        """Initialize the gRPC server.

        Args:
            servicer: LedgerServicer instance
            host: Host to bind to
            port: Port to listen on (0 picks a free port)
            max_workers: Maximum concurrent RPCs
            max_message_size: Maximum message size in bytes
        """
        self.servicer = servicer
        self.host = host
        self.port = port
        self.max_workers = max_workers
        self.max_message_size = max_message_size
        self._server: grpc_aio.Server | None = None
        self._running = False

    async def start(self) -> None:
        """Start the gRPC server."""
        if self._running:
            logger.warning("Server already running")
            return

        self._server = grpc_aio.server(
            maximum_concurrent_rpcs=self.max_workers,
            options=[
                ("grpc.max_send_message_length", self.max_message_size),
                ("grpc.max_receive_message_length", self.max_message_size),
            ],
        )

        method_handlers = {
            name: _unary_handler(name, call) for name, call in self.servicer.handlers().items()
        }
        self._server.add_generic_rpc_handlers(
            (grpc.method_handlers_generic_handler(SERVICE_NAME, method_handlers),)
        )

        bound_port = self._server.add_insecure_port(f"{self.host}:{self.port}")
        if bound_port == 0:
            raise RuntimeError(f"Failed to bind gRPC server to {self.host}:{self.port}")
        self.port = bound_port

        await self._server.start()
        self._running = True

        logger.info(
            f"gRPC server listening on {self.host}:{self.port}",
            extra={
                "host": self.host,
                "port": self.port,
                "max_workers": self.max_workers,
            },
        )

    async def stop(self, grace_period: float = 5.0) -> None:
        """Stop the gRPC server gracefully.

        Args:
            grace_period: Time to wait for pending RPCs to complete
        """
        if not self._running:
            return

        logger.info("Stopping gRPC server")
        self._running = False

        if self._server:
            await self._server.stop(grace_period)
            self._server = None

    async def wait_for_termination(self) -> None:
        if self._server:
            await self._server.wait_for_termination()

    @property
    def is_running(self) -> bool:
        """Whether the server is running."""
        return self._running
