"""
HTTP server implementation for the ledger.

This module provides an optional REST API that mirrors the gRPC interface.
It's useful for:
- Manual testing and debugging
- Clients that can't use gRPC

Invariants:
    - HTTP endpoints have same semantics as gRPC
    - JSON request/response format
    - Error codes map to HTTP status codes

How to change safely:
    - Keep endpoints in sync with the gRPC service
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from .grpc_server import LedgerServicer

logger = logging.getLogger(__name__)

STATUS_BY_ERROR_CODE = {
    "INVALID_ARGUMENT": 400,
    "NOT_FOUND": 404,
    "ALREADY_EXISTS": 409,
    "UNAVAILABLE": 503,
    "INTERNAL": 500,
}


def _respond(result: dict[str, Any]) -> web.Response:
    status = STATUS_BY_ERROR_CODE.get(result.get("error_code", ""), 200)
    return web.json_response(result, status=status)


def create_http_app(
    servicer: LedgerServicer,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for the ledger.

    Args:
        servicer: LedgerServicer instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    app.router.add_post("/v1/transactions", lambda r: handle_submit(r, servicer))
    app.router.add_get("/v1/transactions/{transaction_id}", lambda r: handle_get(r, servicer))
    app.router.add_delete(
        "/v1/transactions/{transaction_id}", lambda r: handle_delete(r, servicer)
    )
    app.router.add_put("/v1/accounts/{account}/tags/{tag}", lambda r: handle_add_tag(r, servicer))
    app.router.add_delete(
        "/v1/accounts/{account}/tags/{tag}", lambda r: handle_remove_tag(r, servicer)
    )
    app.router.add_get("/v1/version", lambda r: handle_version(r, servicer))
    app.router.add_get("/v1/health", lambda r: handle_health(r, servicer))

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.insert(0, error_middleware)

    return app


async def handle_submit(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle POST /v1/transactions - Submit a transaction."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body", "error_code": "INVALID_ARGUMENT"}),
            content_type="application/json",
        )

    return _respond(await servicer.submit_transaction(body))


async def handle_get(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle GET /v1/transactions/{transaction_id} - Get a transaction."""
    result = await servicer.get_transaction({"id": request.match_info["transaction_id"]})

    if "error_code" not in result and not result.get("found"):
        return web.json_response(result, status=404)
    return _respond(result)


async def handle_delete(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle DELETE /v1/transactions/{transaction_id} - Delete a transaction."""
    return _respond(
        await servicer.delete_transaction({"id": request.match_info["transaction_id"]})
    )


async def handle_add_tag(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle PUT /v1/accounts/{account}/tags/{tag} - Tag an account."""
    return _respond(
        await servicer.add_tag(
            {"account": request.match_info["account"], "tag": request.match_info["tag"]}
        )
    )


async def handle_remove_tag(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle DELETE /v1/accounts/{account}/tags/{tag} - Untag an account."""
    return _respond(
        await servicer.remove_tag(
            {"account": request.match_info["account"], "tag": request.match_info["tag"]}
        )
    )


async def handle_version(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle GET /v1/version - Node version."""
    result = await servicer.node_version({"message": request.query.get("message", "")})
    return web.json_response(result)


async def handle_health(request: web.Request, servicer: LedgerServicer) -> web.Response:
    """Handle GET /v1/health - Health check."""
    result = await servicer.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)


class HttpServer:
    """Runs the HTTP mirror on an aiohttp AppRunner.

    Example:
        >>> http = HttpServer(servicer, HttpConfig(enabled=True))
        >>> await http.start()
        >>> await http.stop()
    """

    def __init__(self, servicer: LedgerServicer, config: HttpConfig | None = None) -> None:
        self.servicer = servicer
        self.config = config or HttpConfig()
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        app = create_http_app(self.servicer, self.config)
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()

        logger.info(f"HTTP server running on http://{self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        if self._runner is None:
            return
        logger.info("Stopping HTTP server")
        await self._runner.cleanup()
        self._runner = None
