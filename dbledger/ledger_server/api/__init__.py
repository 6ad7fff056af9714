"""
API module for the ledger server.

This module provides the external interfaces:
- gRPC server (primary API)
- HTTP server (optional REST API)

Both servers share the same LedgerServicer.

Invariants:
    - Writes are committed before the response is sent
    - Failures are returned as structured error responses

How to change safely:
    - gRPC changes must be backward compatible
    - Add new RPC methods, don't modify existing ones
    - HTTP endpoints should match gRPC semantics
"""

from .grpc_server import SERVICE_NAME, GrpcServer, LedgerServicer
from .http_server import HttpServer, create_http_app

__all__ = [
    "SERVICE_NAME",
    "GrpcServer",
    "LedgerServicer",
    "HttpServer",
    "create_http_app",
]
