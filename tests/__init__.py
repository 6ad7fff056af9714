"""
Ledger Test Suite.

This package contains:
- unit/: Unit tests (validation, types, config, store, registry)
- integration/: Integration tests (commit pipeline, gRPC, HTTP, server lifecycle)
"""
