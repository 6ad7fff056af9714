"""
Ledger Server - double-entry ledger service.

This package implements a service that records accounting transactions:
- Transactions made of balanced splits across accounts and currencies
- Users, currencies and accounts created lazily on first reference
- Account tags
- SQLite as the storage engine (file-backed or in-memory)

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│  gRPC/HTTP  │────▶│     Commit      │
    │   (SDK)     │     │   Server    │     │   Coordinator   │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                              ┌──────────────────────┼──────────────┐
                              ▼                      ▼              ▼
                        ┌───────────┐         ┌───────────┐   ┌──────────┐
                        │ Validator │         │  Entity   │──▶│  SQLite  │
                        └───────────┘         │ Registry  │   │  store   │
                                              └───────────┘   └──────────┘

Invariants:
    - A transaction and all of its splits are visible atomically
    - Natural keys (username, currency, account code, transaction id) are unique
    - Splits balance to zero per currency
    - Reference data is append-only

How to change safely:
    - Keep every write of a commit inside one storage transaction
    - Add new RPCs rather than changing existing ones

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
