"""
DynTable Server - Multi-tenant dynamic tables with a generated query surface.

This package lets each tenant declare tables at runtime and work with them
through a GraphQL API generated from the tenant's catalog:
- schema: column and table definitions, structural comparison, diffs
- query: document query language, SQL compiler and in-memory matcher
- store: per-tenant table stores (SQLite and in-memory) with migrations
- surface: GraphQL fragments per table, composed into one schema
- tenant_db: namespace -> store mapping and query execution
- api: FastAPI boundary

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │   Client    │────▶│  HTTP API   │────▶│  TenantDb   │
    └─────────────┘     └─────────────┘     └──────┬──────┘
                                                   │
                              ┌────────────────────┴───────┐
                              ▼                            ▼
                        ┌───────────┐               ┌─────────────┐
                        │  Surface  │──resolvers──▶ │ TableStore  │
                        │ (GraphQL) │               │ SQLite/mem  │
                        └───────────┘               └─────────────┘

Invariants:
    - Every physical table name is prefix_tenant_table
    - A table's catalog entry and its physical table change together
    - Schema versions only increase

How to change safely:
    - Storage backends must pass the same contract tests
    - Generated GraphQL names are part of the public API
"""

from ._version import __version__

__all__ = ["__version__"]
