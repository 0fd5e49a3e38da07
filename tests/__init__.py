"""
DynTable Test Suite.

This package contains:
- unit/: Unit tests (no storage, no event loop where avoidable)
- integration/: Integration tests (both storage backends, GraphQL, HTTP, CLI)
"""
