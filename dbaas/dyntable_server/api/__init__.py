"""
API module for the DynTable server.

Provides the HTTP boundary (FastAPI) over the tenant catalog layer.

Invariants:
    - All namespaced operations require a caller identity
    - Errors are reported with a stable error_code

How to change safely:
    - Add routes, don't change the meaning of existing ones
"""

from .http_server import create_app, parse_scope

__all__ = [
    "create_app",
    "parse_scope",
]
