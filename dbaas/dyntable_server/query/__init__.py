"""
Query language for DynTable.

One filter language, two evaluators:
- compile_query: parameterized SQL predicate for relational backends
- resolve_query: direct evaluation against a record for flat backends
"""

from .compiler import compile_query
from .matcher import resolve_expr, resolve_query
from .operators import EXPRESSION_OPERATORS, LOGICAL_OPERATORS

__all__ = [
    "compile_query",
    "resolve_query",
    "resolve_expr",
    "EXPRESSION_OPERATORS",
    "LOGICAL_OPERATORS",
]
