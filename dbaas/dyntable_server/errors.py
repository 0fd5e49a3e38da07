"""
Error types for the DynTable server.

Every failure raised by the core belongs to one of five kinds:
- MalformedError: bad query, sort token, identifier or type declaration
- NotFoundError: a schema or record was required but absent
- NotSupportedError: the operation is unavailable on the active backend
- ConflictError: a uniqueness invariant does not hold
- InternalError: unexpected storage failure

Invariants:
    - All errors inherit from DynTableError
    - code is stable and safe to expose to clients
    - status is only consumed by the HTTP boundary

How to change safely:
    - Add new kinds as new subclasses, never repurpose a code
    - Keep messages free of storage internals for InternalError
"""

from __future__ import annotations

from typing import Any


class DynTableError(Exception):
    """Base exception for all DynTable errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    status = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DYNTABLE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error body used by the HTTP boundary."""
        result: dict[str, Any] = {"error": self.message, "error_code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class MalformedError(DynTableError):
    """Input could not be understood.

    Raised when:
    - A query uses an unknown operator or an invalid field name
    - A sort token is not a bare identifier
    - A type declaration does not parse
    """

    status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="MALFORMED", details=details)


class NotFoundError(DynTableError):
    """A table schema or record does not exist."""

    status = 404

    def __init__(
        self,
        message: str,
        table: str | None = None,
        record_id: str | None = None,
    ) -> None:
        details = {k: v for k, v in (("table", table), ("id", record_id)) if v is not None}
        super().__init__(message, code="NOT_FOUND", details=details)
        self.table = table
        self.record_id = record_id


class NotSupportedError(DynTableError):
    """Operation is unavailable on the active backend or evaluator."""

    status = 405

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="NOT_SUPPORTED", details=details)


class ConflictError(DynTableError):
    """A uniqueness invariant was violated.

    Raised when:
    - Creating a table whose name already exists
    - A lookup assumed to be unique matched more than one row
    """

    status = 409

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFLICT", details=details)


class InternalError(DynTableError):
    """Unexpected storage failure. The message is safe to expose."""

    status = 500

    def __init__(self, message: str = "Internal storage error") -> None:
        super().__init__(message, code="INTERNAL")


class UnauthorizedError(DynTableError):
    """Request carries no caller identity (HTTP boundary only)."""

    status = 401

    def __init__(self, message: str) -> None:
        super().__init__(message, code="UNAUTHORIZED")
