"""Audit error taxonomy.

Two failure policies live here and must stay separate:

- ``AuditContextUnavailableError``: degrade-open. Raised while attaching
  request context to a connection; always caught at the middleware
  boundary so the request proceeds unaudited-but-functional.
- ``AuditWriteError``: degrade-closed. Raised when an audit record cannot
  be written; never caught by audit code, so the enclosing transaction and
  the business mutation with it roll back.
"""

from __future__ import annotations

from typing import Any


class AuditError(Exception):
    """Base class for audit subsystem errors carrying an HTTP status."""

    code = "AUDIT_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class AuditValidationError(AuditError):
    code = "AUDIT_VALIDATION_ERROR"
    status_code = 400


class AuditNotFoundError(AuditError):
    code = "AUDIT_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Audit log not found") -> None:
        super().__init__(message)


class AuditImmutabilityError(AuditError):
    code = "AUDIT_IMMUTABLE"
    status_code = 403

    def __init__(self, message: str = "Audit logs are immutable and cannot be modified") -> None:
        super().__init__(message)


class AuditContextUnavailableError(AuditError):
    """Context could not be attached to a connection (degrade-open)."""

    code = "AUDIT_CONTEXT_UNAVAILABLE"
    status_code = 503


class AuditWriteError(AuditError):
    """An audit record could not be written (degrade-closed)."""

    code = "AUDIT_WRITE_FAILED"
    status_code = 500

    def __init__(self, message: str, *, table: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.table = table
        self.operation = operation
