"""
Domain error taxonomy.

Every service raises one of these; the FastAPI handler in app.main renders
them as JSON. Nothing here is retried automatically.
"""
from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[list[Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Malformed or incomplete input. The caller must fix the input."""
    code = "VALIDATION_ERROR"
    http_status = 422


class TemplateMismatchError(ValidationError):
    """Template cannot score responses (e.g. zero total weight)."""
    code = "TEMPLATE_MISMATCH"


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(DomainError):
    """Duplicate or already-processed operation."""
    code = "CONFLICT"
    http_status = 409


class ConsistencyError(DomainError):
    """An atomic multi-write unit failed and was rolled back."""
    code = "CONSISTENCY_ERROR"
    http_status = 500

    def to_dict(self) -> dict:
        # partial state is never described to the caller
        return {"error": self.code, "detail": "Operation failed and was rolled back"}


class PermissionDeniedError(DomainError):
    code = "FORBIDDEN"
    http_status = 403
