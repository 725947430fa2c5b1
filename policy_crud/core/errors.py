"""Error Hierarchy — typed, categorized exceptions for every CRUD failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Client errors (400-level) are recoverable; configuration/store errors (500-level) are critical
    - to_response() produces the REST envelope consumed by api/error_handlers.py
    - Messages never carry record data: forbidden errors name the path, not values
    - NotFoundError is the single signal for "missing" and "not visible"

Design Decisions:
    - Single hierarchy with CrudError base: one FastAPI handler catches all (ADR: uniform error shape)
    - CrudValidationError, not ValidationError: avoids shadowing pydantic's class at call sites
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    RESOURCE_NOT_FOUND = "resource_not_found"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entity: str | None = None
    operation: str | None = None
    path: str | None = None
    debug_info: dict[str, Any] | None = None


class CrudError(Exception):
    """Base exception for all policy-crud errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "entity": self.context.entity,
                    "operation": self.context.operation,
                    "path": self.context.path,
                },
            }
        }


# ─── Client Errors (400-level) ──────────────────────────────────

class CrudValidationError(CrudError):
    """Malformed descriptor, filter, sort or mutation payload."""
    def __init__(self, message: str, path: str | None = None, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.path = ctx.path or path
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, ctx, 400,
        )
        self.path = path


class ForbiddenError(CrudError):
    """Relation path outside the join allowlist."""
    def __init__(self, path: str, kind: str = "Join", context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.path = path
        super().__init__(
            f"{kind} relation not allowed: {path}",
            "FORBIDDEN", ErrorCategory.FORBIDDEN,
            ErrorSeverity.WARNING, ctx, 403,
        )
        self.path = path


class NotFoundError(CrudError):
    """No visible record for the given key."""
    def __init__(
        self, resource_type: str, resource_id: Any, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# ─── Server Errors (500-level) ──────────────────────────────────

class ConfigurationError(CrudError):
    """Service or policy misconfigured. Raised before any request is served."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONFIGURATION_ERROR", ErrorCategory.CONFIGURATION,
            ErrorSeverity.CRITICAL, context, 500,
        )


class InternalError(CrudError):
    """Store operation failed. Message stays opaque to the caller."""
    def __init__(self, operation: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.operation = ctx.operation or operation
        super().__init__(
            f"Store {operation} failed",
            "INTERNAL_ERROR", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, ctx, 500,
        )
        self.operation = operation
