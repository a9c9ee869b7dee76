"""Domain error taxonomy.

Services raise these; the handlers registered in ``app.main`` render them
into the ``{"ok": false, "error": {...}}`` envelope with the matching HTTP
status.
"""

from typing import Optional


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    code = "ERROR"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(DomainError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(DomainError):
    """Authorization denied. Always carries the reason."""

    code = "FORBIDDEN"
    status_code = 403
    default_message = "Not permitted"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid request"


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class Conflict(DomainError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Resource already exists"


class DependencyExists(DomainError):
    code = "DEPENDENCY_EXISTS"
    status_code = 409
    default_message = "Resource still has dependent records"


class IllegalTransition(DomainError):
    code = "ILLEGAL_TRANSITION"
    status_code = 403
    default_message = "Status transition not allowed"


class TokenNotFound(DomainError):
    code = "TOKEN_NOT_FOUND"
    status_code = 404
    default_message = "Invalid or unknown token"


class TokenExpired(DomainError):
    code = "TOKEN_EXPIRED"
    status_code = 410
    default_message = "This link has expired"


class TokenAlreadyUsed(DomainError):
    code = "TOKEN_ALREADY_USED"
    status_code = 409
    default_message = "This link has already been used"


class DeliveryFailed(DomainError):
    code = "DELIVERY_FAILED"
    status_code = 502
    default_message = "Notification delivery failed"
