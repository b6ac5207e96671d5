"""
core/errors.py -- Error taxonomy shared by the access layer, services and routes.

Every business or infrastructure failure the core can produce is a PizzaError
subclass. The class carries the HTTP status the route layer maps it to, a
machine-readable code, and a caller-safe message. Nothing here knows about
FastAPI; api/main.py registers the exception handlers.

Infrastructure errors (CredentialBackendError, StoreUnavailable) always carry a
generic message. The underlying exception is chained (raise ... from exc) and
logged where it is caught, never placed in the message.
"""

from __future__ import annotations

from typing import Any, Optional


class PizzaError(Exception):
    """Base class for all typed failures raised by the pizza service core."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(PizzaError):
    """Entity absent: unknown user, unresolved name reference, missing id."""

    status_code = 404
    code = "not_found"
    default_message = "not found"


class Unauthorized(PizzaError):
    """Credential mismatch or missing/invalid session token."""

    status_code = 401
    code = "unauthorized"
    default_message = "unauthorized"


class InvalidCredentials(NotFound, Unauthorized):
    """Login failure. Raised for an unknown email AND for a wrong password.

    One class and one message for both cases so a caller cannot tell whether
    the account exists. It is a NotFound (unknown user) and an Unauthorized
    (credential mismatch) at the same time.
    """

    status_code = 404
    code = "unknown_user"
    default_message = "unknown user"


class InvalidPassword(PizzaError):
    """A password bcrypt cannot take: longer than 72 bytes once UTF-8 encoded."""

    status_code = 400
    code = "invalid_password"
    default_message = "password must be at most 72 bytes"


class Forbidden(PizzaError):
    """Authenticated but not entitled to the operation."""

    status_code = 403
    code = "forbidden"
    default_message = "unauthorized"


class Conflict(PizzaError):
    """Uniqueness violation (duplicate email, duplicate franchise name)."""

    status_code = 409
    code = "conflict"
    default_message = "conflict"


class OperationFailed(PizzaError):
    """A multi-step operation aborted. Any transaction was rolled back first."""

    status_code = 500
    code = "operation_failed"
    default_message = "operation failed"


class FactoryError(OperationFailed):
    """The pizza factory rejected or could not process an order.

    report_url is whatever reference the factory returned, kept for operator
    follow-up. It may be None when the factory was unreachable.
    """

    code = "factory_failed"
    default_message = "Failed to fulfill order at factory"

    def __init__(self, message: Optional[str] = None, report_url: Optional[str] = None) -> None:
        self.report_url = report_url
        super().__init__(message, details={"report_url": report_url} if report_url else None)


class InfrastructureError(PizzaError):
    """Backing infrastructure failed. Never a user-facing business error."""

    code = "internal_error"


class CredentialBackendError(InfrastructureError):
    """The password hashing backend failed."""


class StoreUnavailable(InfrastructureError):
    """The relational store could not be reached or refused the statement."""
