"""
Application exception base classes.

Exception Hierarchy:
    BaseApplicationError
    ├── NotFoundError - record missing or not visible to the caller
    ├── ConflictError - request clashes with current state
    └── ExternalServiceError - Stripe / Stream call failed

Domain packages subclass these (see billing.exceptions) and services turn
them into ServiceResult failures with ServiceResult.from_exception().
Request validation and authentication errors stay with DRF.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception carrying a stable error code.

    Attributes:
        message: Human-readable description
        error_code: Code the API maps to an HTTP status
        details: Identifiers and provider context, safe to log
        is_retryable: Whether repeating the same call may succeed
    """

    default_error_code: str = "APPLICATION_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def log_context(self) -> dict[str, Any]:
        """Fields for a logger ``extra=`` dict."""
        return {"error_code": self.error_code, **self.details}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    A call to a third-party service failed.

    ``service_name`` ("stripe", "stream-chat") is copied into details so it
    shows up in logs.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        service_name: str | None = None,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.service_name = service_name
        if service_name:
            self.details.setdefault("service", service_name)
