"""
Service layer base classes.

Services are stateless classes of classmethods. They return ServiceResult
for outcomes the caller is expected to handle (program full, already
subscribed, gateway timeout) and raise for everything else.

A ServiceResult failure carries:
    - error: message safe to show the user
    - error_code: stable code the API maps to an HTTP status
    - retryable: the same request may succeed later (gateway outages)

Usage:
    class CheckoutService(BaseService):
        @classmethod
        def initiate_checkout(cls, client, program_id) -> ServiceResult[CheckoutResult]:
            reservation = ProgramRegistry.reserve_slot(program_id)
            if not reservation.success:
                return ServiceResult.failure(
                    reservation.error, error_code=reservation.error_code
                )
            try:
                session = StripeAdapter.create_checkout_session(params)
            except GatewayError as e:
                return ServiceResult.from_exception(e)
            return ServiceResult.success(CheckoutResult(...))
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

    from core.exceptions import BaseApplicationError

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """Outcome of a service call: data on success, error details on failure."""

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        retryable: bool = False,
    ) -> ServiceResult[T]:
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            retryable=retryable,
        )

    @classmethod
    def from_exception(cls, exc: BaseApplicationError) -> ServiceResult[T]:
        """
        Turn a caught application error into a failed result.

        The error code and retryability come from the exception, so a
        Stripe timeout surfaces as GATEWAY_UNAVAILABLE with retryable=True.
        """
        return cls.failure(
            exc.message,
            error_code=exc.error_code,
            retryable=exc.is_retryable,
        )

    def to_response(self) -> dict[str, Any]:
        """Body for an error response; successful results are serialized by the view."""
        response: dict[str, Any] = {"success": self.success}
        if self.success:
            return response
        response["error"] = self.error
        if self.error_code:
            response["error_code"] = self.error_code
        if self.retryable:
            response["retryable"] = True
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """Base for stateless services: a class-named logger and a transaction helper."""

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """Run the block in one database transaction (transaction.atomic)."""
        with transaction.atomic():
            yield
