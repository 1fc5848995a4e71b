"""
Billing exceptions.

Exception Hierarchy:
    BillingError (base for billing domain)
    ├── PreconditionFailedError - checkout/cancellation refused before any write
    ├── CapacityExceededError - program has no open slot
    ├── SignatureInvalidError - webhook signature did not verify
    └── UnknownSubscriptionReferenceError - event for a subscription we never created
    GatewayError (ExternalServiceError) - Stripe or Stream call failed
    ├── GatewayRequestError - rejected request (permanent)
    └── GatewayUnavailableError - timeout, connection error, rate limit, 5xx (retryable)
    InvalidStateTransitionError (ConflictError) - FSM transition not allowed

Gateway errors raised by an adapter mean the remote side did not complete
the operation as far as we can tell. Checkout and cancellation surface
them to the caller without having written anything locally first; the
channel provisioner catches them and only logs.

Usage:
    from billing.exceptions import GatewayUnavailableError

    try:
        StripeAdapter.cancel_subscription(sub.external_subscription_id, True)
    except GatewayError as e:
        return ServiceResult.from_exception(e)
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError


class BillingError(BaseApplicationError):
    """Base exception for billing domain failures."""

    default_error_code: str = "BILLING_ERROR"


class PreconditionFailedError(BillingError):
    """
    Raised when a request fails a business precondition.

    Error codes:
        PROGRAM_UNAVAILABLE: program missing or deactivated
        ONBOARDING_INCOMPLETE: creator cannot accept charges yet
        ALREADY_SUBSCRIBED: open subscription exists for client and program
        INVALID_SUBSCRIPTION_STATE: subscription status forbids the action
    """

    default_error_code: str = "PRECONDITION_FAILED"


class CapacityExceededError(BillingError):
    """Raised when a program has no open slot. No reservation is held."""

    default_error_code: str = "CAPACITY_EXCEEDED"


class SignatureInvalidError(BillingError):
    """
    Raised when a webhook payload fails signature verification.

    The webhook view answers 400 and writes nothing.
    """

    default_error_code: str = "SIGNATURE_INVALID"


class UnknownSubscriptionReferenceError(BillingError):
    """
    Raised when an event names a subscription with no local row.

    Not retryable: the row will not appear later. The reconciler logs the
    event and acknowledges it.
    """

    default_error_code: str = "UNKNOWN_SUBSCRIPTION"


class GatewayError(ExternalServiceError):
    """Base for failed calls to the payment or messaging gateway."""

    default_error_code: str = "GATEWAY_ERROR"


class GatewayRequestError(GatewayError):
    """
    The gateway rejected the request.

    Permanent: repeating it unchanged will fail again. Usually a
    configuration problem (missing price id, deleted connected account).
    """

    default_error_code: str = "GATEWAY_REQUEST_FAILED"


class GatewayUnavailableError(GatewayError):
    """
    The gateway could not be reached or answered with a transient error.

    For Stripe the remote operation may still have happened; the adapter
    sends idempotency keys so a retry returns the original result.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a planned FSM transition is not allowed from the current state.

    The pure transition planner only emits legal transitions, so this
    signals a bug and rolls back the enclosing webhook transaction.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
