from billing.state_machines.states import (
    CANCELABLE_STATUSES,
    ENTITLED_STATUSES,
    OPEN_STATUSES,
    OnboardingStatus,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "CANCELABLE_STATUSES",
    "ENTITLED_STATUSES",
    "OPEN_STATUSES",
    "OnboardingStatus",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
