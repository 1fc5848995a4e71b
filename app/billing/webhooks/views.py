"""
Webhook endpoint view for Stripe.

The body is read unparsed because the signature covers the exact bytes
Stripe sent. Processing is synchronous: 200 means the ledger change is
committed, so Stripe stops redelivering only once nothing can be lost.

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.exceptions import SignatureInvalidError
from billing.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and apply Stripe webhook events.

    Returns:
        HttpResponse with status:
        - 200: Event applied, duplicate, or deliberately ignored
        - 400: Missing or invalid signature (nothing written)
        - 500: Handler failed; the event is stored as failed and Stripe
          will redeliver
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        outcome = WebhookReconciler.handle(payload, signature)
    except SignatureInvalidError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra=e.log_context(),
        )
        return HttpResponse("Invalid signature", status=400)
    except Exception as e:
        logger.error(
            f"Webhook processing error: {type(e).__name__}",
            exc_info=True,
        )
        return HttpResponse("Processing failed", status=500)

    if outcome.duplicate:
        return HttpResponse("Already processed", status=200)
    return HttpResponse("OK", status=200)
