"""
Creator billing: Stripe Connect onboarding and program price publishing.

A program can be sold once two things exist at Stripe: a connected account
for its owner that accepts charges, and a recurring price. This service
creates both and keeps the local copies in step with Stripe.

Usage:
    from billing.services import CreatorBillingService

    result = CreatorBillingService.start_onboarding(
        request.user, return_url=..., refresh_url=...
    )
    if result.success:
        redirect_to(result.data)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from billing.adapters import StripeAdapter
from billing.exceptions import GatewayError
from billing.models import ConnectedAccount
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from programs.models import Program


class CreatorBillingService(BaseService):

    @classmethod
    def start_onboarding(
        cls,
        user: AbstractBaseUser,
        return_url: str,
        refresh_url: str,
    ) -> ServiceResult[str]:
        """
        Return a Stripe onboarding link, creating the account on first use.

        Returns:
            ServiceResult with the link URL, or a gateway failure
        """
        logger = cls.get_logger()
        account = ConnectedAccount.objects.filter(owner=user).first()

        try:
            if account is None:
                created = StripeAdapter.create_connected_account(
                    email=user.email, user_id=user.pk
                )
                account, _ = ConnectedAccount.objects.get_or_create(
                    owner=user,
                    defaults={"stripe_account_id": created.account_id},
                )
                account.apply_stripe_flags(
                    charges_enabled=created.charges_enabled,
                    payouts_enabled=created.payouts_enabled,
                    details_submitted=created.details_submitted,
                )
                account.save()
                logger.info(
                    "Created connected account",
                    extra={"user_id": user.pk, "account_id": account.stripe_account_id},
                )

            url = StripeAdapter.create_onboarding_link(
                account.stripe_account_id,
                return_url=return_url,
                refresh_url=refresh_url,
            )
        except GatewayError as e:
            return ServiceResult.from_exception(e)

        return ServiceResult.success(url)

    @classmethod
    def sync_account(cls, account_payload: dict[str, Any]) -> ServiceResult[ConnectedAccount | None]:
        """
        Apply an account.updated payload to the local ConnectedAccount.

        Accounts created outside this platform are ignored.
        """
        account_id = account_payload.get("id")
        with cls.atomic():
            account = (
                ConnectedAccount.objects.select_for_update()
                .filter(stripe_account_id=account_id)
                .first()
            )
            if account is None:
                cls.get_logger().info(
                    "account.updated for unknown account",
                    extra={"account_id": account_id},
                )
                return ServiceResult.success(None)

            previous_status = account.onboarding_status
            account.apply_stripe_flags(
                charges_enabled=bool(account_payload.get("charges_enabled")),
                payouts_enabled=bool(account_payload.get("payouts_enabled")),
                details_submitted=bool(account_payload.get("details_submitted")),
            )
            account.save()

        if account.onboarding_status != previous_status:
            cls.get_logger().info(
                "Connected account onboarding status changed",
                extra={
                    "account_id": account_id,
                    "from_status": previous_status,
                    "to_status": account.onboarding_status,
                },
            )
        return ServiceResult.success(account)

    @classmethod
    def publish_program_price(cls, program: Program) -> ServiceResult[Program]:
        """
        Create the Stripe product and price for the program's current terms.

        Publishing again after a price change creates a new price; existing
        subscriptions keep the price they were sold at.
        """
        try:
            published = StripeAdapter.create_program_price(program)
        except GatewayError as e:
            return ServiceResult.from_exception(e)

        program.external_product_id = published.product_id
        program.external_price_id = published.price_id
        program.save(update_fields=["external_product_id", "external_price_id", "updated_at"])

        cls.get_logger().info(
            "Published program price",
            extra={"program_id": str(program.id), "price_id": published.price_id},
        )
        return ServiceResult.success(program)
