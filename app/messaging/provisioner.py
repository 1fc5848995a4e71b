"""
Channel Provisioner: coaching chat channels for subscriptions.

Best-effort side effect of billing. Called after the webhook transaction
commits; every failure is logged and returned as a ServiceResult failure,
never raised. A subscription without a channel is degraded but valid, and
the reprovision task repairs it later.

Usage:
    from messaging.provisioner import ChannelProvisioner

    result = ChannelProvisioner.provision(subscription)
    if not result.success:
        ...  # already logged
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from billing.models import Subscription
from billing.services.entitlement_ledger import EntitlementLedger
from billing.webhooks.transitions import SideEffect
from core.exceptions import ExternalServiceError
from core.services import BaseService, ServiceResult
from messaging.adapters import ChannelSpec, ChatMember, StreamChatAdapter

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

CLOSING_MESSAGE = "This coaching subscription has ended. The channel is now archived."


def channel_id_for(subscription: Subscription) -> str:
    """Deterministic, so repeated provisioning targets the same channel."""
    return f"coaching-{subscription.id.hex}"


def _display_name(user: AbstractBaseUser) -> str:
    return user.get_full_name() or user.get_username()


class ChannelProvisioner(BaseService):
    """Creates and archives the private channel between coach and client."""

    @classmethod
    def provision(cls, subscription: Subscription) -> ServiceResult[str]:
        """
        Create the channel, store its id, and welcome the client once.

        Safe to repeat: the channel id is deterministic, creation is
        get-or-create, and the welcome is claimed on the row before it is
        sent. A welcome that failed is released and sent by a later call
        (the reprovision task) once the channel exists.
        """
        logger = cls.get_logger()
        log_context = {"subscription_id": str(subscription.id)}

        if subscription.channel_id:
            if subscription.channel_welcomed_at is None and subscription.is_entitled:
                cls._send_welcome(subscription, subscription.channel_id)
            return ServiceResult.success(subscription.channel_id)
        if not subscription.is_entitled:
            logger.info(
                "Skipping channel for subscription without access",
                extra={**log_context, "status": subscription.status},
            )
            return ServiceResult.failure(
                "Subscription is not entitled to a channel",
                error_code="NOT_ENTITLED",
            )

        coach, client = subscription.coach, subscription.client
        channel_id = channel_id_for(subscription)
        coach_name, client_name = _display_name(coach), _display_name(client)
        members = [
            ChatMember(user_id=str(coach.pk), name=coach_name, role="user"),
            ChatMember(user_id=str(client.pk), name=client_name, role="user"),
        ]

        try:
            StreamChatAdapter.upsert_members(members)
            StreamChatAdapter.create_channel(
                ChannelSpec(
                    channel_id=channel_id,
                    name=f"{coach_name} <> {client_name}",
                    created_by_id=str(coach.pk),
                    members=members,
                    extra_data={
                        "coaching": True,
                        "program": subscription.program.title,
                        "subscription_id": str(subscription.id),
                    },
                )
            )
        except ExternalServiceError as e:
            logger.warning(
                "Channel provisioning failed",
                extra={**log_context, **e.log_context()},
            )
            return ServiceResult.from_exception(e)

        # Another worker attached first and owns the welcome
        if not EntitlementLedger.attach_channel(subscription.id, channel_id):
            return ServiceResult.success(channel_id)

        cls._send_welcome(subscription, channel_id)
        logger.info("Provisioned coaching channel", extra={**log_context, "channel_id": channel_id})
        return ServiceResult.success(channel_id)

    @classmethod
    def _send_welcome(cls, subscription: Subscription, channel_id: str) -> bool:
        if not EntitlementLedger.claim_channel_welcome(subscription.id):
            return False

        coach_name = _display_name(subscription.coach)
        try:
            StreamChatAdapter.send_system_message(
                channel_id,
                f"Welcome! This is your private coaching channel with {coach_name}. "
                "Feel free to ask questions, share progress, and stay connected.",
            )
        except ExternalServiceError as e:
            EntitlementLedger.release_channel_welcome(subscription.id)
            cls.get_logger().warning(
                "Welcome message failed",
                extra={
                    "subscription_id": str(subscription.id),
                    "channel_id": channel_id,
                    **e.log_context(),
                },
            )
            return False
        return True

    @classmethod
    def archive(cls, subscription: Subscription) -> ServiceResult[None]:
        """Post a closing message and freeze the channel, if there is one."""
        if not subscription.channel_id:
            return ServiceResult.success(None)

        log_context = {
            "subscription_id": str(subscription.id),
            "channel_id": subscription.channel_id,
        }
        try:
            StreamChatAdapter.send_system_message(subscription.channel_id, CLOSING_MESSAGE)
            StreamChatAdapter.archive_channel(subscription.channel_id)
        except ExternalServiceError as e:
            cls.get_logger().warning(
                "Channel archive failed",
                extra={**log_context, **e.log_context()},
            )
            return ServiceResult.from_exception(e)

        cls.get_logger().info("Archived coaching channel", extra=log_context)
        return ServiceResult.success(None)

    @classmethod
    def run_side_effects(
        cls, subscription_id: uuid.UUID, side_effects: tuple[SideEffect, ...]
    ) -> list[ServiceResult]:
        """Run the side effects a committed transition scheduled."""
        subscription = (
            Subscription.objects.select_related("client", "coach", "program")
            .filter(pk=subscription_id)
            .first()
        )
        if subscription is None:
            return []

        results = []
        for effect in side_effects:
            if effect == SideEffect.PROVISION_CHANNEL:
                results.append(cls.provision(subscription))
            elif effect == SideEffect.ARCHIVE_CHANNEL:
                results.append(cls.archive(subscription))
        return results
