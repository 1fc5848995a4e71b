"""
Stream Chat adapter for coaching channels.

All Stream Chat calls go through StreamChatAdapter so every call gets a
bounded timeout, circuit breaker protection and error translation.

Configuration (via settings):
- STREAM_API_KEY / STREAM_API_SECRET: Server-side credentials
- STREAM_TIMEOUT_SECONDS: Per-request timeout (default: 5)
- STREAM_CHANNEL_TYPE: Channel type for coaching channels (default: messaging)
- STREAM_SYSTEM_USER_ID: Author of system messages (default: system)
- STREAM_CIRCUIT_FAILURE_THRESHOLD / STREAM_CIRCUIT_RECOVERY_TIMEOUT

Errors:
- Timeouts, connection errors, 429 and 5xx: GatewayUnavailableError
- Other API errors: GatewayRequestError
- Circuit open: CircuitOpenError (no request sent)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import requests
from django.conf import settings
from stream_chat import StreamChat
from stream_chat.base.exceptions import StreamAPIException

from billing.exceptions import GatewayRequestError, GatewayUnavailableError
from core.circuit_breaker import CircuitBreaker, CircuitState

if TYPE_CHECKING:
    from collections.abc import Callable

SERVICE_NAME = "stream-chat"


@dataclass
class ChatMember:
    user_id: str
    name: str
    role: str = "user"

    def to_stream(self) -> dict[str, Any]:
        return {"id": self.user_id, "name": self.name, "role": self.role}


@dataclass
class ChannelSpec:
    channel_id: str
    name: str
    created_by_id: str
    members: list[ChatMember]
    extra_data: dict[str, Any] = field(default_factory=dict)


class StreamChatAdapter:
    """Messaging gateway adapter over the stream-chat SDK."""

    _client: StreamChat | None = None
    _circuit: CircuitBreaker | None = None

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def get_client(cls) -> StreamChat:
        if cls._client is None:
            cls._client = StreamChat(
                api_key=settings.STREAM_API_KEY,
                api_secret=settings.STREAM_API_SECRET,
                timeout=settings.STREAM_TIMEOUT_SECONDS,
            )
        return cls._client

    @classmethod
    def get_circuit(cls) -> CircuitBreaker:
        if cls._circuit is None:
            cls._circuit = CircuitBreaker(
                SERVICE_NAME,
                failure_threshold=settings.STREAM_CIRCUIT_FAILURE_THRESHOLD,
                recovery_timeout=settings.STREAM_CIRCUIT_RECOVERY_TIMEOUT,
            )
        return cls._circuit

    @classmethod
    def circuit_state(cls) -> CircuitState:
        return cls.get_circuit().state

    @classmethod
    def _execute(cls, operation: str, log_context: dict[str, Any], call: Callable[[], Any]) -> Any:
        """Run one SDK call behind the circuit with timing logs."""
        logger = cls.get_logger()
        log_context = {"operation": operation, **log_context}
        start_time = time.time()

        with cls.get_circuit().call(trip_on=(GatewayUnavailableError,)):
            try:
                response = call()
            except StreamAPIException as e:
                duration_ms = (time.time() - start_time) * 1000
                raise cls._translate_api_error(e, {**log_context, "duration_ms": duration_ms})
            except requests.RequestException as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(
                    f"Stream Chat transport error: {type(e).__name__}",
                    extra={**log_context, "duration_ms": duration_ms},
                )
                raise GatewayUnavailableError(
                    "Could not reach Stream Chat",
                    details={"error": str(e)},
                    service_name=SERVICE_NAME,
                ) from e

        logger.info(
            "Stream Chat operation completed",
            extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
        )
        return response

    @classmethod
    def _translate_api_error(
        cls, error: StreamAPIException, log_context: dict[str, Any]
    ) -> GatewayRequestError | GatewayUnavailableError:
        status_code = getattr(error, "status_code", None)
        details = {"status_code": status_code, "error": str(error)}

        if status_code == 429 or (status_code is not None and status_code >= 500):
            cls.get_logger().warning("Stream Chat unavailable", extra=log_context)
            return GatewayUnavailableError(
                "Stream Chat is unavailable",
                details=details,
                service_name=SERVICE_NAME,
            )

        cls.get_logger().error("Stream Chat rejected request", extra=log_context)
        return GatewayRequestError(
            "Stream Chat rejected the request",
            details=details,
            service_name=SERVICE_NAME,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    @classmethod
    def upsert_members(cls, members: list[ChatMember]) -> None:
        """Create or update chat users, including the system author."""
        users = [member.to_stream() for member in members]
        users.append({"id": settings.STREAM_SYSTEM_USER_ID, "name": "System", "role": "admin"})
        cls._execute(
            "upsert_users",
            {"user_ids": [user["id"] for user in users]},
            lambda: cls.get_client().upsert_users(users),
        )

    @classmethod
    def create_channel(cls, spec: ChannelSpec) -> None:
        """
        Get or create a channel with the given members.

        Creating an existing channel id returns it unchanged, so this is safe
        to repeat.
        """
        data = {
            "name": spec.name,
            "members": [member.user_id for member in spec.members],
            **spec.extra_data,
        }
        channel = cls.get_client().channel(
            settings.STREAM_CHANNEL_TYPE, spec.channel_id, data=data
        )
        cls._execute(
            "create_channel",
            {"channel_id": spec.channel_id},
            lambda: channel.create(spec.created_by_id),
        )

    @classmethod
    def send_system_message(cls, channel_id: str, text: str) -> None:
        channel = cls.get_client().channel(settings.STREAM_CHANNEL_TYPE, channel_id)
        cls._execute(
            "send_message",
            {"channel_id": channel_id},
            lambda: channel.send_message({"text": text}, settings.STREAM_SYSTEM_USER_ID),
        )

    @classmethod
    def archive_channel(cls, channel_id: str) -> None:
        """Freeze the channel: members keep history but can no longer post."""
        channel = cls.get_client().channel(settings.STREAM_CHANNEL_TYPE, channel_id)
        cls._execute(
            "archive_channel",
            {"channel_id": channel_id},
            lambda: channel.update_partial(to_set={"frozen": True, "archived": True}),
        )
