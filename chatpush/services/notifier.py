"""
Push notification fan-out.

Entry points used by the message, group and call services when the
recipient is not connected over the real-time channel. Each event kind has a
web and a mobile variant plus a ``notify_*`` method that runs both channels
concurrently. None of them raise: every failure ends in a DeliveryResult.
"""

import asyncio
import functools
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatpush.services.circuit_breaker import CircuitBreaker
from chatpush.services.failures import ValidationError
from chatpush.services.mobile_push import MobilePushChannel, _retryable
from chatpush.services.payloads import EventType, NotificationPayload, PayloadBuilder, SenderInfo
from chatpush.services.providers import FirebasePushProvider, VapidWebPushProvider
from chatpush.services.registry import SubscriptionStore, UserDirectory
from chatpush.services.results import DeliveryResult
from chatpush.services.retry import RetryPolicy, exponential_backoff
from chatpush.services.web_push import WebPushChannel
from chatpush.settings import Settings

logger = logging.getLogger(__name__)

SENDER_NOT_FOUND = "Sender not found"


def never_raises(func):
    """Turn validation errors and unexpected exceptions into a failed DeliveryResult."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> DeliveryResult:
        try:
            return await func(self, *args, **kwargs)
        except ValidationError as e:
            logger.warning("%s rejected: %s", func.__name__, e)
            return DeliveryResult.failure(str(e))
        except Exception as e:
            logger.exception("Error in %s", func.__name__)
            return DeliveryResult.failure(str(e))

    return wrapper


def _ref_id(value: Any) -> Any:
    """Ids may arrive as plain values or as populated documents."""
    if isinstance(value, Mapping):
        return value.get("_id") or value.get("id")
    return value


def _require(value: Any, message: str) -> None:
    if value is None or value == "" or value == {}:
        raise ValidationError(message)


def _as_payload(payload: NotificationPayload | Mapping[str, Any] | None) -> NotificationPayload:
    if payload is None:
        raise ValidationError("payload.title is required")
    if not isinstance(payload, NotificationPayload):
        payload = NotificationPayload.from_dict(payload)
    if not payload.title:
        raise ValidationError("payload.title is required")
    return payload


class PushNotifier:
    """Composes the payload builder with the web and mobile channels."""

    def __init__(
        self,
        directory: UserDirectory,
        web: WebPushChannel,
        mobile: MobilePushChannel,
        builder: PayloadBuilder | None = None,
    ):
        self.directory = directory
        self.web = web
        self.mobile = mobile
        self.builder = builder or PayloadBuilder()

    async def _sender(self, sender_ref: Any) -> SenderInfo | None:
        sender_id = _ref_id(sender_ref)
        if sender_id is None:
            return None
        user = await self.directory.find_user(sender_id)
        if user is None:
            logger.warning("Sender not found: %s", sender_id)
            return None
        return SenderInfo(id=user.id, name=user.display_name, avatar=user.profile_pic or None)

    # --- Generic sends ----------------------------------------------------------

    @never_raises
    async def send_web(self, user_id: int, payload: NotificationPayload | Mapping[str, Any]) -> DeliveryResult:
        _require(user_id, "userId is required")
        return await self.web.send(user_id, _as_payload(payload))

    @never_raises
    async def send_mobile(self, user_id: int, payload: NotificationPayload | Mapping[str, Any]) -> DeliveryResult:
        _require(user_id, "userId is required")
        return await self.mobile.send(user_id, _as_payload(payload))

    # --- Payload construction ---------------------------------------------------

    async def _message_payload(self, receiver_id, message) -> NotificationPayload | None:
        _require(receiver_id, "receiverId is required")
        _require(message, "messageData is required")
        sender = await self._sender(message.get("senderId"))
        if sender is None:
            return None
        return self.builder.build(EventType.MESSAGE, sender, message, receiver_id)

    async def _group_payload(self, receiver_id, message, group) -> NotificationPayload | None:
        _require(receiver_id, "receiverId is required")
        _require(message, "messageData is required")
        _require(group, "groupData is required")
        sender = await self._sender(message.get("senderId"))
        if sender is None:
            return None
        return self.builder.build(EventType.GROUP_MESSAGE, sender, message, receiver_id, group=group)

    async def _call_payload(self, receiver_id, call, missed: bool = False) -> NotificationPayload | None:
        _require(receiver_id, "receiverId is required")
        if not call or not call.get("callId") or not call.get("callerId"):
            raise ValidationError("Missing required call data")
        caller = await self._sender(call.get("callerId"))
        if caller is None:
            return None
        event_type = EventType.MISSED_CALL if missed else EventType.CALL
        return self.builder.build(event_type, caller, call, receiver_id)

    # --- Web push variants ------------------------------------------------------

    @never_raises
    async def web_direct_message(self, receiver_id: int, message: Mapping[str, Any]) -> DeliveryResult:
        payload = await self._message_payload(receiver_id, message)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.web.send(receiver_id, payload)

    @never_raises
    async def web_group_message(
        self, receiver_id: int, message: Mapping[str, Any], group: Mapping[str, Any],
    ) -> DeliveryResult:
        payload = await self._group_payload(receiver_id, message, group)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.web.send(receiver_id, payload)

    @never_raises
    async def web_call(self, receiver_id: int, call: Mapping[str, Any]) -> DeliveryResult:
        payload = await self._call_payload(receiver_id, call)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.web.send(receiver_id, payload)

    @never_raises
    async def web_missed_call(self, receiver_id: int, call: Mapping[str, Any]) -> DeliveryResult:
        payload = await self._call_payload(receiver_id, call, missed=True)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.web.send(receiver_id, payload)

    # --- Mobile push variants ---------------------------------------------------

    @never_raises
    async def mobile_direct_message(self, receiver_id: int, message: Mapping[str, Any]) -> DeliveryResult:
        payload = await self._message_payload(receiver_id, message)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.mobile.send(receiver_id, payload)

    @never_raises
    async def mobile_group_message(
        self, receiver_id: int, message: Mapping[str, Any], group: Mapping[str, Any],
    ) -> DeliveryResult:
        payload = await self._group_payload(receiver_id, message, group)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.mobile.send(receiver_id, payload)

    @never_raises
    async def mobile_call(self, receiver_id: int, call: Mapping[str, Any]) -> DeliveryResult:
        payload = await self._call_payload(receiver_id, call)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.mobile.send_call(receiver_id, payload)

    @never_raises
    async def mobile_missed_call(self, receiver_id: int, call: Mapping[str, Any]) -> DeliveryResult:
        payload = await self._call_payload(receiver_id, call, missed=True)
        if payload is None:
            return DeliveryResult.failure(SENDER_NOT_FOUND)
        return await self.mobile.send(receiver_id, payload)

    # --- Both channels ----------------------------------------------------------

    async def notify_direct_message(self, receiver_id: int, message: Mapping[str, Any]) -> dict[str, DeliveryResult]:
        return await self._both(
            self.web_direct_message(receiver_id, message),
            self.mobile_direct_message(receiver_id, message),
        )

    async def notify_group_message(
        self, receiver_id: int, message: Mapping[str, Any], group: Mapping[str, Any],
    ) -> dict[str, DeliveryResult]:
        return await self._both(
            self.web_group_message(receiver_id, message, group),
            self.mobile_group_message(receiver_id, message, group),
        )

    async def notify_call(self, receiver_id: int, call: Mapping[str, Any]) -> dict[str, DeliveryResult]:
        return await self._both(self.web_call(receiver_id, call), self.mobile_call(receiver_id, call))

    async def notify_missed_call(self, receiver_id: int, call: Mapping[str, Any]) -> dict[str, DeliveryResult]:
        return await self._both(
            self.web_missed_call(receiver_id, call),
            self.mobile_missed_call(receiver_id, call),
        )

    async def send_all(self, user_id: int, payload: NotificationPayload | Mapping[str, Any]) -> dict[str, DeliveryResult]:
        return await self._both(self.send_web(user_id, payload), self.send_mobile(user_id, payload))

    @staticmethod
    async def _both(web_call, mobile_call) -> dict[str, DeliveryResult]:
        web, mobile = await asyncio.gather(web_call, mobile_call)
        return {"web": web, "mobile": mobile}


def _firebase_provider(settings: Settings) -> FirebasePushProvider | None:
    account = settings.load_firebase_credentials()
    if account is None:
        return None
    try:
        return FirebasePushProvider(account)
    except ValueError as e:
        # Raised by the SDK for unusable certificates
        logger.error("Failed to initialize Firebase Admin SDK: %s", e)
        return None


def build_notifier(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> PushNotifier:
    """Wire the delivery engine from settings."""
    directory = UserDirectory(session_factory)

    web_provider = None
    if settings.push_enabled:
        web_provider = VapidWebPushProvider(settings.vapid_private_key, settings.vapid_subject)
        logger.info("VAPID keys configured for push notifications (subject: %s)", settings.vapid_subject)

    web = WebPushChannel(
        SubscriptionStore(session_factory),
        web_provider,
        default_icon=settings.push_default_icon,
    )
    mobile = MobilePushChannel(
        directory,
        _firebase_provider(settings),
        CircuitBreaker(
            "fcm",
            threshold=settings.push_breaker_threshold,
            timeout=settings.push_breaker_timeout,
        ),
        retry_policy=RetryPolicy(
            max_attempts=settings.push_retry_attempts,
            backoff=exponential_backoff(settings.push_retry_base_delay),
            is_retryable=_retryable,
        ),
        call_retry_policy=RetryPolicy(
            max_attempts=settings.push_call_retry_attempts,
            backoff=exponential_backoff(settings.push_call_retry_base_delay),
            is_retryable=_retryable,
        ),
        send_timeout=settings.push_send_timeout,
        call_send_timeout=settings.push_call_send_timeout,
        lookup_timeout=settings.push_token_lookup_timeout,
        min_token_length=settings.push_token_min_length,
        max_token_length=settings.push_token_max_length,
        concurrency=settings.push_mobile_concurrency,
    )
    builder = PayloadBuilder(
        direct_text_limit=settings.push_direct_text_limit,
        group_text_limit=settings.push_group_text_limit,
    )
    return PushNotifier(directory, web, mobile, builder)
