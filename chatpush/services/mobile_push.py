"""
Mobile push channel: delivers a notification to a user's FCM device tokens.

Each token is sent under an overall timeout racing a retry policy. Invalid
token errors skip the retries, are pruned from the user's token list in one
batched write, and never count against the circuit breaker; every other
failure does.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from chatpush.models.device_token import DeviceToken
from chatpush.services.circuit_breaker import CircuitBreaker
from chatpush.services.failures import (
    CircuitOpenError,
    ConfigurationMissing,
    PushError,
    is_invalid_token_error,
)
from chatpush.services.payloads import NotificationPayload, callkit_data
from chatpush.services.providers import PushProvider
from chatpush.services.registry import UserDirectory
from chatpush.services.results import DeliveryResult, EndpointOutcome
from chatpush.services.retry import RetryPolicy, exponential_backoff

logger = logging.getLogger(__name__)

CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"

MessageBuilder = Callable[[DeviceToken, NotificationPayload], dict]


def _retryable(error: BaseException) -> bool:
    return not is_invalid_token_error(error)


def _short(token: str) -> str:
    return f"{token[:20]}..."


def build_message(token: DeviceToken, payload: NotificationPayload) -> dict:
    """Chat notification shaped for the token's platform."""
    message = {
        "notification": {
            "title": payload.title or "New Message",
            "body": payload.body or "",
        },
        "data": {**payload.fcm_data(), "click_action": CLICK_ACTION},
    }
    if token.is_ios:
        message["apns"] = {
            "headers": {"apns-priority": "10"},
            "aps": {
                "sound": "default",
                "badge": 1,
                "content_available": True,
                "category": "MESSAGE",
            },
        }
    else:
        message["android"] = {
            "priority": "high",
            "notification": {
                "sound": "default",
                "click_action": CLICK_ACTION,
                "channel_id": "chat_messages",
            },
        }
    return message


def build_call_message(token: DeviceToken, payload: NotificationPayload) -> dict:
    """Incoming call push that lets the app raise its native call UI.

    iOS gets a data-only background push (the app shows CallKit itself);
    Android gets a max-priority notification on the incoming-calls channel.
    """
    data = callkit_data(payload)
    if token.is_ios:
        data["type"] = "1" if data.get("callType") == "video" else "0"
        return {
            "data": data,
            "apns": {
                "headers": {
                    "apns-priority": "10",
                    "apns-push-type": "background",
                },
                "aps": {"content_available": True},
            },
        }
    return {
        "notification": {"title": payload.title, "body": payload.body},
        "data": data,
        "android": {
            "priority": "high",
            "ttl": 60,
            "direct_boot_ok": True,
            "notification": {
                "sound": "default",
                "click_action": CLICK_ACTION,
                "channel_id": "incoming_calls",
                "priority": "max",
                "visibility": "public",
                "default_sound": True,
                "default_vibrate_timings": True,
            },
        },
    }


class MobilePushChannel:
    """Service for sending FCM notifications to mobile devices."""

    def __init__(
        self,
        directory: UserDirectory,
        provider: PushProvider | None,
        breaker: CircuitBreaker,
        retry_policy: RetryPolicy | None = None,
        call_retry_policy: RetryPolicy | None = None,
        send_timeout: float = 10.0,
        call_send_timeout: float = 12.0,
        lookup_timeout: float = 5.0,
        min_token_length: int = 50,
        max_token_length: int = 500,
        concurrency: int = 4,
    ):
        self.directory = directory
        self.provider = provider
        self.breaker = breaker
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3, backoff=exponential_backoff(0.1), is_retryable=_retryable,
        )
        self.call_retry_policy = call_retry_policy or RetryPolicy(
            max_attempts=2, backoff=exponential_backoff(0.05), is_retryable=_retryable,
        )
        self.send_timeout = send_timeout
        self.call_send_timeout = call_send_timeout
        self.lookup_timeout = lookup_timeout
        self.min_token_length = min_token_length
        self.max_token_length = max_token_length
        self.concurrency = max(1, concurrency)
        if provider is None:
            logger.warning("Mobile push disabled - Firebase credentials not configured")

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def is_valid_token(self, token: str | None) -> bool:
        """Cheap sanity check; FCM itself rejects truly invalid tokens."""
        if not token or not isinstance(token, str):
            return False
        return self.min_token_length <= len(token) <= self.max_token_length

    async def send(self, user_id: int, payload: NotificationPayload) -> DeliveryResult:
        """Send a chat notification to all valid device tokens of a user."""
        return await self._dispatch(user_id, payload, build_message, self.retry_policy, self.send_timeout)

    async def send_call(self, user_id: int, payload: NotificationPayload) -> DeliveryResult:
        """Send an incoming-call push; calls get fewer, faster retries."""
        return await self._dispatch(
            user_id, payload, build_call_message, self.call_retry_policy, self.call_send_timeout,
        )

    def _check_available(self, user_id: int) -> None:
        """Raise when the provider must not be contacted at all."""
        if self.provider is None:
            logger.warning("Firebase not initialized, skipping mobile push for user %s", user_id)
            raise ConfigurationMissing("Firebase not initialized")
        if self.breaker.is_open():
            logger.warning(
                "Circuit breaker is open, skipping mobile push for user %s (failures: %d)",
                user_id, self.breaker.failure_count,
            )
            raise CircuitOpenError()

    async def _dispatch(
        self,
        user_id: int,
        payload: NotificationPayload,
        build: MessageBuilder,
        policy: RetryPolicy,
        timeout: float,
    ) -> DeliveryResult:
        started = time.monotonic()

        try:
            self._check_available(user_id)
        except PushError as e:
            return DeliveryResult.failure(str(e))

        try:
            tokens = await asyncio.wait_for(self.directory.get_tokens(user_id), timeout=self.lookup_timeout)
        except asyncio.TimeoutError:
            logger.error("Device token lookup timed out for user %s", user_id)
            return DeliveryResult.failure("Database query timeout")
        except SQLAlchemyError as e:
            logger.error("Device token lookup failed for user %s: %s", user_id, e)
            return DeliveryResult.failure("Database query failed")

        if not tokens:
            logger.debug("No push tokens found for user %s", user_id)
            return DeliveryResult(success=False, error="No push tokens")

        valid = [t for t in tokens if self.is_valid_token(t.token)]
        if not valid:
            logger.warning("No valid FCM tokens for user %s", user_id)
            return DeliveryResult(success=False, error="No valid push tokens")
        if len(valid) < len(tokens):
            logger.warning("Filtered out %d malformed token(s) for user %s", len(tokens) - len(valid), user_id)

        logger.info(
            "Sending mobile push to user %s (%d of %d tokens): %s",
            user_id, len(valid), len(tokens), payload.title,
        )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def deliver(token: DeviceToken) -> EndpointOutcome:
            async with semaphore:
                return await self._deliver(token, build(token, payload), policy, timeout)

        outcomes = list(await asyncio.gather(*(deliver(t) for t in valid)))

        invalid = [o.endpoint_id for o in outcomes if o.removed]
        used = [o.endpoint_id for o in outcomes if o.success]
        await self._save_tokens(user_id, invalid, used)

        result = DeliveryResult.from_outcomes(
            outcomes,
            invalid_removed=len(invalid),
            duration=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            "Mobile push results for user %s (%dms): sent=%d failed=%d total=%d invalidRemoved=%d",
            user_id, result.duration, result.sent, result.failed, result.total, result.invalid_removed,
        )
        return result

    async def _deliver(
        self,
        token: DeviceToken,
        message: dict,
        policy: RetryPolicy,
        timeout: float,
    ) -> EndpointOutcome:
        try:
            delivery_id = await asyncio.wait_for(
                policy.run(lambda: self.provider.send(token.token, message)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error("FCM request timeout after %.0fs for %s token %s", timeout, token.platform, _short(token.token))
            self.breaker.record_failure()
            return EndpointOutcome(
                endpoint_id=token.token, success=False, platform=token.platform, error="FCM request timeout",
            )
        except Exception as e:
            logger.error(
                "Failed to send push to %s token %s: %s (code: %s)",
                token.platform, _short(token.token), e, getattr(e, "code", None),
            )
            invalid = is_invalid_token_error(e)
            if invalid:
                logger.info("Marking invalid %s token for removal: %s", token.platform, _short(token.token))
            else:
                self.breaker.record_failure()
            return EndpointOutcome(
                endpoint_id=token.token, success=False, platform=token.platform, error=str(e), removed=invalid,
            )

        self.breaker.record_success()
        logger.debug("Push sent to %s token %s: %s", token.platform, _short(token.token), delivery_id)
        return EndpointOutcome(endpoint_id=token.token, success=True, platform=token.platform, delivery_id=delivery_id)

    async def _save_tokens(self, user_id: int, invalid: list[str], used: list[str]) -> None:
        if not invalid and not used:
            return
        try:
            removed = await self.directory.save_tokens(user_id, removed=invalid, touched=used)
        except SQLAlchemyError as e:
            logger.error("Failed to save device tokens for user %s: %s", user_id, e)
            return
        if removed:
            logger.info("Removed %d invalid token(s) for user %s", removed, user_id)
