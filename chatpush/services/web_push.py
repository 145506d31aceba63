"""
Web push channel: delivers a notification to every active browser
subscription of a user.
"""

import asyncio
import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from chatpush.models.push_subscription import PushSubscription
from chatpush.services.failures import FailureClass, classify_web_push_error
from chatpush.services.payloads import NotificationPayload
from chatpush.services.providers import PushProvider
from chatpush.services.registry import SubscriptionStore
from chatpush.services.results import DeliveryResult, EndpointOutcome

logger = logging.getLogger(__name__)


def _short(endpoint: str | None) -> str:
    return f"{endpoint[:60]}..." if endpoint else "none"


def _endpoint_kind(endpoint: str | None) -> str:
    if endpoint and "web.push.apple.com" in endpoint:
        return "Apple/Safari"
    if endpoint and "google.com" in endpoint:
        return "Google/Chrome"
    return "Other"


class WebPushChannel:
    """Service for sending web push notifications."""

    def __init__(
        self,
        store: SubscriptionStore,
        provider: PushProvider | None,
        default_icon: str = "/favicon.ico",
    ):
        self.store = store
        self.provider = provider
        self.default_icon = default_icon
        if provider is None:
            logger.warning("Web push disabled - VAPID keys not configured")

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    async def send(self, user_id: int, payload: NotificationPayload) -> DeliveryResult:
        """Send a notification to all active subscriptions of a user.

        Every subscription gets its own attempt; one failing endpoint never
        cancels or delays the others. Subscriptions the push service reports
        as gone (404/410) are deleted once all sends have settled.
        """
        if self.provider is None:
            logger.warning("VAPID keys not configured, skipping push notification for user %s", user_id)
            return DeliveryResult.failure("VAPID keys not configured")

        try:
            subscriptions = await self.store.list_active(user_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load push subscriptions for user %s: %s", user_id, e)
            return DeliveryResult.failure("Database query failed")

        if not subscriptions:
            logger.debug("No active push subscriptions found for user %s", user_id)
            return DeliveryResult(success=False, error="No active subscriptions")

        logger.info(
            "Sending push notification to user %s (%d subscriptions): %s",
            user_id, len(subscriptions), payload.title,
        )
        message = json.dumps(payload.to_web_push(self.default_icon))

        outcomes = list(await asyncio.gather(
            *(self._deliver(sub, message) for sub in subscriptions)
        ))

        expired = [o.endpoint_id for o in outcomes if o.removed]
        if expired:
            await self._remove_expired(user_id, expired)

        result = DeliveryResult.from_outcomes(outcomes)
        logger.info(
            "Push notification results for user %s: sent=%d failed=%d total=%d",
            user_id, result.sent, result.failed, result.total,
        )
        return result

    async def _remove_expired(self, user_id: int, expired: list[int]) -> None:
        try:
            removed = await self.store.delete_by_ids(expired)
        except SQLAlchemyError as e:
            logger.error("Failed to remove expired push subscriptions for user %s: %s", user_id, e)
            return
        logger.info("Removed %d expired push subscription(s) for user %s", removed, user_id)

    async def _deliver(self, sub: PushSubscription, message: str) -> EndpointOutcome:
        kind = _endpoint_kind(sub.endpoint)
        try:
            delivery_id = await self.provider.send(sub.subscription_info, message)
        except Exception as e:
            return self._handle_failure(sub, kind, e)

        logger.info("Successfully sent push to subscription %s (%s)", sub.id, kind)
        return EndpointOutcome(endpoint_id=sub.id, success=True, delivery_id=delivery_id or None)

    def _handle_failure(self, sub: PushSubscription, kind: str, error: Exception) -> EndpointOutcome:
        status_code = getattr(error, "status_code", None)
        logger.error(
            "Push notification failed for subscription %s (%s, %s): %s (status: %s)",
            sub.id, kind, _short(sub.endpoint), error, status_code or "N/A",
        )

        failure = classify_web_push_error(error)
        if failure is FailureClass.PERMANENT:
            logger.info("Marking expired subscription %s for deletion (%s)", sub.id, status_code)
        elif status_code == 403:
            # Can be a temporary VAPID mismatch, notably on Apple endpoints
            logger.warning(
                "Push notification forbidden (403) for subscription %s%s",
                sub.id, " - Apple endpoint may require different VAPID configuration" if kind == "Apple/Safari" else "",
            )
        elif status_code == 413:
            logger.warning("Push notification payload too large for subscription %s", sub.id)
        elif status_code == 400:
            logger.warning("Bad request (400) for subscription %s - keys or endpoint may be malformed", sub.id)
        elif status_code is None:
            logger.error(
                "Subscription %s keys may be malformed - p256dh: %s..., auth: %s...",
                sub.id,
                sub.p256dh_key[:20] if sub.p256dh_key else "none",
                sub.auth_key[:10] if sub.auth_key else "none",
            )
        else:
            logger.error("Unexpected error (%s) for subscription %s", status_code, sub.id)

        return EndpointOutcome(
            endpoint_id=sub.id,
            success=False,
            error=str(error),
            status_code=status_code,
            removed=failure is FailureClass.PERMANENT,
        )
