"""
Push notifications router: web push subscriptions, mobile device tokens and
diagnostics.
"""

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from chatpush.deps import CurrentUserId, Notifier
from chatpush.models.device_token import DevicePlatform
from chatpush.services.payloads import NotificationPayload
from chatpush.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push", tags=["push"])


class SubscriptionKeys(BaseModel):
    p256dh: str | None = None
    auth: str | None = None


class SubscribeRequest(BaseModel):
    """Browser PushSubscription JSON plus optional client details."""

    model_config = ConfigDict(populate_by_name=True)

    endpoint: str | None = None
    keys: SubscriptionKeys | None = None
    user_agent: str | None = Field(default=None, alias="userAgent")
    device_info: str | None = Field(default=None, alias="deviceInfo")


class UnsubscribeRequest(BaseModel):
    endpoint: str | None = None


class DeviceTokenRequest(BaseModel):
    token: str | None = None
    platform: str | None = None


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _user_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


@router.get("/vapid-public-key")
async def get_vapid_public_key():
    """Get the VAPID public key for push subscription."""
    if not settings.vapid_public_key:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Push notifications not configured",
        )
    return JSONResponse({"publicKey": settings.vapid_public_key})


@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    body: SubscribeRequest,
    request: Request,
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """Subscribe the current browser to push notifications."""
    logger.info("Push subscription request from user %s", user_id)

    if not body.endpoint or not body.keys or not body.keys.p256dh or not body.keys.auth:
        raise _bad_request("Invalid subscription data")
    if await notifier.directory.find_user(user_id) is None:
        raise _user_not_found()

    subscription = await notifier.web.store.subscribe(
        user_id=user_id,
        endpoint=body.endpoint,
        p256dh=body.keys.p256dh,
        auth=body.keys.auth,
        user_agent=body.user_agent or request.headers.get("User-Agent"),
        device_info=body.device_info,
    )
    return JSONResponse(
        {"status": "subscribed", "id": subscription.id},
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/unsubscribe")
async def unsubscribe(
    body: UnsubscribeRequest,
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """Unsubscribe from push notifications."""
    if not body.endpoint:
        raise _bad_request("Endpoint is required")

    removed = await notifier.web.store.unsubscribe(user_id, body.endpoint)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return JSONResponse({"status": "unsubscribed"})


@router.get("/subscriptions")
async def list_subscriptions(
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """List the current user's active subscriptions."""
    subscriptions = await notifier.web.store.list_active(user_id)
    return JSONResponse({
        "count": len(subscriptions),
        "subscriptions": [
            {
                "id": sub.id,
                "endpoint_domain": urlparse(sub.endpoint).netloc or "unknown",
                "user_agent": sub.user_agent[:50] if sub.user_agent else None,
                "device_info": sub.device_info,
                "created_at": sub.created_at.isoformat() if sub.created_at else None,
            }
            for sub in subscriptions
        ],
    })


@router.post("/devices/register")
async def register_device(
    body: DeviceTokenRequest,
    request: Request,
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """Register an FCM token for one of the current user's devices."""
    if not body.token:
        raise _bad_request("Token is required")
    platforms = [p.value for p in DevicePlatform]
    if body.platform not in platforms:
        raise _bad_request(f"Platform must be one of: {', '.join(platforms)}")

    count = await notifier.directory.register_token(
        user_id, body.token, body.platform, user_agent=request.headers.get("User-Agent"),
    )
    if count is None:
        raise _user_not_found()
    return JSONResponse({"status": "registered", "tokenCount": count})


@router.post("/devices/unregister")
async def unregister_device(
    body: DeviceTokenRequest,
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """Remove an FCM token, e.g. on logout."""
    if not body.token:
        raise _bad_request("Token is required")

    count = await notifier.directory.unregister_token(user_id, body.token)
    if count is None:
        raise _user_not_found()
    return JSONResponse({"status": "unregistered", "tokenCount": count})


@router.get("/devices")
async def list_devices(
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """List the current user's registered device tokens."""
    tokens = await notifier.directory.get_tokens(user_id)
    if tokens is None:
        raise _user_not_found()
    return JSONResponse({
        "count": len(tokens),
        "devices": [
            {
                "token": f"{t.token[:20]}...",
                "platform": t.platform,
                "lastUsed": t.last_used.isoformat() if t.last_used else None,
            }
            for t in tokens
        ],
    })


@router.post("/test")
async def send_test_notification(
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """Send a test push notification to the current user on both channels."""
    payload = NotificationPayload(
        title="Test Notification",
        body="Push notifications are working! 🎉",
        tag="test-notification",
        data={"type": "test", "url": "/profile"},
    )
    results = await notifier.send_all(user_id, payload)
    return JSONResponse({channel: result.to_dict() for channel, result in results.items()})


@router.get("/status")
async def get_push_status(
    user_id: CurrentUserId,
    notifier: Notifier,
):
    """Get push notification status for debugging."""
    subscriptions = await notifier.web.store.list_for_user(user_id)
    tokens = await notifier.directory.get_tokens(user_id) or []

    return JSONResponse({
        "vapid_configured": notifier.web.enabled,
        "firebase_configured": notifier.mobile.enabled,
        "circuit_breaker": notifier.mobile.breaker.snapshot(),
        "subscription_count": len(subscriptions),
        "active_subscription_count": sum(1 for s in subscriptions if s.is_active),
        "device_count": len(tokens),
    })
