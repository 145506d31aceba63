"""
Push provider adapters.

The channels talk to providers through one small interface so the delivery
logic can be exercised with fakes. Real adapters wrap pywebpush (VAPID Web
Push) and firebase-admin (FCM). Both SDKs are blocking, so sends run in a
worker thread.

Provider failures surface as ProviderError carrying the HTTP status (web push)
or a normalized FCM error code.
"""

import asyncio
import logging
from typing import Any, Protocol

import firebase_admin
from firebase_admin import credentials, exceptions, messaging
from pywebpush import WebPushException, webpush

from chatpush.services.failures import ProviderError, normalize_fcm_code

logger = logging.getLogger(__name__)


class PushProvider(Protocol):
    """Delivers one message to one endpoint and returns a delivery id."""

    async def send(self, target: Any, message: Any) -> str:
        ...


class VapidWebPushProvider:
    """Web Push delivery signed with a VAPID key pair."""

    def __init__(self, private_key: str, subject: str, ttl: int = 86400, timeout: float = 10.0):
        self.private_key = private_key
        self.subject = subject
        self.ttl = ttl
        self.timeout = timeout

    async def send(self, target: dict, message: str) -> str:
        """Send a JSON ``message`` to ``target`` (endpoint + keys)."""
        return await asyncio.to_thread(self._send_sync, target, message)

    def _send_sync(self, target: dict, message: str) -> str:
        try:
            response = webpush(
                subscription_info=target,
                data=message,
                vapid_private_key=self.private_key,
                # pywebpush fills in aud/exp on the dict it is given, so every
                # endpoint needs a fresh claims dict
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            status_code = getattr(response, "status_code", None) if response is not None else None
            raise ProviderError(str(e), status_code=status_code) from e

        if response is None or not hasattr(response, "headers"):
            return ""
        # Push services return the message resource in the Location header
        return response.headers.get("Location", "")


def build_fcm_message(message: dict) -> Any:
    """Convert the channel's plain message dict into a firebase_admin Message."""
    notification = None
    if message.get("notification"):
        notification = messaging.Notification(**message["notification"])

    android = None
    if message.get("android"):
        android_opts = dict(message["android"])
        android_notification = android_opts.pop("notification", None)
        android = messaging.AndroidConfig(
            notification=messaging.AndroidNotification(**android_notification) if android_notification else None,
            **android_opts,
        )

    apns = None
    if message.get("apns"):
        apns_opts = message["apns"]
        apns = messaging.APNSConfig(
            headers=apns_opts.get("headers"),
            payload=messaging.APNSPayload(aps=messaging.Aps(**apns_opts.get("aps", {}))),
        )

    return messaging.Message(
        token=message["token"],
        notification=notification,
        data=message.get("data") or None,
        android=android,
        apns=apns,
    )


def _fcm_error_code(error: Exception) -> str | None:
    if isinstance(error, messaging.UnregisteredError):
        return "registration-token-not-registered"
    if isinstance(error, messaging.SenderIdMismatchError):
        return "mismatched-credential"
    if isinstance(error, exceptions.InvalidArgumentError):
        return "invalid-argument"
    return normalize_fcm_code(getattr(error, "code", None))


class FirebasePushProvider:
    """FCM delivery through the Firebase Admin SDK."""

    def __init__(self, service_account: dict, app_name: str = "chatpush"):
        try:
            self.app = firebase_admin.get_app(app_name)
        except ValueError:
            self.app = firebase_admin.initialize_app(
                credential=credentials.Certificate(service_account),
                name=app_name,
            )
        logger.info("Firebase Admin SDK initialized (project %s)", service_account.get("project_id"))

    async def send(self, target: str, message: dict) -> str:
        """Send ``message`` to the registration token ``target``."""
        return await asyncio.to_thread(self._send_sync, {**message, "token": target})

    def _send_sync(self, message: dict) -> str:
        try:
            return messaging.send(build_fcm_message(message), app=self.app)
        except exceptions.FirebaseError as e:
            raise ProviderError(str(e), code=_fcm_error_code(e)) from e
        except ValueError as e:
            # The SDK validates messages locally and rejects malformed tokens/fields
            raise ProviderError(str(e), code="invalid-argument") from e
