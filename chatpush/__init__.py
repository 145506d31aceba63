"""Push notification delivery for chat: Web Push (VAPID) and FCM mobile push."""

__version__ = "0.3.0"
