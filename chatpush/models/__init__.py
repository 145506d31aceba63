# Models package
from chatpush.db import Base
from chatpush.models.user import User
from chatpush.models.push_subscription import PushSubscription
from chatpush.models.device_token import DeviceToken, DevicePlatform

__all__ = [
    "Base",
    "User",
    "PushSubscription",
    "DeviceToken",
    "DevicePlatform",
]
