"""
Channel-agnostic notification content for chat events.

Event data arrives as the dicts the message and call services already use
(``senderId``, ``text``, ``image``, ``groupId`` ...). The builder turns them
into a NotificationPayload that both the web and the mobile channel render.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ELLIPSIS = "…"

# Media markers in body priority order, after plain text
MEDIA_BODIES = (
    ("image", "📷 Sent a photo"),
    ("audio", "🎵 Sent an audio message"),
    ("video", "🎥 Sent a video"),
    ("file", "📎 Sent a file"),
)
FALLBACK_BODY = "Sent a message"


class EventType(str, Enum):
    MESSAGE = "message"
    GROUP_MESSAGE = "group_message"
    CALL = "call"
    MISSED_CALL = "missed_call"


@dataclass(frozen=True)
class SenderInfo:
    """Display information about whoever triggered the event."""

    id: int | str
    name: str = "Someone"
    avatar: str | None = None


@dataclass
class NotificationPayload:
    title: str
    body: str = ""
    icon: str | None = None
    image: str | None = None
    badge: str | None = None
    tag: str = "default"
    data: dict[str, Any] = field(default_factory=dict)
    require_interaction: bool = False
    silent: bool = False

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "NotificationPayload":
        """Build from a loosely shaped dict (test sends, upstream callers)."""
        return cls(
            title=raw.get("title") or "",
            body=raw.get("body") or "",
            icon=raw.get("icon"),
            image=raw.get("image"),
            badge=raw.get("badge"),
            tag=raw.get("tag") or "default",
            data=dict(raw.get("data") or {}),
            require_interaction=bool(raw.get("requireInteraction", raw.get("require_interaction", False))),
            silent=bool(raw.get("silent", False)),
        )

    def to_web_push(self, default_icon: str = "/favicon.ico") -> dict[str, Any]:
        """JSON document the service worker receives."""
        icon = self.icon or default_icon
        if not icon.startswith(("http", "/")):
            icon = f"/{icon}"
        return {
            "title": self.title,
            "body": self.body,
            "icon": icon,
            "badge": self.badge or icon,
            "image": self.image,
            "data": self.data,
            "tag": self.tag,
            "requireInteraction": self.require_interaction,
            "silent": self.silent,
            "dir": "auto",  # RTL languages
            "lang": "en",
        }

    def fcm_data(self) -> dict[str, str]:
        """FCM only accepts string values in the data map."""
        return stringify_data(self.data)


def stringify_data(data: Mapping[str, Any]) -> dict[str, str]:
    return {key: "" if value is None else str(value) for key, value in data.items()}


def truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def _has(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    return bool(value)


def _first(value: Any) -> str | None:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value or None


def message_id(data: Mapping[str, Any]) -> str | None:
    value = data.get("_id") or data.get("id")
    return str(value) if value is not None else None


def describe_message(data: Mapping[str, Any], text_limit: int) -> str:
    """Pick the body line for a chat message, first match wins."""
    text = data.get("text")
    if text:
        return truncate(text, text_limit)
    for key, body in MEDIA_BODIES:
        if _has(data, key):
            return body
    return FALLBACK_BODY


def preview_image(data: Mapping[str, Any]) -> str | None:
    """First image, else first video, becomes the rich-notification preview."""
    for key in ("image", "video"):
        if _has(data, key):
            return _first(data[key])
    return None


def _call_kind(call: Mapping[str, Any]) -> str:
    return "video" if call.get("callType") == "video" else "voice"


class PayloadBuilder:
    """Builds notification content per event type."""

    def __init__(self, direct_text_limit: int = 200, group_text_limit: int = 150):
        self.direct_text_limit = direct_text_limit
        self.group_text_limit = group_text_limit

    def build(
        self,
        event_type: EventType | str,
        sender: SenderInfo,
        data: Mapping[str, Any],
        receiver_id: int | str | None = None,
        group: Mapping[str, Any] | None = None,
    ) -> NotificationPayload:
        event_type = EventType(event_type)
        if event_type is EventType.MESSAGE:
            return self.direct_message(sender, data, receiver_id)
        if event_type is EventType.GROUP_MESSAGE:
            return self.group_message(sender, data, group or {}, receiver_id)
        if event_type is EventType.CALL:
            return self.call(sender, data, receiver_id)
        return self.missed_call(sender, data, receiver_id)

    def direct_message(
        self,
        sender: SenderInfo,
        message: Mapping[str, Any],
        receiver_id: int | str | None = None,
    ) -> NotificationPayload:
        msg_id = message_id(message)
        return NotificationPayload(
            title=f"New message from {sender.name}",
            body=describe_message(message, self.direct_text_limit),
            icon=sender.avatar,
            image=preview_image(message),
            tag=f"message-{msg_id}",
            data={
                "type": EventType.MESSAGE.value,
                "messageId": msg_id,
                "senderId": str(sender.id),
                "senderName": sender.name,
                "receiverId": str(receiver_id) if receiver_id is not None else None,
                "groupId": message.get("groupId"),
            },
        )

    def group_message(
        self,
        sender: SenderInfo,
        message: Mapping[str, Any],
        group: Mapping[str, Any],
        receiver_id: int | str | None = None,
    ) -> NotificationPayload:
        msg_id = message_id(message)
        group_name = group.get("name") or "Group"
        group_id = message.get("groupId") or group.get("_id") or group.get("id")
        return NotificationPayload(
            title=f"New message from {sender.name} in {group_name}",
            body=describe_message(message, self.group_text_limit),
            icon=sender.avatar,
            image=preview_image(message),
            tag=f"group-message-{msg_id}",
            data={
                "type": EventType.GROUP_MESSAGE.value,
                "messageId": msg_id,
                "senderId": str(sender.id),
                "senderName": sender.name,
                "groupId": str(group_id) if group_id is not None else None,
                "groupName": group_name,
                "receiverId": str(receiver_id) if receiver_id is not None else None,
            },
        )

    def call(
        self,
        caller: SenderInfo,
        call: Mapping[str, Any],
        receiver_id: int | str | None = None,
    ) -> NotificationPayload:
        kind = _call_kind(call)
        return NotificationPayload(
            title=f"Incoming {kind} call",
            body=f"{caller.name} is calling you",
            icon=caller.avatar,
            tag=f"call-{call.get('callId')}",
            require_interaction=True,
            data={
                "type": EventType.CALL.value,
                "callId": call.get("callId"),
                "callerId": str(caller.id),
                "callerName": caller.name,
                "callerAvatar": caller.avatar or "",
                "callType": call.get("callType") or "voice",
                "groupId": call.get("groupId"),
                "receiverId": str(receiver_id) if receiver_id is not None else None,
            },
        )

    def missed_call(
        self,
        caller: SenderInfo,
        call: Mapping[str, Any],
        receiver_id: int | str | None = None,
    ) -> NotificationPayload:
        kind = _call_kind(call)
        return NotificationPayload(
            title="Missed call",
            body=f"You missed a {kind} call from {caller.name}",
            icon=caller.avatar,
            tag=f"missed-call-{call.get('callId')}",
            data={
                "type": EventType.MISSED_CALL.value,
                "callId": call.get("callId"),
                "callerId": str(caller.id),
                "callerName": caller.name,
                "callType": call.get("callType") or "voice",
                "groupId": call.get("groupId"),
            },
        )


def callkit_data(payload: NotificationPayload) -> dict[str, str]:
    """Data-only fields the mobile app's CallKit integration reads for incoming calls."""
    data = payload.data
    caller_name = data.get("callerName") or "Unknown"
    fields = {
        "type": EventType.CALL.value,
        "id": data.get("callId"),
        "callId": data.get("callId"),
        "nameCaller": caller_name,
        "handle": caller_name,
        "avatar": data.get("callerAvatar") or "",
        "duration": "60000",
        "callerId": data.get("callerId"),
        "callerName": caller_name,
        "callerAvatar": data.get("callerAvatar") or "",
        "callType": data.get("callType") or "voice",
        "receiverId": data.get("receiverId"),
        "timestamp": int(time.time() * 1000),
    }
    return stringify_data(fields)
