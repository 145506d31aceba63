"""
Mobile device token model (FCM registration tokens).
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatpush.db import Base
from chatpush.models.base import TimestampMixin


class DevicePlatform(str, Enum):
    IOS = "ios"
    ANDROID = "android"


class DeviceToken(Base, TimestampMixin):
    """FCM registration token for one of a user's mobile devices."""

    __tablename__ = "device_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "token", name="uq_device_token_user_token"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    token: Mapped[str] = mapped_column(String(512), nullable=False)
    platform: Mapped[str] = mapped_column(String(20), default=DevicePlatform.ANDROID.value, nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    last_used: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="device_tokens")

    @property
    def is_ios(self) -> bool:
        return self.platform == DevicePlatform.IOS.value

    def touch(self) -> None:
        """Mark the token as used by a successful delivery."""
        self.last_used = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<DeviceToken user={self.user_id} platform={self.platform}>"
