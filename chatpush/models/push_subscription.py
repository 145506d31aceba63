"""
Push subscription model for web push notifications.
"""

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatpush.db import Base
from chatpush.models.base import TimestampMixin


class PushSubscription(Base, TimestampMixin):
    """Web push subscription for notifications.

    The endpoint URL is globally unique: a browser that re-subscribes under a
    different account moves the row to the new owner instead of duplicating it.
    """

    __tablename__ = "push_subscriptions"
    __table_args__ = (
        Index("ix_push_sub_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Push subscription data
    endpoint: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    p256dh_key: Mapped[str] = mapped_column(String(255), nullable=False)  # Public key
    auth_key: Mapped[str] = mapped_column(String(255), nullable=False)  # Auth secret

    # Diagnostics
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    # Relationships
    user = relationship("User", back_populates="push_subscriptions")

    @property
    def subscription_info(self) -> dict:
        """Shape expected by pywebpush."""
        return {
            "endpoint": self.endpoint,
            "keys": {
                "p256dh": self.p256dh_key,
                "auth": self.auth_key,
            },
        }

    def __repr__(self) -> str:
        return f"<PushSubscription user={self.user_id} active={self.is_active}>"
