"""
User model.

Accounts are owned by the user directory service; the push engine only reads
display fields and manages the device-token collection hanging off the user.
"""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatpush.db import Base
from chatpush.models.base import TimestampMixin


class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    fullname: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    profile_pic: Mapped[str | None] = mapped_column(Text, nullable=True)  # Avatar URLs can be very long

    # Relationships
    push_subscriptions = relationship(
        "PushSubscription",
        back_populates="user",
        lazy="raise",
        cascade="all, delete-orphan",
    )
    device_tokens = relationship(
        "DeviceToken",
        back_populates="user",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def display_name(self) -> str:
        return self.fullname or "Someone"

    def __repr__(self) -> str:
        return f"<User id={self.id}>"
