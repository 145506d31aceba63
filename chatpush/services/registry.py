"""
Endpoint registry: web push subscriptions and mobile device tokens.

Both stores open a short-lived session per operation from the session factory
they are given, so concurrent deliveries never share a session.

Subscription lifecycle: ``subscribe`` creates or re-activates a row,
``deactivate`` is the soft path (row kept, excluded from ``list_active``),
and permanent provider failures hard-delete the row.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatpush.models.device_token import DevicePlatform, DeviceToken
from chatpush.models.push_subscription import PushSubscription
from chatpush.models.user import User

logger = logging.getLogger(__name__)


class SubscriptionStore:
    """Persistence for web push subscriptions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_active(self, user_id: int) -> list[PushSubscription]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PushSubscription)
                .where(PushSubscription.user_id == user_id, PushSubscription.is_active.is_(True))
                .order_by(PushSubscription.created_at.desc(), PushSubscription.id.desc())
            )
            return list(result.scalars().all())

    async def list_for_user(self, user_id: int) -> list[PushSubscription]:
        """All subscriptions including inactive ones, for diagnostics."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PushSubscription).where(PushSubscription.user_id == user_id)
            )
            return list(result.scalars().all())

    async def subscribe(
        self,
        user_id: int,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: str | None = None,
        device_info: str | None = None,
    ) -> PushSubscription:
        """Create a subscription, or take over and re-activate an existing endpoint."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PushSubscription).where(PushSubscription.endpoint == endpoint)
            )
            subscription = result.scalar_one_or_none()

            if subscription:
                # Update keys in case they changed
                subscription.user_id = user_id
                subscription.p256dh_key = p256dh
                subscription.auth_key = auth
                subscription.user_agent = user_agent
                subscription.device_info = device_info
                subscription.is_active = True
                logger.info("Updated push subscription %s for user %s", subscription.id, user_id)
            else:
                subscription = PushSubscription(
                    user_id=user_id,
                    endpoint=endpoint,
                    p256dh_key=p256dh,
                    auth_key=auth,
                    user_agent=user_agent,
                    device_info=device_info,
                    is_active=True,
                )
                db.add(subscription)
                logger.info("Created push subscription for user %s", user_id)

            await db.commit()
            await db.refresh(subscription)
            return subscription

    async def unsubscribe(self, user_id: int, endpoint: str) -> bool:
        """Remove a user's subscription for ``endpoint``. Returns False if none existed."""
        async with self.session_factory() as db:
            result = await db.execute(
                delete(PushSubscription).where(
                    PushSubscription.user_id == user_id,
                    PushSubscription.endpoint == endpoint,
                )
            )
            await db.commit()
            return result.rowcount > 0

    async def deactivate(self, endpoint: str) -> bool:
        """Soft-disable a subscription without deleting it."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(PushSubscription)
                .where(PushSubscription.endpoint == endpoint)
                .values(is_active=False)
            )
            await db.commit()
            return result.rowcount > 0

    async def delete_by_id(self, subscription_id: int) -> bool:
        return await self.delete_by_ids([subscription_id]) > 0

    async def delete_by_ids(self, subscription_ids: Iterable[int]) -> int:
        ids = list(subscription_ids)
        if not ids:
            return 0
        async with self.session_factory() as db:
            result = await db.execute(
                delete(PushSubscription).where(PushSubscription.id.in_(ids))
            )
            await db.commit()
            return result.rowcount

    async def delete_by_endpoint(self, endpoint: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(PushSubscription).where(PushSubscription.endpoint == endpoint)
            )
            await db.commit()
            return result.rowcount > 0


class UserDirectory:
    """Read access to users plus management of their device tokens."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_user(self, user_id: int | str) -> User | None:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None
        async with self.session_factory() as db:
            return await db.get(User, user_id)

    async def get_tokens(self, user_id: int) -> list[DeviceToken] | None:
        """Registered tokens for a user, or None if the user does not exist."""
        user = await self.find_user(user_id)
        if user is None:
            return None
        return list(user.device_tokens)

    async def save_tokens(
        self,
        user_id: int,
        removed: Iterable[str] = (),
        touched: Iterable[str] = (),
    ) -> int:
        """Apply the outcome of one delivery round in a single transaction.

        Tokens in ``removed`` are deleted; tokens in ``touched`` get their
        ``last_used`` refreshed. Returns the number of deleted tokens.
        """
        removed = set(removed)
        touched = set(touched) - removed
        if not removed and not touched:
            return 0

        deleted = 0
        async with self.session_factory() as db:
            if removed:
                result = await db.execute(
                    delete(DeviceToken).where(
                        DeviceToken.user_id == user_id,
                        DeviceToken.token.in_(sorted(removed)),
                    )
                )
                deleted = result.rowcount
            if touched:
                await db.execute(
                    update(DeviceToken)
                    .where(DeviceToken.user_id == user_id, DeviceToken.token.in_(sorted(touched)))
                    .values(last_used=datetime.now(timezone.utc))
                )
            await db.commit()
        return deleted

    async def register_token(
        self,
        user_id: int,
        token: str,
        platform: DevicePlatform | str,
        user_agent: str | None = None,
    ) -> int | None:
        """Add or refresh a device token. Returns the user's token count, None if no such user."""
        platform = DevicePlatform(platform).value
        async with self.session_factory() as db:
            user = await db.get(User, user_id)
            if user is None:
                return None

            existing = next((t for t in user.device_tokens if t.token == token), None)
            if existing:
                existing.platform = platform
                existing.user_agent = user_agent or existing.user_agent
                existing.touch()
                logger.info("Refreshed %s device token for user %s", platform, user_id)
            else:
                new_token = DeviceToken(token=token, platform=platform, user_agent=user_agent)
                new_token.touch()
                user.device_tokens.append(new_token)
                logger.info("Registered new %s device token for user %s", platform, user_id)

            await db.commit()
            return len(user.device_tokens)

    async def unregister_token(self, user_id: int, token: str) -> int | None:
        """Remove a device token. Returns the remaining count, None if no such user."""
        async with self.session_factory() as db:
            user = await db.get(User, user_id)
            if user is None:
                return None

            user.device_tokens = [t for t in user.device_tokens if t.token != token]
            await db.commit()
            return len(user.device_tokens)
