"""Shared fixtures: in-memory database, fake push providers and a manual clock."""

import asyncio
import os

# Keep settings away from a real database and real credentials
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.pop("VAPID_PUBLIC_KEY", None)
os.environ.pop("VAPID_PRIVATE_KEY", None)
os.environ.pop("FIREBASE_CREDENTIALS", None)
os.environ.pop("FIREBASE_CREDENTIALS_FILE", None)

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from chatpush.db import create_tables
from chatpush.models import DeviceToken, PushSubscription, User
from chatpush.services.circuit_breaker import CircuitBreaker
from chatpush.services.failures import ProviderError
from chatpush.services.mobile_push import MobilePushChannel, _retryable
from chatpush.services.notifier import PushNotifier
from chatpush.services.registry import SubscriptionStore, UserDirectory
from chatpush.services.retry import RetryPolicy, exponential_backoff
from chatpush.services.web_push import WebPushChannel


def make_token(name: str) -> str:
    """FCM-looking token long enough to pass the length filter."""
    return f"{name}:" + "x" * 80


def gone(status_code: int = 410) -> ProviderError:
    return ProviderError(f"Push failed: {status_code}", status_code=status_code)


def fcm_error(code: str) -> ProviderError:
    return ProviderError(f"FCM error: {code}", code=code)


class FakeWebPushProvider:
    """Records every send; ``failures`` maps endpoint -> exception to raise."""

    def __init__(self):
        self.calls = []
        self.failures = {}

    async def send(self, target, message):
        endpoint = target["endpoint"]
        self.calls.append((endpoint, message))
        if endpoint in self.failures:
            raise self.failures[endpoint]
        return f"https://push.example.com/messages/{len(self.calls)}"


class FakeFcmProvider:
    """Records every send; ``failures`` maps token -> exception raised on every attempt."""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.delay = 0.0

    async def send(self, target, message):
        self.calls.append((target, message))
        if self.delay:
            await asyncio.sleep(self.delay)
        if target in self.failures:
            raise self.failures[target]
        return f"projects/test/messages/{len(self.calls)}"


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def users(session_factory):
    """Alice (with avatar), Bob, and a user without a name."""
    async with session_factory() as db:
        db.add_all([
            User(id=1, fullname="Alice", profile_pic="https://cdn.example.com/alice.png"),
            User(id=2, fullname="Bob"),
            User(id=3, fullname=""),
        ])
        await db.commit()
    return {"alice": 1, "bob": 2, "nameless": 3}


async def add_subscription(session_factory, user_id: int, endpoint: str, is_active: bool = True) -> int:
    async with session_factory() as db:
        sub = PushSubscription(
            user_id=user_id,
            endpoint=endpoint,
            p256dh_key="BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM",
            auth_key="tBHItJI5svbpez7KI4CCXg",
            is_active=is_active,
        )
        db.add(sub)
        await db.commit()
        return sub.id


async def add_device(session_factory, user_id: int, token: str, platform: str = "android") -> None:
    async with session_factory() as db:
        db.add(DeviceToken(user_id=user_id, token=token, platform=platform))
        await db.commit()


@pytest.fixture
def store(session_factory):
    return SubscriptionStore(session_factory)


@pytest.fixture
def directory(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def web_provider():
    return FakeWebPushProvider()


@pytest.fixture
def fcm_provider():
    return FakeFcmProvider()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("fcm", threshold=5, timeout=60.0, clock=clock)


@pytest.fixture
def web_channel(store, web_provider):
    return WebPushChannel(store, web_provider)


@pytest.fixture
def mobile_channel(directory, fcm_provider, breaker):
    return MobilePushChannel(
        directory,
        fcm_provider,
        breaker,
        retry_policy=RetryPolicy(
            max_attempts=3, backoff=exponential_backoff(0.1), is_retryable=_retryable, sleep=no_sleep,
        ),
        call_retry_policy=RetryPolicy(
            max_attempts=2, backoff=exponential_backoff(0.05), is_retryable=_retryable, sleep=no_sleep,
        ),
    )


@pytest.fixture
def notifier(directory, web_channel, mobile_channel):
    return PushNotifier(directory, web_channel, mobile_channel)
