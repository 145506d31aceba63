import pytest
from conftest import add_subscription, make_token
from httpx import ASGITransport, AsyncClient

from chatpush.main import create_app
from chatpush.routers import push as push_router

BOB = {"X-User-Id": "2"}
SUBSCRIPTION = {
    "endpoint": "https://fcm.googleapis.com/fcm/send/abc",
    "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"},
    "userAgent": "Mozilla/5.0",
    "deviceInfo": "Pixel 8",
}


@pytest.fixture
async def client(users, notifier):
    app = create_app()
    app.state.notifier = notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


async def test_vapid_public_key_not_configured(client, monkeypatch):
    monkeypatch.setattr(push_router.settings, "vapid_public_key", None)
    response = await client.get("/push/vapid-public-key")
    assert response.status_code == 501


async def test_vapid_public_key(client, monkeypatch):
    monkeypatch.setattr(push_router.settings, "vapid_public_key", "BPublicKey")
    response = await client.get("/push/vapid-public-key")
    assert response.status_code == 200
    assert response.json() == {"publicKey": "BPublicKey"}


async def test_requires_user_header(client):
    response = await client.get("/push/subscriptions")
    assert response.status_code == 401


async def test_subscribe_list_and_unsubscribe(client):
    response = await client.post("/push/subscribe", json=SUBSCRIPTION, headers=BOB)
    assert response.status_code == 201
    assert response.json()["status"] == "subscribed"

    response = await client.get("/push/subscriptions", headers=BOB)
    body = response.json()
    assert body["count"] == 1
    assert body["subscriptions"][0]["endpoint_domain"] == "fcm.googleapis.com"
    assert body["subscriptions"][0]["device_info"] == "Pixel 8"

    response = await client.post("/push/unsubscribe", json={"endpoint": SUBSCRIPTION["endpoint"]}, headers=BOB)
    assert response.status_code == 200

    response = await client.post("/push/unsubscribe", json={"endpoint": SUBSCRIPTION["endpoint"]}, headers=BOB)
    assert response.status_code == 404


async def test_subscribe_rejects_missing_keys(client):
    response = await client.post(
        "/push/subscribe",
        json={"endpoint": SUBSCRIPTION["endpoint"], "keys": {"p256dh": "x"}},
        headers=BOB,
    )
    assert response.status_code == 400


async def test_subscribe_unknown_user(client):
    response = await client.post("/push/subscribe", json=SUBSCRIPTION, headers={"X-User-Id": "999"})
    assert response.status_code == 404


async def test_device_registration(client):
    token = make_token("bob-phone")

    response = await client.post("/push/devices/register", json={"token": token, "platform": "ios"}, headers=BOB)
    assert response.status_code == 200
    assert response.json()["tokenCount"] == 1

    response = await client.get("/push/devices", headers=BOB)
    devices = response.json()["devices"]
    assert devices[0]["platform"] == "ios"
    assert devices[0]["lastUsed"] is not None

    response = await client.post("/push/devices/unregister", json={"token": token}, headers=BOB)
    assert response.json()["tokenCount"] == 0


@pytest.mark.parametrize("body", [
    {"platform": "ios"},
    {"token": "abc", "platform": "windows"},
    {"token": "abc"},
])
async def test_device_registration_validation(client, body):
    response = await client.post("/push/devices/register", json=body, headers=BOB)
    assert response.status_code == 400


async def test_send_test_notification(client, session_factory, web_provider):
    await add_subscription(session_factory, 2, "https://push.example.com/bob")

    response = await client.post("/push/test", headers=BOB)

    assert response.status_code == 200
    body = response.json()
    assert body["web"] == {"success": True, "sent": 1, "failed": 0, "total": 1}
    assert body["mobile"]["error"] == "No push tokens"
    assert len(web_provider.calls) == 1


async def test_status(client, session_factory):
    await add_subscription(session_factory, 2, "https://push.example.com/a")
    await add_subscription(session_factory, 2, "https://push.example.com/b", is_active=False)

    response = await client.get("/push/status", headers=BOB)

    body = response.json()
    assert body["vapid_configured"] is True
    assert body["firebase_configured"] is True
    assert body["circuit_breaker"]["state"] == "closed"
    assert body["subscription_count"] == 2
    assert body["active_subscription_count"] == 1
    assert body["device_count"] == 0
