import asyncio

from conftest import add_device, fcm_error, make_token
from sqlalchemy.exc import OperationalError

from chatpush.models.device_token import DeviceToken
from chatpush.services.circuit_breaker import CircuitBreaker
from chatpush.services.mobile_push import MobilePushChannel, build_call_message, build_message
from chatpush.services.payloads import NotificationPayload, PayloadBuilder, SenderInfo

PAYLOAD = NotificationPayload(title="New message from Alice", body="hi", data={"type": "message", "messageId": "m1"})
UNAVAILABLE = "messaging/server-unavailable"


async def test_breaker_opens_after_five_failures_and_recovers(
    users, session_factory, mobile_channel, fcm_provider, clock,
):
    token = make_token("bob-phone")
    await add_device(session_factory, users["bob"], token)
    fcm_provider.failures[token] = fcm_error(UNAVAILABLE)

    for _ in range(5):
        result = await mobile_channel.send(users["bob"], PAYLOAD)
        assert result.failed == 1
    assert mobile_channel.breaker.is_open()

    calls_before = len(fcm_provider.calls)
    result = await mobile_channel.send(users["bob"], PAYLOAD)
    assert result.success is False
    assert result.error == "Circuit breaker open"
    assert len(fcm_provider.calls) == calls_before

    # Cool-down elapses and the provider is healthy again
    clock.advance(61)
    del fcm_provider.failures[token]
    result = await mobile_channel.send(users["bob"], PAYLOAD)
    assert result.success is True
    assert result.sent == 1
    assert mobile_channel.breaker.failure_count == 0


async def test_invalid_tokens_are_pruned_without_retry(users, session_factory, directory, mobile_channel, fcm_provider):
    good, bad = make_token("good"), make_token("bad")
    await add_device(session_factory, users["bob"], good)
    await add_device(session_factory, users["bob"], bad)
    fcm_provider.failures[bad] = fcm_error("messaging/registration-token-not-registered")

    result = await mobile_channel.send(users["bob"], PAYLOAD)

    assert (result.sent, result.failed, result.total) == (1, 1, 2)
    assert result.invalid_removed == 1
    assert [target for target, _ in fcm_provider.calls].count(bad) == 1
    assert mobile_channel.breaker.failure_count == 0

    tokens = await directory.get_tokens(users["bob"])
    assert [t.token for t in tokens] == [good]
    assert tokens[0].last_used is not None


async def test_transient_failures_are_retried_and_counted(users, session_factory, mobile_channel, fcm_provider):
    token = make_token("flaky")
    await add_device(session_factory, users["bob"], token)
    fcm_provider.failures[token] = fcm_error(UNAVAILABLE)

    result = await mobile_channel.send(users["bob"], PAYLOAD)

    assert result.success is False
    assert result.invalid_removed == 0
    assert len(fcm_provider.calls) == 3
    assert mobile_channel.breaker.failure_count == 1


async def test_malformed_tokens_are_filtered_out(users, session_factory, mobile_channel, fcm_provider):
    valid = make_token("valid")
    await add_device(session_factory, users["bob"], "too-short")
    await add_device(session_factory, users["bob"], "y" * 501)
    await add_device(session_factory, users["bob"], valid)

    result = await mobile_channel.send(users["bob"], PAYLOAD)

    assert result.total == 1
    assert [target for target, _ in fcm_provider.calls] == [valid]


async def test_only_malformed_tokens(users, session_factory, mobile_channel, fcm_provider):
    await add_device(session_factory, users["bob"], "too-short")

    result = await mobile_channel.send(users["bob"], PAYLOAD)

    assert result.error == "No valid push tokens"
    assert fcm_provider.calls == []


async def test_no_tokens(users, mobile_channel, fcm_provider):
    assert (await mobile_channel.send(users["bob"], PAYLOAD)).error == "No push tokens"
    assert (await mobile_channel.send(999, PAYLOAD)).error == "No push tokens"
    assert fcm_provider.calls == []


async def test_without_firebase_nothing_is_sent(users, session_factory, directory, breaker):
    await add_device(session_factory, users["bob"], make_token("phone"))
    channel = MobilePushChannel(directory, None, breaker)

    result = await channel.send(users["bob"], PAYLOAD)

    assert result.success is False
    assert result.error == "Firebase not initialized"
    assert channel.enabled is False


async def test_send_timeout_counts_as_failure(users, session_factory, directory, fcm_provider, clock):
    await add_device(session_factory, users["bob"], make_token("slow"))
    fcm_provider.delay = 0.5
    breaker = CircuitBreaker("fcm", clock=clock)
    channel = MobilePushChannel(directory, fcm_provider, breaker, send_timeout=0.01)

    result = await channel.send(users["bob"], PAYLOAD)

    assert result.failed == 1
    assert result.outcomes[0].error == "FCM request timeout"
    assert breaker.failure_count == 1


async def test_token_lookup_timeout(fcm_provider, breaker):
    class SlowDirectory:
        async def get_tokens(self, user_id):
            await asyncio.sleep(1)
            return []

    channel = MobilePushChannel(SlowDirectory(), fcm_provider, breaker, lookup_timeout=0.01)

    result = await channel.send(2, PAYLOAD)

    assert result.error == "Database query timeout"


async def test_result_reports_duration(users, session_factory, mobile_channel):
    await add_device(session_factory, users["bob"], make_token("phone"))

    result = await mobile_channel.send(users["bob"], PAYLOAD)

    assert isinstance(result.duration, int)
    assert result.to_dict()["invalidRemoved"] == 0


async def test_calls_retry_fewer_times(users, session_factory, mobile_channel, fcm_provider):
    token = make_token("ios-phone")
    await add_device(session_factory, users["bob"], token, platform="ios")
    fcm_provider.failures[token] = fcm_error(UNAVAILABLE)
    payload = PayloadBuilder().call(SenderInfo(id=1, name="Alice"), {"callId": "c1", "callType": "video"}, 2)

    result = await mobile_channel.send_call(users["bob"], payload)

    assert result.failed == 1
    assert len(fcm_provider.calls) == 2
    message = fcm_provider.calls[0][1]
    assert "notification" not in message
    assert message["data"]["type"] == "1"
    assert message["apns"]["headers"]["apns-push-type"] == "background"


def test_android_call_message_uses_incoming_calls_channel():
    payload = PayloadBuilder().call(SenderInfo(id=1, name="Alice"), {"callId": "c1"}, 2)
    message = build_call_message(DeviceToken(token=make_token("a"), platform="android"), payload)

    assert message["notification"]["title"] == "Incoming voice call"
    assert message["data"]["type"] == "call"
    android = message["android"]
    assert android["ttl"] == 60
    assert android["notification"]["channel_id"] == "incoming_calls"
    assert android["notification"]["priority"] == "max"


def test_chat_message_per_platform():
    ios = build_message(DeviceToken(token=make_token("i"), platform="ios"), PAYLOAD)
    android = build_message(DeviceToken(token=make_token("a"), platform="android"), PAYLOAD)

    assert ios["apns"]["aps"]["badge"] == 1
    assert "android" not in ios
    assert android["android"]["notification"]["channel_id"] == "chat_messages"
    assert android["data"]["click_action"] == "FLUTTER_NOTIFICATION_CLICK"
    assert android["data"]["messageId"] == "m1"


def test_token_length_bounds(mobile_channel):
    assert mobile_channel.is_valid_token("x" * 50)
    assert mobile_channel.is_valid_token("x" * 500)
    assert not mobile_channel.is_valid_token("x" * 49)
    assert not mobile_channel.is_valid_token("x" * 501)
    assert not mobile_channel.is_valid_token(None)


async def test_token_lookup_database_error(fcm_provider, breaker):
    class BrokenDirectory:
        async def get_tokens(self, user_id):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

    channel = MobilePushChannel(BrokenDirectory(), fcm_provider, breaker)

    result = await channel.send(2, PAYLOAD)
    call_result = await channel.send_call(2, PAYLOAD)

    assert result.success is False
    assert result.error == "Database query failed"
    assert call_result.success is False
    assert fcm_provider.calls == []
    assert breaker.failure_count == 0


async def test_rejected_token_codes_are_pruned(users, session_factory, directory, mobile_channel, fcm_provider):
    keep = make_token("keep")
    await add_device(session_factory, users["bob"], keep)
    for name, code in [("unregistered", "messaging/invalid-registration-token"), ("malformed", "invalid-argument")]:
        await add_device(session_factory, users["bob"], make_token(name))
        fcm_provider.failures[make_token(name)] = fcm_error(code)

    result = await mobile_channel.send(users["bob"], PAYLOAD)

    assert result.invalid_removed == 2
    assert mobile_channel.breaker.failure_count == 0
    assert [t.token for t in await directory.get_tokens(users["bob"])] == [keep]
