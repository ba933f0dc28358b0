import asyncio

import httpx
import pytest
import pytest_asyncio

from shared.config.settings import get_settings
from services.otp_service.mailer import OtpDeliveryError, SmtpOtpSender
from services.otp_service.main import otp_app
from services.otp_service.service import OtpError, OtpService
from services.otp_service.store import OtpRecord, OtpStore

pytestmark = pytest.mark.otp


class Clock:
    def __init__(self, start=1_000_000.0):
        self.t = start

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


class FakeSender:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def __call__(self, to_email, otp, ttl_minutes):
        if self.fail:
            raise OtpDeliveryError("smtp down")
        self.sent.append((to_email, otp, ttl_minutes))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def store(clock):
    return OtpStore(clock=clock)


@pytest.fixture
def otp(store, settings, sender):
    return OtpService(store, settings, sender)


async def test_send_stores_normalized_code(otp, store, sender):
    result = await otp.send("email", "  Asha@Example.org ", "req-1")

    assert result == {"email": "asha@example.org", "expiresInSec": 300, "resendCooldownSec": 60}
    [(to_email, code, ttl_minutes)] = sender.sent
    assert to_email == "Asha@Example.org"
    assert len(code) == 6 and code.isdigit()
    assert ttl_minutes == 5
    assert store.get("asha@example.org").otp == code


@pytest.mark.parametrize("kind, value", [("email", "not-an-email"), ("email", None), ("sms", "asha@example.org")])
async def test_send_rejects_bad_input(otp, kind, value):
    with pytest.raises(OtpError) as exc:
        await otp.send(kind, value)
    assert exc.value.status_code == 400


async def test_same_request_id_is_idempotent(otp, sender, clock):
    await otp.send("email", "asha@example.org", "req-1")
    clock.advance(10)

    result = await otp.send("email", "asha@example.org", "req-1")

    assert result["idempotent"] is True
    assert result["resendCooldownSec"] == 50
    assert len(sender.sent) == 1


async def test_resend_inside_cooldown_is_429(otp, clock):
    await otp.send("email", "asha@example.org", "req-1")
    clock.advance(20)

    with pytest.raises(OtpError) as exc:
        await otp.send("email", "asha@example.org", "req-2")

    assert exc.value.status_code == 429
    assert exc.value.retry_after == 40


async def test_send_window_limit(otp, clock):
    for i in range(5):
        await otp.send("email", "asha@example.org", f"req-{i}")
        clock.advance(61)

    with pytest.raises(OtpError) as exc:
        await otp.send("email", "asha@example.org", "req-5")
    assert exc.value.status_code == 429

    # The window rolls over after an hour
    clock.advance(3600)
    result = await otp.send("email", "asha@example.org", "req-6")
    assert result["email"] == "asha@example.org"


async def test_delivery_failure_does_not_start_cooldown(otp, sender, store):
    sender.fail = True
    with pytest.raises(OtpError) as exc:
        await otp.send("email", "asha@example.org", "req-1")
    assert exc.value.status_code == 502
    assert store.get("asha@example.org") is None

    sender.fail = False
    await otp.send("email", "asha@example.org", "req-2")
    assert len(sender.sent) == 1


async def test_verify_consumes_code(otp, sender, store):
    await otp.send("email", "asha@example.org")
    code = sender.sent[0][1]

    assert otp.verify("ASHA@example.org", code) == {"success": True, "email": "asha@example.org"}
    assert store.get("asha@example.org") is None
    assert otp.verify("asha@example.org", code)["success"] is False


async def test_wrong_code_counts_attempts_then_locks(otp, sender, store):
    await otp.send("email", "asha@example.org")
    code = sender.sent[0][1]
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(5):
        assert otp.verify("asha@example.org", wrong) == {"success": False, "error": "Incorrect OTP"}

    with pytest.raises(OtpError) as exc:
        otp.verify("asha@example.org", code)
    assert exc.value.status_code == 429
    assert store.get("asha@example.org") is None


async def test_expired_code_is_rejected(otp, sender, clock):
    await otp.send("email", "asha@example.org")
    code = sender.sent[0][1]
    clock.advance(301)

    assert otp.verify("asha@example.org", code) == {"success": False, "error": "OTP expired"}


def test_purge_drops_only_expired_records(store, clock):
    now = clock()
    store.set("old@example.org", OtpRecord("111111", now - 1, now, now, now, 1, "a"))
    store.set("new@example.org", OtpRecord("222222", now + 60, now, now, now, 1, "b"))

    assert store.purge_expired() == 1
    assert store.get("new@example.org") is not None
    assert len(store) == 1


async def test_store_lifecycle(clock):
    store = OtpStore(clock=clock, purge_interval=0.01)
    store.start()
    await asyncio.sleep(0)
    await store.stop()
    assert len(store) == 0


async def test_smtp_sender_without_host_raises(settings):
    with pytest.raises(OtpDeliveryError):
        await SmtpOtpSender(settings)("asha@example.org", "123456", 5)


@pytest_asyncio.fixture
async def otp_client(settings, sender):
    original = (otp_app.state.otp_store, otp_app.state.otp_sender)
    otp_app.state.otp_store = OtpStore()
    otp_app.state.otp_sender = sender
    otp_app.dependency_overrides[get_settings] = lambda: settings
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=otp_app), base_url="http://test") as c:
        yield c
    otp_app.dependency_overrides.clear()
    otp_app.state.otp_store, otp_app.state.otp_sender = original


async def test_http_send_and_verify(otp_client, sender):
    resp = await otp_client.post("/send", json={"type": "email", "value": "asha@example.org", "requestId": "r1"})
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "email": "asha@example.org",
        "expiresInSec": 300,
        "resendCooldownSec": 60,
    }

    code = sender.sent[0][1]
    resp = await otp_client.post("/verify", json={"value": "asha@example.org", "otp": code})
    assert resp.json() == {"success": True, "email": "asha@example.org"}


async def test_http_cooldown_reports_retry_after(otp_client):
    await otp_client.post("/send", json={"value": "asha@example.org", "requestId": "r1"})

    resp = await otp_client.post("/send", json={"value": "asha@example.org", "requestId": "r2"})

    assert resp.status_code == 429
    assert resp.json()["success"] is False
    assert resp.json()["retryAfterSec"] == 60


async def test_http_invalid_email_is_400(otp_client):
    resp = await otp_client.post("/send", json={"type": "email", "value": "nope"})
    assert resp.status_code == 400
