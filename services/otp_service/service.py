import math
import re
import secrets
from typing import Awaitable, Callable, Optional

import structlog

from shared.config.settings import Settings
from shared.observability import otp_requests_total

from .mailer import OtpDeliveryError
from .store import OtpRecord, OtpStore

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")

OtpSender = Callable[[str, str, int], Awaitable[None]]


class OtpError(Exception):
    def __init__(self, message: str, status_code: int = 400, retry_after: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after


def is_valid_email(value) -> bool:
    return isinstance(value, str) and bool(EMAIL_RE.search(value))


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


class OtpService:
    def __init__(self, store: OtpStore, settings: Settings, sender: OtpSender):
        self.store = store
        self.settings = settings
        self.sender = sender

    async def send(self, kind: str, value: Optional[str], request_id: str = "") -> dict:
        if kind != "email" or not is_valid_email(value):
            raise OtpError("Provide type='email' and a valid email address")

        s = self.settings
        key = value.strip().lower()
        now = self.store.now()
        existing = self.store.get(key)

        # Same requestId inside the idempotency window: answer again, send nothing
        if (
            existing
            and request_id
            and existing.last_request_id == request_id
            and now - existing.last_sent_at < s.otp_idempotency_seconds
        ):
            otp_requests_total.labels(action="send", result="idempotent").inc()
            return {
                "email": key,
                "expiresInSec": max(0, int(existing.expires - now)),
                "resendCooldownSec": max(0, math.ceil(existing.cooldown_until - now)),
                "idempotent": True,
            }

        if existing and now < existing.cooldown_until:
            otp_requests_total.labels(action="send", result="cooldown").inc()
            raise OtpError(
                "Please wait before requesting another OTP.",
                status_code=429,
                retry_after=math.ceil(existing.cooldown_until - now),
            )

        window_start = existing.window_start if existing else now
        send_count = existing.send_count if existing else 0
        if now - window_start > s.otp_sends_window_seconds:
            window_start, send_count = now, 0
        if send_count >= s.otp_max_sends_per_window:
            otp_requests_total.labels(action="send", result="rate_limited").inc()
            raise OtpError("Too many OTP requests. Please try again later.", status_code=429)

        otp = generate_otp()
        self.store.set(
            key,
            OtpRecord(
                otp=otp,
                expires=now + s.otp_ttl_seconds,
                last_sent_at=now,
                cooldown_until=now + s.otp_resend_cooldown_seconds,
                window_start=window_start,
                send_count=send_count + 1,
                last_request_id=request_id or str(now),
            ),
        )

        try:
            await self.sender(value.strip(), otp, s.otp_ttl_seconds // 60)
        except OtpDeliveryError as e:
            # Undo so the failed attempt does not start a cooldown
            if existing:
                self.store.set(key, existing)
            else:
                self.store.delete(key)
            otp_requests_total.labels(action="send", result="delivery_failed").inc()
            raise OtpError(f"Could not deliver OTP: {e}", status_code=502) from e

        otp_requests_total.labels(action="send", result="sent").inc()
        logger.info("otp_sent", email=key)
        return {
            "email": key,
            "expiresInSec": s.otp_ttl_seconds,
            "resendCooldownSec": s.otp_resend_cooldown_seconds,
        }

    def verify(self, value: Optional[str], otp: Optional[str]) -> dict:
        if not is_valid_email(value):
            raise OtpError("Provide a valid email")

        key = value.strip().lower()
        record = self.store.get(key)
        if not record:
            otp_requests_total.labels(action="verify", result="missing").inc()
            return {"success": False, "error": "OTP not found or expired"}

        if record.expires < self.store.now():
            self.store.delete(key)
            otp_requests_total.labels(action="verify", result="expired").inc()
            return {"success": False, "error": "OTP expired"}

        if record.attempts >= self.settings.otp_max_verify_attempts:
            self.store.delete(key)
            otp_requests_total.labels(action="verify", result="locked").inc()
            raise OtpError("Too many incorrect attempts. Please request a new OTP.", status_code=429)

        candidate = str(otp or "").strip()
        if len(candidate) != 6 or not secrets.compare_digest(record.otp, candidate):
            record.attempts += 1
            otp_requests_total.labels(action="verify", result="mismatch").inc()
            return {"success": False, "error": "Incorrect OTP"}

        self.store.delete(key)
        otp_requests_total.labels(action="verify", result="ok").inc()
        return {"success": True, "email": key}
