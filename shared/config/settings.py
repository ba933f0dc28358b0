import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEFAULT_PAID_STATUSES = ("credit", "successful", "completed", "paid")
# Open payment requests: nothing has settled yet, so they are not a verdict
DEFAULT_PENDING_STATUSES = ("pending", "sent", "initiated", "created")


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_csv(name: str, default: tuple) -> tuple:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    # Payment provider (Instamojo)
    provider_name: str = "instamojo"
    instamojo_api_key: str = ""
    instamojo_auth_token: str = ""
    instamojo_api_base: str = "https://www.instamojo.com"
    instamojo_webhook_url: str = ""
    instamojo_private_salt: str = ""

    # Public origins
    app_origin: str = "http://localhost:3000"
    backend_origin: str = "http://localhost:5000"
    webhook_path: str = "/payment/webhook"

    # Downstream registrant endpoints (confirm / upgrade fan-out)
    registrant_url: str = "http://localhost:5000/registrants"

    paid_statuses: tuple = DEFAULT_PAID_STATUSES
    pending_statuses: tuple = DEFAULT_PENDING_STATUSES

    # Timeouts in seconds
    provider_create_timeout: float = 20.0
    provider_verify_timeout: float = 15.0
    fanout_timeout: float = 8.0

    # OTP policy
    otp_ttl_seconds: int = 300
    otp_resend_cooldown_seconds: int = 60
    otp_max_sends_per_window: int = 5
    otp_sends_window_seconds: int = 3600
    otp_max_verify_attempts: int = 5
    otp_idempotency_seconds: int = 120
    otp_purge_interval_seconds: int = 600

    # SMTP for OTP delivery
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    mail_from: str = ""

    registrant_entities: tuple = ("visitors", "exhibitors", "speakers", "awardees", "partners")

    @property
    def has_provider_credentials(self) -> bool:
        return bool(self.instamojo_api_key and self.instamojo_auth_token)

    @classmethod
    def from_env(cls) -> "Settings":
        backend_origin = _env(
            "BACKEND_ORIGIN", f"http://localhost:{_env('PORT', '5000')}"
        ).rstrip("/")
        return cls(
            instamojo_api_key=_env("INSTAMOJO_API_KEY"),
            instamojo_auth_token=_env("INSTAMOJO_AUTH_TOKEN"),
            instamojo_api_base=_env("INSTAMOJO_API_BASE", "https://www.instamojo.com").rstrip("/"),
            instamojo_webhook_url=_env("INSTAMOJO_WEBHOOK_URL"),
            instamojo_private_salt=_env("INSTAMOJO_PRIVATE_SALT"),
            app_origin=_env("APP_ORIGIN", "http://localhost:3000").rstrip("/"),
            backend_origin=backend_origin,
            registrant_url=_env("REGISTRANT_URL", f"{backend_origin}/registrants").rstrip("/"),
            paid_statuses=_env_csv("PROVIDER_PAID_STATUSES", DEFAULT_PAID_STATUSES),
            pending_statuses=_env_csv("PROVIDER_PENDING_STATUSES", DEFAULT_PENDING_STATUSES),
            provider_create_timeout=_env_float("PROVIDER_CREATE_TIMEOUT", 20.0),
            provider_verify_timeout=_env_float("PROVIDER_VERIFY_TIMEOUT", 15.0),
            fanout_timeout=_env_float("FANOUT_TIMEOUT", 8.0),
            otp_ttl_seconds=_env_int("OTP_TTL_SECONDS", 300),
            otp_resend_cooldown_seconds=_env_int("OTP_RESEND_COOLDOWN_SECONDS", 60),
            otp_max_sends_per_window=_env_int("OTP_MAX_SENDS_PER_WINDOW", 5),
            otp_sends_window_seconds=_env_int("OTP_SENDS_WINDOW_SECONDS", 3600),
            otp_max_verify_attempts=_env_int("OTP_MAX_VERIFY_ATTEMPTS", 5),
            otp_idempotency_seconds=_env_int("OTP_IDEMPOTENCY_SECONDS", 120),
            otp_purge_interval_seconds=_env_int("OTP_PURGE_INTERVAL_SECONDS", 600),
            smtp_host=_env("SMTP_HOST"),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=_env("SMTP_USER"),
            smtp_pass=_env("SMTP_PASS"),
            mail_from=_env("MAIL_FROM") or _env("SMTP_USER"),
        )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once. Override the dependency in tests."""
    return Settings.from_env()
