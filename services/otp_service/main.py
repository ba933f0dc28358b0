from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config.settings import get_settings
from shared.observability.setup import setup_observability
from shared.security import limiter

from .mailer import SmtpOtpSender
from .router import router, public_router
from .store import OtpStore


def create_otp_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="OTP Service", version="1.0.0")

    # Structured logs, OTLP traces and /metrics
    setup_observability(app, "otp_service")

    # --- SECURITY SETUP ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Pending codes live on this app instance only
    app.state.otp_store = OtpStore(purge_interval=settings.otp_purge_interval_seconds)
    app.state.otp_sender = SmtpOtpSender(settings)

    app.include_router(public_router)
    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        app.state.otp_store.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.otp_store.stop()

    return app


otp_app = create_otp_app()
