from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config.database import create_tables
from shared.observability.setup import setup_observability
from shared.security import limiter

from .models import PaymentRecord
from .router import router, public_router


payment_app = FastAPI(title="Payment Service", version="2.0.0")

# Structured logs, OTLP traces to Jaeger, and /metrics
setup_observability(payment_app, "payment_service")

# --- SECURITY SETUP ---
payment_app.state.limiter = limiter
payment_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

payment_app.include_router(public_router)
payment_app.include_router(router)

@payment_app.on_event("startup")
async def startup_event():
    await create_tables()
