from fastapi import FastAPI

from shared.config.database import create_tables
from shared.observability.setup import setup_observability

from .models import Visitor, Exhibitor, Speaker, Awardee, Partner
from .router import router, public_router

registrant_app = FastAPI(title="Registrant Service", version="1.0.0")

# Structured logs, OTLP traces and /metrics
setup_observability(registrant_app, "registrant_service")

registrant_app.include_router(public_router)
registrant_app.include_router(router)

@registrant_app.on_event("startup")
async def startup_event():
    await create_tables()
