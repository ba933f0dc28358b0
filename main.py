from fastapi import FastAPI

from shared.config.database import create_tables

# IMPORTANT: import models so they register with Base
from services.payment_service import models as payment_models
from services.registrant_service import models as registrant_models

from services.payment_service.main import payment_app
from services.registrant_service.main import registrant_app
from services.otp_service.main import otp_app

app = FastAPI(title="Event Payments Cluster")

@app.on_event("startup")
async def startup_event():
    # Mounted sub-apps do not receive lifespan events, so the cluster owns them
    await create_tables()
    otp_app.state.otp_store.start()

@app.on_event("shutdown")
async def shutdown_event():
    await otp_app.state.otp_store.stop()

@app.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "cluster", "status": "running"}

app.mount("/payment", payment_app)
app.mount("/registrants", registrant_app)
app.mount("/otp", otp_app)
