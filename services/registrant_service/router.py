"""
Confirm / upgrade targets for the payment fan-out.

Both endpoints are internal: the router-level dependency requires the
X-Internal-API-Key header the payment service sends. Each call is idempotent,
because the payment webhook may be delivered (and fanned out) more than once.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security.dependencies import verify_internal_api_key

from .schemas import ConfirmRequest, ConfirmResponse, RegistrantResponse, UpgradeRequest
from .service import RegistrantService

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()  # For any public endpoints (e.g. health check)

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "registrant", "status": "running"}


# Declared before /{entity}/{registrant_id}/confirm so "tickets" is never read as an entity
@router.post("/tickets/upgrade", response_model=RegistrantResponse)
async def upgrade_ticket(data: UpgradeRequest, db: AsyncSession = Depends(get_db)):
    if not RegistrantService.model_for(data.entity_type):
        raise HTTPException(status_code=404, detail=f"Unknown entity type '{data.entity_type}'")
    registrant = await RegistrantService.upgrade(db, data)
    if not registrant:
        raise HTTPException(status_code=404, detail="Registrant not found")
    return registrant


@router.post("/{entity}/{registrant_id}/confirm", response_model=ConfirmResponse)
async def confirm_registrant(
    entity: str,
    registrant_id: int,
    data: ConfirmRequest,
    db: AsyncSession = Depends(get_db),
):
    if not RegistrantService.model_for(entity):
        raise HTTPException(status_code=404, detail=f"Unknown entity type '{entity}'")
    result = await RegistrantService.confirm(db, entity, registrant_id, data)
    if not result:
        raise HTTPException(status_code=404, detail="Registrant not found")
    registrant, note = result
    return ConfirmResponse(updated=RegistrantResponse.model_validate(registrant), note=note)
