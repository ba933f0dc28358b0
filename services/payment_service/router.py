"""
Public payment endpoints.

create-order and status are called by the registration frontend; webhook is
called by the provider and always answers 200 so the provider stops retrying.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.config.database import get_db
from shared.config.settings import Settings, get_settings
from shared.security import limiter

from .exceptions import GatewayUnavailable, InvalidOrderError, ProviderRejected
from .fanout import DownstreamNotifier, get_notifier
from .gateway import InstamojoGateway, get_gateway
from .reconciliation import WebhookReconciler
from .schemas import CreateOrderRequest, CreateOrderResponse, StatusResponse, WebhookAck
from .service import PaymentService

logger = structlog.get_logger(__name__)

router = APIRouter()
public_router = APIRouter()  # For any public endpoints (e.g. health check)

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@router.post("/create-order", response_model=CreateOrderResponse)
@limiter.limit("30/minute")
async def create_order(
    request: Request,                          # REQUIRED: slowapi needs this to check IP/Headers
    payload: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: InstamojoGateway = Depends(get_gateway),
):
    try:
        return await PaymentService.create_order(db, payload, settings, gateway)
    except InvalidOrderError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayUnavailable as e:
        return JSONResponse(
            status_code=502,
            content={"success": False, "error": "Failed to contact payment provider", "details": str(e)},
        )
    except ProviderRejected as e:
        content = {
            "success": False,
            "error": "Payment provider rejected the order",
            "provider_error": {"status": e.status_code, "data": e.data},
        }
        if e.hint:
            content["hint"] = e.hint
        return JSONResponse(status_code=502, content=content)


@router.get("/status", response_model=StatusResponse, response_model_exclude_none=True)
async def payment_status(
    reference_id: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    if not reference_id:
        raise HTTPException(status_code=400, detail="reference_id required")
    return await PaymentService.get_status(db, reference_id)


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: InstamojoGateway = Depends(get_gateway),
    notifier: DownstreamNotifier = Depends(get_notifier),
):
    # Raw body: the provider may post JSON or form-urlencoded
    raw_body = await request.body()
    reconciler = WebhookReconciler(db, settings, gateway, notifier)
    try:
        await reconciler.reconcile(raw_body)
    except Exception:
        # The contract with the provider is "received", not "fully processed"
        logger.exception("webhook_processing_failed")
    return WebhookAck()
