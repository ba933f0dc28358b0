from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from shared.config.settings import Settings, get_settings
from shared.security import limiter

from .schemas import OtpSendRequest, OtpSendResponse, OtpVerifyRequest, OtpVerifyResponse
from .service import OtpError, OtpService

router = APIRouter()
public_router = APIRouter()  # For any public endpoints (e.g. health check)


def get_otp_service(request: Request, settings: Settings = Depends(get_settings)) -> OtpService:
    """The store and sender belong to the app instance, not to the module."""
    return OtpService(request.app.state.otp_store, settings, request.app.state.otp_sender)


def otp_error_response(e: OtpError) -> JSONResponse:
    content = {"success": False, "error": e.message}
    if e.retry_after is not None:
        content["retryAfterSec"] = e.retry_after
    return JSONResponse(status_code=e.status_code, content=content)


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "otp", "status": "running"}


@router.post("/send", response_model=OtpSendResponse, response_model_exclude_none=True)
@limiter.limit("20/minute")
async def send_otp(
    request: Request,                          # REQUIRED: slowapi needs this to check IP/Headers
    payload: OtpSendRequest,
    service: OtpService = Depends(get_otp_service),
):
    try:
        return await service.send(payload.type, payload.value, payload.requestId)
    except OtpError as e:
        return otp_error_response(e)


@router.post("/verify", response_model=OtpVerifyResponse, response_model_exclude_none=True)
@limiter.limit("30/minute")
async def verify_otp(
    request: Request,
    payload: OtpVerifyRequest,
    service: OtpService = Depends(get_otp_service),
):
    try:
        return service.verify(payload.value, payload.otp)
    except OtpError as e:
        return otp_error_response(e)
