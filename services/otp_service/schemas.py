from typing import Optional

from pydantic import BaseModel


class OtpSendRequest(BaseModel):
    type: str = "email"
    value: Optional[str] = None
    requestId: str = ""


class OtpSendResponse(BaseModel):
    success: bool = True
    email: str
    expiresInSec: int
    resendCooldownSec: int
    idempotent: Optional[bool] = None


class OtpVerifyRequest(BaseModel):
    value: Optional[str] = None
    otp: Optional[str] = None


class OtpVerifyResponse(BaseModel):
    success: bool
    email: Optional[str] = None
    error: Optional[str] = None
