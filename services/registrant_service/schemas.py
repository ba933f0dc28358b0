from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel


class ConfirmRequest(BaseModel):
    txId: Optional[str] = None
    ticket_code: Optional[str] = None
    ticket_category: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    mobile: Optional[str] = None
    force: bool = False


class UpgradeRequest(BaseModel):
    entity_type: str
    entity_id: int
    new_category: str
    amount: Optional[Decimal] = None
    provider_tx: Optional[str] = None


class RegistrantResponse(BaseModel):
    id: int
    name: Optional[str]
    email: Optional[str]
    mobile: Optional[str]
    company: Optional[str]
    ticket_code: Optional[str]
    ticket_category: Optional[str]
    registered_at: Optional[datetime]
    txId: Optional[str]
    payment_provider: Optional[str]
    payment_status: Optional[str]
    amount_paid: Optional[Decimal]
    paid_at: Optional[datetime]
    payment_meta: Optional[Any]

    class Config:
        from_attributes = True


class ConfirmResponse(BaseModel):
    success: bool = True
    updated: RegistrantResponse
    note: Optional[str] = None
