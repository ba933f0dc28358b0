from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, Field


class CreateOrderRequest(BaseModel):
    amount: Optional[Decimal] = None
    currency: str = "INR"
    description: str = "Ticket"
    # Optional so a missing value is a 400 from the service; numeric ids are registrant row ids
    reference_id: Optional[Union[int, str]] = None
    callback_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    visitor_id: Optional[int] = None


class CreateOrderResponse(BaseModel):
    success: bool = True
    checkoutUrl: Optional[str] = None
    providerOrderId: Optional[str] = None
    hint: Optional[str] = None


class PaymentRecordResponse(BaseModel):
    id: int
    reference_id: str
    visitor_id: Optional[int]
    entity_type: Optional[str]
    entity_id: Optional[int]
    provider: str
    provider_order_id: Optional[str]
    provider_payment_id: Optional[str]
    amount: Optional[Decimal]
    currency: Optional[str]
    status: str
    # ORM attribute is metadata_; the already-serialized form uses metadata
    metadata: Optional[dict] = Field(default=None, validation_alias=AliasChoices("metadata_", "metadata"))
    created_at: Optional[datetime]
    received_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class StatusResponse(BaseModel):
    success: bool = True
    status: str
    record: Optional[PaymentRecordResponse] = None


class WebhookAck(BaseModel):
    success: bool = True
