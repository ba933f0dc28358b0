from sqlalchemy import Column, DateTime, Integer, JSON, Numeric, String
from sqlalchemy.sql import func

from shared.config.database import Base

PROVIDER_LOCAL = "local"

STATUS_CREATED = "created"
STATUS_PAID = "paid"
STATUS_FAILED = "failed"


class PaymentRecord(Base):
    """One row per payment attempt; mutated only by webhook reconciliation."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    # Not unique: a registrant may start several checkout attempts with one reference
    reference_id = Column(String(128), nullable=False, index=True)
    visitor_id = Column(Integer, nullable=True)
    entity_type = Column(String(32), nullable=True)
    entity_id = Column(Integer, nullable=True)
    provider = Column(String(32), nullable=False) # local, instamojo
    provider_order_id = Column(String(128), nullable=True, index=True)
    provider_payment_id = Column(String(128), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(8), nullable=True)
    status = Column(String(16), nullable=False, default=STATUS_CREATED) # created, paid, failed
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)
    webhook_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    received_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
