from sqlalchemy import Column, DateTime, Integer, JSON, Numeric, String
from sqlalchemy.sql import func

from shared.config.database import Base


class RegistrantMixin:
    """Columns shared by every registrant table.

    The txId / payment_* columns are a denormalized copy of ledger facts,
    written only as a side effect of webhook reconciliation.
    """

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    mobile = Column(String(32), nullable=True)
    company = Column(String(255), nullable=True)
    ticket_code = Column(String(32), nullable=True)
    ticket_category = Column(String(64), nullable=True)
    registered_at = Column(DateTime(timezone=True), server_default=func.now())

    txId = Column(String(128), nullable=True)
    payment_provider = Column(String(32), nullable=True)
    payment_status = Column(String(16), nullable=True)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_meta = Column(JSON, nullable=True)


class Visitor(RegistrantMixin, Base):
    __tablename__ = "visitors"


class Exhibitor(RegistrantMixin, Base):
    __tablename__ = "exhibitors"


class Speaker(RegistrantMixin, Base):
    __tablename__ = "speakers"


class Awardee(RegistrantMixin, Base):
    __tablename__ = "awardees"


class Partner(RegistrantMixin, Base):
    __tablename__ = "partners"


REGISTRANT_MODELS = {
    "visitors": Visitor,
    "exhibitors": Exhibitor,
    "speakers": Speaker,
    "awardees": Awardee,
    "partners": Partner,
}

DEFAULT_ENTITY = "visitors"
