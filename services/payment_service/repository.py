from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import PaymentRecord, STATUS_CREATED


class PaymentRepository:
    @staticmethod
    async def create_payment(db: AsyncSession, payment: PaymentRecord) -> PaymentRecord:
        db.add(payment)
        await db.commit()
        await db.refresh(payment)
        return payment

    @staticmethod
    async def get_latest_by_reference(db: AsyncSession, reference_id: str) -> Optional[PaymentRecord]:
        result = await db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.reference_id == reference_id)
            .order_by(PaymentRecord.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def get_status(db: AsyncSession, payment_id: int) -> Optional[str]:
        """Current status straight from the table, bypassing any loaded instance."""
        result = await db.execute(select(PaymentRecord.status).where(PaymentRecord.id == payment_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def find_for_notification(
        db: AsyncSession,
        provider_order_id: Optional[str],
        provider_payment_id: Optional[str],
        reference_id: Optional[str],
    ) -> Optional[PaymentRecord]:
        """Locate the ledger row a notification refers to.

        Candidates are tried in tolerance order: provider order id, provider
        payment id, then reference id. The most recent row wins for each key.
        """
        candidates = (
            (PaymentRecord.provider_order_id, provider_order_id),
            (PaymentRecord.provider_payment_id, provider_payment_id),
            (PaymentRecord.reference_id, reference_id),
        )
        for column, value in candidates:
            if not value:
                continue
            result = await db.execute(
                select(PaymentRecord)
                .where(column == str(value))
                .order_by(PaymentRecord.id.desc())
                .limit(1)
            )
            record = result.scalars().first()
            if record:
                return record
        return None

    @staticmethod
    async def settle(
        db: AsyncSession,
        payment_id: int,
        status: str,
        payload: dict,
        provider_payment_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> bool:
        """Compare-and-set a terminal status onto a row still in 'created'.

        Returns False when the row was already settled by an earlier delivery.
        """
        values = {
            "status": status,
            "webhook_payload": payload,
            "received_at": func.now(),
            "updated_at": func.now(),
        }
        if provider_payment_id:
            values["provider_payment_id"] = func.coalesce(
                PaymentRecord.provider_payment_id, provider_payment_id
            )
        # Only verified provider data reaches here, and only once per row
        if amount is not None:
            values["amount"] = amount
        if currency:
            values["currency"] = currency

        result = await db.execute(
            update(PaymentRecord)
            .where(PaymentRecord.id == payment_id, PaymentRecord.status == STATUS_CREATED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    @staticmethod
    async def record_delivery(db: AsyncSession, payment_id: int, payload: dict) -> None:
        """Keep the last notification for audit without touching status or amounts."""
        await db.execute(
            update(PaymentRecord)
            .where(PaymentRecord.id == payment_id)
            .values(webhook_payload=payload, received_at=func.now(), updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
