from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession


class RegistrantRepository:
    @staticmethod
    async def get_by_id(db: AsyncSession, model, registrant_id: int):
        result = await db.execute(select(model).where(model.id == registrant_id))
        return result.scalars().first()

    @staticmethod
    async def get_latest_by_email(db: AsyncSession, model, email: str):
        result = await db.execute(
            select(model).where(model.email == email).order_by(model.id.desc()).limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def update_fields(db: AsyncSession, model, registrant_id: int, fields: dict) -> None:
        await db.execute(
            update(model)
            .where(model.id == registrant_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    @staticmethod
    async def apply_payment_view(
        db: AsyncSession,
        model,
        registrant_id: int,
        tx_id: Optional[str],
        provider: str,
        status: str,
        amount: Optional[Decimal],
        meta: dict,
    ) -> bool:
        """Project a reconciled payment onto a registrant row.

        A row already marked paid is never turned into failed by a stale delivery.
        """
        values = {
            "txId": tx_id,
            "payment_provider": provider,
            "payment_status": status,
            "payment_meta": meta,
        }
        if amount is not None:
            values["amount_paid"] = amount
        if status == "paid":
            values["paid_at"] = datetime.now(timezone.utc)

        stmt = update(model).where(model.id == registrant_id)
        if status != "paid":
            stmt = stmt.where(or_(model.payment_status.is_(None), model.payment_status != "paid"))
        result = await db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1
