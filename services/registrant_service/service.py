from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .models import REGISTRANT_MODELS
from .repository import RegistrantRepository
from .schemas import ConfirmRequest, UpgradeRequest

logger = structlog.get_logger(__name__)

CONFIRM_FIELDS = ("txId", "ticket_code", "ticket_category", "email", "name", "company", "mobile")


class RegistrantService:

    @staticmethod
    def model_for(entity: str):
        return REGISTRANT_MODELS.get(entity)

    @staticmethod
    async def confirm(db: AsyncSession, entity: str, registrant_id: int, data: ConfirmRequest):
        """Apply a whitelisted confirm payload. Returns (row, note) or None if the row is missing.

        Safe to call repeatedly: an existing ticket_code is kept unless force is set,
        and a payload that changes nothing is reported as a no-op.
        """
        model = REGISTRANT_MODELS[entity]
        existing = await RegistrantRepository.get_by_id(db, model, registrant_id)
        if not existing:
            return None

        incoming = data.model_dump(include=set(CONFIRM_FIELDS), exclude_none=True)

        if "ticket_code" in incoming:
            new_code = str(incoming["ticket_code"]).strip()
            current_code = (existing.ticket_code or "").strip()
            if not new_code:
                incoming.pop("ticket_code")
            elif current_code and not data.force and new_code != current_code:
                logger.info(
                    "ticket_code_protected",
                    entity=entity,
                    registrant_id=registrant_id,
                    existing=current_code,
                    incoming=new_code,
                )
                incoming.pop("ticket_code")

        changes = {k: v for k, v in incoming.items() if getattr(existing, k) != v}
        if not changes:
            return existing, "No changes applied (ticket_code protected if present)"

        await RegistrantRepository.update_fields(db, model, registrant_id, changes)
        await db.refresh(existing)
        logger.info("registrant_confirmed", entity=entity, registrant_id=registrant_id, fields=sorted(changes))
        return existing, None

    @staticmethod
    async def upgrade(db: AsyncSession, data: UpgradeRequest):
        """Move a registrant to a new ticket category after a verified payment."""
        model = REGISTRANT_MODELS[data.entity_type]
        existing = await RegistrantRepository.get_by_id(db, model, data.entity_id)
        if not existing:
            return None

        already_applied = (
            existing.ticket_category == data.new_category
            and existing.payment_status == "paid"
            and (data.provider_tx is None or existing.txId == data.provider_tx)
        )
        if already_applied:
            return existing

        changes = {
            "ticket_category": data.new_category,
            "payment_status": "paid",
            "paid_at": datetime.now(timezone.utc),
        }
        if data.provider_tx:
            changes["txId"] = data.provider_tx
        if data.amount is not None:
            changes["amount_paid"] = data.amount

        await RegistrantRepository.update_fields(db, model, data.entity_id, changes)
        await db.refresh(existing)
        logger.info(
            "registrant_upgraded",
            entity=data.entity_type,
            registrant_id=data.entity_id,
            new_category=data.new_category,
        )
        return existing
