"""
Webhook reconciliation: converge the payments ledger and the registrant
tables with what the provider says actually happened.

The notification body is only a hint about *which* payment changed. Truth
comes from re-querying the provider; anything that cannot be verified is
treated as unconfirmed and never produces a "paid" status. Ledger rows move
created -> paid|failed exactly once (compare-and-set on status), so replayed
or concurrent deliveries for the same payment are no-ops.

The ledger write, the registrant write and the downstream fan-out share no
transaction. Each is best-effort and logged; the provider always gets a 200.
"""
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from urllib.parse import parse_qsl

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import Settings
from shared.observability import payments_verifications_total, payments_webhooks_total
from services.registrant_service.models import REGISTRANT_MODELS, DEFAULT_ENTITY
from services.registrant_service.repository import RegistrantRepository

from .exceptions import GatewayUnavailable
from .fanout import DownstreamNotifier
from .gateway import InstamojoGateway
from .models import PaymentRecord, STATUS_FAILED, STATUS_PAID
from .repository import PaymentRepository

logger = structlog.get_logger(__name__)

TRANSITIONED = "transitioned"
ALREADY_SETTLED = "already_settled"
NOT_FOUND = "not_found"
UNCONFIRMED = "unconfirmed"
LEDGER_ERROR = "ledger_error"
REJECTED = "rejected"


@dataclass
class Notification:
    payload: dict
    payment_id: Optional[str] = None
    payment_request_id: Optional[str] = None
    reference_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class Verification:
    confirmed: bool = False
    paid: bool = False
    provider_payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def status(self) -> str:
        return STATUS_PAID if self.paid else STATUS_FAILED

    @property
    def tx_id(self) -> Optional[str]:
        return self.provider_payment_id or self.provider_order_id


def parse_payload(raw: bytes) -> dict:
    """JSON object, else form-urlencoded, else empty. Never raises."""
    text = raw.decode("utf-8", errors="replace") if raw else ""
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass
    if "=" not in text:
        return {}
    return dict(parse_qsl(text, keep_blank_values=True))


def verify_mac(payload: dict, salt: str) -> bool:
    """Instamojo MAC: HMAC-SHA1 over values joined by '|', keys sorted case-insensitively."""
    provided = str(payload.get("mac") or "")
    keys = sorted((k for k in payload if k != "mac"), key=str.lower)
    message = "|".join(str(payload[k]) for k in keys)
    computed = hmac.new(salt.encode(), message.encode(), hashlib.sha1).hexdigest()
    return hmac.compare_digest(computed, provided)


def _nested_id(payload: dict, key: str) -> Optional[str]:
    value = payload.get(key)
    return value.get("id") if isinstance(value, dict) else None


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _as_dict(value: Any) -> dict:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def extract_notification(payload: dict) -> Notification:
    return Notification(
        payload=payload,
        payment_id=payload.get("payment_id") or _nested_id(payload, "payment"),
        payment_request_id=payload.get("payment_request_id") or _nested_id(payload, "payment_request"),
        reference_id=str(payload["reference_id"]) if payload.get("reference_id") else None,
        email=payload.get("email") or payload.get("buyer"),
    )


@dataclass
class LedgerRef:
    """Plain snapshot of the matched ledger row, safe to read after commits or rollbacks."""

    id: int
    reference_id: Optional[str]
    entity_type: Optional[str]
    entity_id: Optional[int]
    visitor_id: Optional[int]
    amount: Optional[Decimal]
    metadata: dict
    status: Optional[str] = None

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "LedgerRef":
        return cls(
            id=record.id,
            reference_id=record.reference_id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            visitor_id=record.visitor_id,
            amount=record.amount,
            metadata=_as_dict(record.metadata_),
            status=record.status,
        )


class WebhookReconciler:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        gateway: InstamojoGateway,
        notifier: DownstreamNotifier,
    ):
        self.db = db
        self.settings = settings
        self.gateway = gateway
        self.notifier = notifier

    async def reconcile(self, raw_body: bytes) -> str:
        payload = parse_payload(raw_body)

        salt = self.settings.instamojo_private_salt
        if salt and payload.get("mac") and not verify_mac(payload, salt):
            logger.warning("webhook_mac_mismatch", payment_id=payload.get("payment_id"))
            payments_webhooks_total.labels(outcome=REJECTED).inc()
            return REJECTED

        notification = extract_notification(payload)
        log = logger.bind(
            payment_id=notification.payment_id,
            payment_request_id=notification.payment_request_id,
            reference_id=notification.reference_id,
        )
        log.info("webhook_received")

        verification = await self.verify(notification)
        payments_verifications_total.labels(
            result=(verification.status if verification.confirmed else UNCONFIRMED)
        ).inc()

        ledger, outcome = await self.write_ledger(notification, verification)
        log.info("ledger_reconciled", outcome=outcome, paid=verification.paid)

        # The settled ledger status wins over a delivery that disagrees with it
        contradicts_ledger = outcome == ALREADY_SETTLED and ledger.status != verification.status
        if contradicts_ledger:
            log.info("registrant_update_skipped", settled_status=ledger.status, verified_status=verification.status)
        elif verification.confirmed:
            await self.update_registrant(notification, verification, ledger)

        if verification.paid and outcome in (TRANSITIONED, NOT_FOUND, LEDGER_ERROR):
            await self.fan_out(notification, verification, ledger)

        payments_webhooks_total.labels(outcome=outcome).inc()
        return outcome

    async def verify(self, notification: Notification) -> Verification:
        """Re-query the provider. Errors, timeouts and non-2xx answers stay unconfirmed."""
        unconfirmed = Verification(
            provider_payment_id=notification.payment_id,
            provider_order_id=notification.payment_request_id,
        )
        try:
            if notification.payment_id:
                resp = await self.gateway.get_payment(notification.payment_id)
            elif notification.payment_request_id:
                resp = await self.gateway.get_payment_request(notification.payment_request_id)
            else:
                logger.info("webhook_without_provider_ids")
                return unconfirmed
        except GatewayUnavailable as e:
            logger.warning("verification_unavailable", error=str(e))
            return unconfirmed

        if not resp.ok or not isinstance(resp.data, dict):
            return unconfirmed
        return self.derive(resp.data, unconfirmed)

    def derive(self, data: dict, base: Verification) -> Verification:
        """Only a paid status or a final non-paid status is a verdict; open requests stay unconfirmed."""
        paid_statuses = self.settings.paid_statuses
        pending_statuses = self.settings.pending_statuses
        result = Verification(
            provider_payment_id=base.provider_payment_id,
            provider_order_id=base.provider_order_id,
        )

        payment = data.get("payment") if isinstance(data.get("payment"), dict) else None
        payment_request = data.get("payment_request") if isinstance(data.get("payment_request"), dict) else None

        if payment and payment.get("status"):
            status = str(payment["status"]).lower()
            if status not in pending_statuses:
                result.confirmed = True
                result.paid = status in paid_statuses
            result.provider_payment_id = payment.get("payment_id") or payment.get("id") or result.provider_payment_id
            result.provider_order_id = payment.get("payment_request") or result.provider_order_id
            result.amount = _to_decimal(payment.get("amount"))
            result.currency = payment.get("currency")
            result.metadata = _as_dict(payment.get("metadata"))

        if not result.paid and payment_request and payment_request.get("status"):
            status = str(payment_request["status"]).lower()
            result.provider_order_id = payment_request.get("id") or result.provider_order_id
            result.amount = _to_decimal(payment_request.get("amount")) or result.amount
            result.currency = payment_request.get("currency") or result.currency
            result.metadata = result.metadata or _as_dict(payment_request.get("metadata"))

            for attempt in payment_request.get("payments") or []:
                if isinstance(attempt, dict) and str(attempt.get("status", "")).lower() in paid_statuses:
                    result.confirmed = True
                    result.paid = True
                    result.provider_payment_id = attempt.get("payment_id") or attempt.get("id") or result.provider_payment_id
                    break

            if not result.paid and status not in pending_statuses:
                result.confirmed = True
                result.paid = status in paid_statuses

        return result

    async def write_ledger(self, notification: Notification, verification: Verification):
        ledger = None
        try:
            record = await PaymentRepository.find_for_notification(
                self.db,
                verification.provider_order_id,
                verification.provider_payment_id,
                notification.reference_id,
            )
            if not record:
                return None, NOT_FOUND
            ledger = LedgerRef.from_record(record)

            if not verification.confirmed:
                await PaymentRepository.record_delivery(self.db, ledger.id, notification.payload)
                return ledger, UNCONFIRMED

            transitioned = await PaymentRepository.settle(
                self.db,
                ledger.id,
                verification.status,
                notification.payload,
                provider_payment_id=verification.provider_payment_id,
                amount=verification.amount,
                currency=verification.currency,
            )
            if not transitioned:
                await PaymentRepository.record_delivery(self.db, ledger.id, notification.payload)
                ledger.status = await PaymentRepository.get_status(self.db, ledger.id)
                return ledger, ALREADY_SETTLED
            return ledger, TRANSITIONED
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("ledger_write_failed")
            return ledger, LEDGER_ERROR

    def _entity_type(self, verification: Verification, ledger: Optional[LedgerRef]) -> str:
        if ledger and ledger.entity_type in REGISTRANT_MODELS:
            return ledger.entity_type
        candidate = verification.metadata.get("entity_type")
        return candidate if candidate in REGISTRANT_MODELS else DEFAULT_ENTITY

    async def find_registrant_id(
        self, model, notification: Notification, ledger: Optional[LedgerRef]
    ) -> Optional[int]:
        """First match wins: numeric reference id, ledger-linked id, then email."""
        reference_id = notification.reference_id or (ledger.reference_id if ledger else None)
        if reference_id and str(reference_id).isdigit():
            if await RegistrantRepository.get_by_id(self.db, model, int(reference_id)):
                return int(reference_id)

        linked_id = (ledger.entity_id or ledger.visitor_id) if ledger else None
        if linked_id and await RegistrantRepository.get_by_id(self.db, model, linked_id):
            return linked_id

        if notification.email:
            registrant = await RegistrantRepository.get_latest_by_email(self.db, model, notification.email)
            if registrant:
                return registrant.id
        return None

    async def update_registrant(
        self, notification: Notification, verification: Verification, ledger: Optional[LedgerRef]
    ) -> None:
        entity_type = self._entity_type(verification, ledger)
        model = REGISTRANT_MODELS[entity_type]
        try:
            registrant_id = await self.find_registrant_id(model, notification, ledger)
            if not registrant_id:
                logger.info("registrant_not_matched", entity=entity_type)
                return
            applied = await RegistrantRepository.apply_payment_view(
                self.db,
                model,
                registrant_id,
                tx_id=verification.tx_id,
                provider=self.settings.provider_name,
                status=verification.status,
                amount=verification.amount,
                meta=notification.payload,
            )
            logger.info(
                "registrant_payment_view_updated",
                entity=entity_type,
                registrant_id=registrant_id,
                status=verification.status,
                applied=applied,
            )
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("registrant_update_failed", entity=entity_type)

    async def fan_out(
        self, notification: Notification, verification: Verification, ledger: Optional[LedgerRef]
    ) -> None:
        metadata = (
            verification.metadata
            or (ledger.metadata if ledger else {})
            or _as_dict(notification.payload.get("metadata"))
        )
        entity_type = (ledger.entity_type if ledger else None) or metadata.get("entity_type")
        entity_id = (ledger.entity_id if ledger else None) or metadata.get("entity_id")
        tx_id = verification.tx_id

        try:
            if metadata.get("new_category"):
                if not entity_id:
                    logger.warning("upgrade_skipped_without_entity", new_category=metadata["new_category"])
                    return
                amount = verification.amount
                if amount is None and ledger:
                    amount = ledger.amount
                await self.notifier.upgrade(
                    entity_type or DEFAULT_ENTITY, entity_id, metadata["new_category"], amount, tx_id
                )
            elif entity_type in REGISTRANT_MODELS and entity_id:
                await self.notifier.confirm(entity_type, entity_id, tx_id)
            else:
                reference_id = notification.reference_id or (ledger.reference_id if ledger else None)
                # Confirm targets are addressed by numeric row id
                if reference_id and str(reference_id).isdigit():
                    await self.notifier.broadcast_confirm(reference_id, tx_id)
                else:
                    logger.info("broadcast_skipped_non_numeric_reference", reference_id=reference_id)
        except Exception:
            # Fan-out is best-effort; the webhook response must not depend on it
            logger.exception("fanout_unexpected_error")
