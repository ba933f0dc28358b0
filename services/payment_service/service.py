import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from urllib.parse import urlparse

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import Settings
from shared.observability import payments_orders_total
from services.registrant_service.models import REGISTRANT_MODELS, DEFAULT_ENTITY

from .exceptions import GatewayUnavailable, InvalidOrderError, ProviderRejected
from .gateway import InstamojoGateway
from .models import PaymentRecord, PROVIDER_LOCAL, STATUS_CREATED
from .repository import PaymentRepository
from .schemas import CreateOrderRequest, CreateOrderResponse, StatusResponse, PaymentRecordResponse

logger = structlog.get_logger(__name__)

LOOPBACK_HOSTS = {"", "localhost", "127.0.0.1", "::1", "0.0.0.0"}

WEBHOOK_OMITTED_HINT = (
    "Webhook was omitted because BACKEND_ORIGIN resolves to localhost; "
    "confirmation for this order relies on polling /payment/status. "
    "Set INSTAMOJO_WEBHOOK_URL to a public HTTPS URL to receive webhooks."
)


def is_local_host(url: Optional[str]) -> bool:
    if not url:
        return True
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return True
    return host.lower() in LOOPBACK_HOSTS


def resolve_webhook_url(settings: Settings) -> Optional[str]:
    """Explicit override wins; a loopback fallback is dropped rather than sent."""
    if settings.instamojo_webhook_url:
        return settings.instamojo_webhook_url
    candidate = f"{settings.backend_origin}{settings.webhook_path}"
    if is_local_host(candidate):
        return None
    return candidate


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def entity_ref(metadata: dict, visitor_id: Optional[int]):
    """Registrant type/id an order pays for, stored on the ledger row at creation."""
    entity_type = metadata.get("entity_type")
    if entity_type not in REGISTRANT_MODELS:
        entity_type = DEFAULT_ENTITY if visitor_id else None
    try:
        entity_id = int(metadata.get("entity_id") or visitor_id)
    except (TypeError, ValueError):
        entity_id = None
    return entity_type, entity_id


class PaymentService:

    @staticmethod
    async def create_order(
        db: AsyncSession,
        data: CreateOrderRequest,
        settings: Settings,
        gateway: InstamojoGateway,
    ) -> CreateOrderResponse:
        reference_id = "" if data.reference_id is None else str(data.reference_id).strip()
        if not reference_id:
            raise InvalidOrderError("reference_id is required")

        amount = data.amount if data.amount is not None else Decimal("0")
        metadata = data.metadata or {}
        entity_type, entity_id = entity_ref(metadata, data.visitor_id)

        record = PaymentRecord(
            reference_id=reference_id,
            visitor_id=data.visitor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            amount=amount,
            currency=data.currency,
            status=STATUS_CREATED,
            metadata_=metadata,
        )

        # Free tiers and unconfigured deployments never depend on the provider
        if amount <= 0 or not settings.has_provider_credentials:
            if amount > 0:
                logger.warning("provider_credentials_missing", reference_id=reference_id)
            record.provider = PROVIDER_LOCAL
            await PaymentService._persist(db, record)
            payments_orders_total.labels(provider=PROVIDER_LOCAL, outcome="created").inc()
            return CreateOrderResponse(checkoutUrl=None, providerOrderId=None)

        webhook_url = resolve_webhook_url(settings)
        hint = None if webhook_url else WEBHOOK_OMITTED_HINT
        if not webhook_url:
            logger.warning("webhook_omitted", backend_origin=settings.backend_origin)

        params = {
            "purpose": data.description,
            "amount": format_amount(amount),
            "email": metadata.get("email") or reference_id,
            "redirect_url": data.callback_url or f"{settings.app_origin}/payment-return",
            "send_email": "false",
            "allow_repeated_payments": "false",
            "metadata": json.dumps(metadata, default=str),
        }
        if metadata.get("buyer_name"):
            params["buyer_name"] = metadata["buyer_name"]
        if webhook_url:
            params["webhook"] = webhook_url

        try:
            resp = await gateway.create_payment_request(params)
        except GatewayUnavailable:
            payments_orders_total.labels(provider=settings.provider_name, outcome="unavailable").inc()
            raise

        if not resp.ok:
            payments_orders_total.labels(provider=settings.provider_name, outcome="provider_error").inc()
            raise ProviderRejected(resp.status_code, resp.data, hint=hint)

        body = resp.data if isinstance(resp.data, dict) else {}
        payment_request = body.get("payment_request") or body
        checkout_url = payment_request.get("longurl")
        provider_order_id = payment_request.get("id")

        record.provider = settings.provider_name
        record.provider_order_id = provider_order_id
        await PaymentService._persist(db, record)

        payments_orders_total.labels(provider=settings.provider_name, outcome="created").inc()
        logger.info(
            "order_created",
            reference_id=reference_id,
            provider_order_id=provider_order_id,
            webhook_sent=bool(webhook_url),
        )
        return CreateOrderResponse(checkoutUrl=checkout_url, providerOrderId=provider_order_id, hint=hint)

    @staticmethod
    async def get_status(db: AsyncSession, reference_id: str) -> StatusResponse:
        record = await PaymentRepository.get_latest_by_reference(db, reference_id)
        # The poll may land before the create-order write does
        if not record:
            return StatusResponse(status=STATUS_CREATED)
        return StatusResponse(status=record.status, record=PaymentRecordResponse.model_validate(record))

    @staticmethod
    async def _persist(db: AsyncSession, record: PaymentRecord) -> None:
        # Ledger bookkeeping must never block the user's checkout
        try:
            await PaymentRepository.create_payment(db, record)
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("ledger_insert_failed", reference_id=record.reference_id)
