import asyncio
from typing import Optional

import httpx
import structlog
from fastapi import Depends

from shared.config.settings import Settings, get_settings
from shared.observability import payments_fanout_total
from shared.security import INTERNAL_API_HEADERS

logger = structlog.get_logger(__name__)


class DownstreamNotifier:
    """Best-effort confirm/upgrade calls issued once a payment is confirmed paid.

    Every target must be idempotent: webhooks are delivered at least once.
    Nothing raised here ever reaches the webhook response.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    async def upgrade(self, entity_type: str, entity_id, new_category: str, amount, provider_tx: Optional[str]) -> bool:
        payload = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "new_category": new_category,
            "amount": float(amount) if amount is not None else None,
            "provider_tx": provider_tx,
        }
        async with self._client() as client:
            return await self._post(client, "upgrade", "/tickets/upgrade", payload)

    async def confirm(self, entity: str, entity_id, tx_id: Optional[str]) -> bool:
        async with self._client() as client:
            return await self._post(client, entity, f"/{entity}/{entity_id}/confirm", {"txId": tx_id})

    async def broadcast_confirm(self, entity_id, tx_id: Optional[str]) -> list:
        """Confirm against every registrant type; the owning type is unknown here."""
        async with self._client() as client:
            return await asyncio.gather(
                *(
                    self._post(client, entity, f"/{entity}/{entity_id}/confirm", {"txId": tx_id})
                    for entity in self.settings.registrant_entities
                )
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.registrant_url,
            headers=INTERNAL_API_HEADERS,
            timeout=self.settings.fanout_timeout,
            transport=self._transport,
        )

    async def _post(self, client: httpx.AsyncClient, target: str, path: str, payload: dict) -> bool:
        try:
            resp = await client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning("fanout_failed", target=target, path=path, error=str(e))
            payments_fanout_total.labels(target=target, result="error").inc()
            return False

        ok = resp.status_code < 300
        # 404 is the expected answer from entity types that do not own this id
        log = logger.info if ok or resp.status_code == 404 else logger.warning
        log("fanout_response", target=target, path=path, status_code=resp.status_code)
        payments_fanout_total.labels(target=target, result="ok" if ok else "error").inc()
        return ok


def get_notifier(settings: Settings = Depends(get_settings)) -> DownstreamNotifier:
    return DownstreamNotifier(settings)
