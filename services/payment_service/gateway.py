"""
Thin async client for the Instamojo v1.1 API.

Every call is a single authenticated request with a bounded timeout. Any HTTP
status comes back as a GatewayResponse so callers can log provider-side
diagnostics; only transport failures (connect errors, timeouts) raise
GatewayUnavailable.
"""
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog
from fastapi import Depends

from shared.config.settings import Settings, get_settings
from shared.observability import payments_provider_latency_seconds

from .exceptions import GatewayUnavailable

logger = structlog.get_logger(__name__)


def mask(secret: str) -> str:
    return f"{secret[:4]}...{secret[-4:]}" if secret and len(secret) > 8 else "****"


@dataclass
class GatewayResponse:
    status_code: int
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class InstamojoGateway:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        # Tests inject an httpx.MockTransport here
        self._transport = transport

    @property
    def headers(self) -> dict:
        return {
            "X-Api-Key": self.settings.instamojo_api_key,
            "X-Auth-Token": self.settings.instamojo_auth_token,
        }

    async def create_payment_request(self, params: dict) -> GatewayResponse:
        """POST /api/1.1/payment-requests/ with a form-encoded body."""
        return await self._request(
            "create_payment_request",
            "POST",
            "/api/1.1/payment-requests/",
            timeout=self.settings.provider_create_timeout,
            data=params,
        )

    async def get_payment(self, payment_id: str) -> GatewayResponse:
        return await self._request(
            "get_payment",
            "GET",
            f"/api/1.1/payments/{quote(str(payment_id), safe='')}/",
            timeout=self.settings.provider_verify_timeout,
        )

    async def get_payment_request(self, payment_request_id: str) -> GatewayResponse:
        return await self._request(
            "get_payment_request",
            "GET",
            f"/api/1.1/payment-requests/{quote(str(payment_request_id), safe='')}/",
            timeout=self.settings.provider_verify_timeout,
        )

    async def _request(self, operation: str, method: str, path: str, timeout: float, **kwargs) -> GatewayResponse:
        url = f"{self.settings.instamojo_api_base}{path}"
        logger.info(
            "provider_request",
            operation=operation,
            method=method,
            url=url,
            api_key=mask(self.settings.instamojo_api_key),
        )
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                headers=self.headers, timeout=timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("provider_unreachable", operation=operation, error=str(e))
            raise GatewayUnavailable(f"{operation} failed: {e}") from e
        finally:
            payments_provider_latency_seconds.labels(operation=operation).observe(
                time.perf_counter() - started
            )

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        result = GatewayResponse(status_code=resp.status_code, data=data)
        if not result.ok:
            logger.warning(
                "provider_non_2xx",
                operation=operation,
                status_code=resp.status_code,
                body=data,
            )
        return result


def get_gateway(settings: Settings = Depends(get_settings)) -> InstamojoGateway:
    return InstamojoGateway(settings)
