from .setup import setup_observability
from .metrics import (
    payments_orders_total,
    payments_provider_latency_seconds,
    payments_webhooks_total,
    payments_verifications_total,
    payments_fanout_total,
    otp_requests_total
)
