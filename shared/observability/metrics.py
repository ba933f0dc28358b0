from prometheus_client import Counter, Histogram

# Business Metrics
payments_orders_total = Counter(
    "payments_orders_total",
    "Total create-order calls handled",
    ["provider", "outcome"] # Labels: provider='local'|'instamojo', outcome='created'|'provider_error'|'unavailable'
)

payments_provider_latency_seconds = Histogram(
    "payments_provider_latency_seconds",
    "Latency of payment provider API calls in seconds",
    ["operation"] # Labels: 'create_payment_request', 'get_payment', 'get_payment_request'
)

payments_webhooks_total = Counter(
    "payments_webhooks_total",
    "Total webhook deliveries processed",
    ["outcome"] # Labels: 'transitioned', 'already_settled', 'not_found', 'unconfirmed', 'ledger_error', 'rejected'
)

payments_verifications_total = Counter(
    "payments_verifications_total",
    "Provider re-verification results",
    ["result"] # Labels: 'paid', 'failed', 'unconfirmed'
)

payments_fanout_total = Counter(
    "payments_fanout_total",
    "Downstream confirm/upgrade calls issued after settlement",
    ["target", "result"] # Labels: target='upgrade'|'visitors'|..., result='ok'|'error'
)

otp_requests_total = Counter(
    "otp_requests_total",
    "OTP send/verify requests",
    ["action", "result"]
)
