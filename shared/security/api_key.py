"""
Shared secret for service-to-service calls: the payment webhook fans out to
the registrant confirm/upgrade endpoints with this key in a header.

A missing INTERNAL_API_KEY falls back to a fixed development value and warns,
so a local run without .env still starts.
"""
import os
import secrets
import warnings

INTERNAL_API_HEADER = "X-Internal-API-Key"

INTERNAL_API_KEY: str = os.getenv("INTERNAL_API_KEY", "")

if not INTERNAL_API_KEY:
    warnings.warn(
        "INTERNAL_API_KEY is not set; registrant confirm/upgrade endpoints accept "
        "a development key. Set this env var in production!",
        stacklevel=2,
    )
    INTERNAL_API_KEY = "insecure-default-change-me"

# Attached to every downstream call the payment service makes
INTERNAL_API_HEADERS = {INTERNAL_API_HEADER: INTERNAL_API_KEY}


def verify_api_key(provided_key: str) -> bool:
    """Constant-time comparison against the configured key."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), INTERNAL_API_KEY)
