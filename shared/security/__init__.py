from .api_key import verify_api_key, INTERNAL_API_HEADER, INTERNAL_API_HEADERS
from .dependencies import verify_internal_api_key
from .rate_limiter import limiter, client_ip

__all__ = [
    "verify_api_key",
    "INTERNAL_API_HEADER",
    "INTERNAL_API_HEADERS",
    "verify_internal_api_key",
    "limiter",
    "client_ip"
]
