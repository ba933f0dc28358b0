import os
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

def client_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Registration and OTP endpoints are anonymous, so the client's IP address
    is the only stable key (handles proxies if X-Forwarded-For is set correctly by Uvicorn).
    """
    return f"ip:{get_remote_address(request)}"

# RATE_LIMIT_ENABLED=false turns every limit into a no-op (local runs, tests)
limiter = Limiter(
    key_func=client_ip,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false",
)
