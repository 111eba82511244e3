from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from gatekeeper.core.config import settings

# Clients are identified by their IP address
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


def get_client_ip(request: Request) -> str | None:
    """Client address for security logging. Proxies are expected to set X-Forwarded-For."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None
