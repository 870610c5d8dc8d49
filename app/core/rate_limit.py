"""Per-IP rate limiting (SlowAPI) for checkout and wallet deposits; X-Forwarded-For aware."""
from fastapi import Request

from slowapi import Limiter

from app.core.config import settings


def _get_client_ip(request: Request) -> str:
    """Real client IP behind a proxy (Nginx, load balancer)."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def checkout_limit() -> str:
    # Read per request so the limit follows the current settings
    return f"{settings.rate_limit_checkout_per_minute}/minute"


def verify_limit() -> str:
    # Each verify call can reach the provider API
    return f"{settings.rate_limit_per_minute}/minute"


limiter = Limiter(key_func=_get_client_ip)
