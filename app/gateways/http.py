"""JSON over urllib for provider APIs; maps transport failures onto the gateway error types."""
import json
import logging
import socket
from urllib.error import HTTPError, URLError
from urllib.request import Request as UrlRequest
from urllib.request import urlopen

from app.services.errors import GatewayRejected, GatewayUnavailable

log = logging.getLogger("storefront.gateways")


def _error_message(raw: bytes) -> str:
    try:
        body = json.loads(raw.decode() or "{}")
    except ValueError:
        return raw.decode(errors="replace")[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("reason") or body.get("code") or body)[:200]
    return str(body)[:200]


def request_json(
    method: str,
    url: str,
    *,
    body: bytes | None = None,
    headers: dict | None = None,
    timeout: float = 30.0,
) -> dict:
    """
    Sends body (already serialised; signatures are computed over these exact bytes)
    and returns the decoded JSON response.
    5xx, timeouts and connection errors -> GatewayUnavailable; other 4xx -> GatewayRejected.
    """
    req_headers = {"Accept": "application/json"}
    if body is not None:
        req_headers["Content-Type"] = "application/json"
    req_headers.update(headers or {})
    req = UrlRequest(url, data=body, method=method, headers=req_headers)
    try:
        with urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except HTTPError as e:
        detail = _error_message(e.read() or b"")
        if e.code >= 500 or e.code == 429:
            raise GatewayUnavailable(f"Provider error (HTTP {e.code}): {detail}") from e
        raise GatewayRejected(f"Provider rejected the request (HTTP {e.code}): {detail}") from e
    except (URLError, socket.timeout, TimeoutError, ConnectionError) as e:
        log.warning("gateway transport error: %s %s: %s", method, url, e)
        raise GatewayUnavailable(f"Payment provider unreachable: {str(e)[:80]}") from e
    try:
        data = json.loads(raw.decode() or "{}")
    except ValueError as e:
        raise GatewayUnavailable("Payment provider returned an unreadable response") from e
    if not isinstance(data, dict):
        raise GatewayUnavailable("Payment provider returned an unexpected response")
    return data
