"""Operator auth: X-Admin-Secret header, compared in constant time."""
import hmac

from fastapi import Header

from app.core.config import settings
from app.services.errors import Forbidden, StorefrontError


def _admin_secret_constant_time_compare(provided: str | None, expected: str | None) -> bool:
    """Timing-safe comparison; leaks nothing about the expected value."""
    p = (provided or "").encode("utf-8")
    e = (expected or "").encode("utf-8")
    if len(p) != len(e):
        # Compare equal-length buffers anyway so the timing does not depend on where they differ
        dummy = b"\x00" * max(len(p), len(e))
        hmac.compare_digest(p if len(p) >= len(e) else dummy[: len(p)], e if len(e) >= len(p) else dummy[: len(e)])
        return False
    return hmac.compare_digest(p, e)


def require_admin(x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise StorefrontError("Operator actions are disabled (ADMIN_SECRET is not set).", code="admin_disabled", status_code=503)
    if not _admin_secret_constant_time_compare(x_admin_secret, expected):
        raise Forbidden("Not authorized.")
