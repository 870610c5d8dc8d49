"""HMAC helpers shared by the provider adapters."""
import hashlib
import hmac
import json


def hmac_sha512_hex(key: str, data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode()
    return hmac.new(key.encode(), data, hashlib.sha512).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    """Timing-safe; a missing or empty signature never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(expected.lower().encode(), provided.strip().lower().encode())


def canonical_json(payload: dict) -> bytes:
    """Compact JSON, the byte form that gets signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode()
