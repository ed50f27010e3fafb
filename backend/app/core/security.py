"""HMAC-signed object links for the local storage backend, metrics secret check."""
import hashlib
import hmac
import time

from app.core.config import get_settings


def _sign(message: str) -> str:
    return hmac.new(
        get_settings().secret_key.encode(),
        message.encode(),
        hashlib.sha256,
    ).hexdigest()


def create_object_link_signature(key: str, ttl_seconds: int) -> tuple[int, str]:
    """Return (expires_ts, signature) granting read access to key until expires_ts."""
    expires = int(time.time()) + max(1, ttl_seconds)
    return expires, _sign(f"GET:{key}:{expires}")


def verify_object_link_signature(key: str, expires: int | str | None, signature: str | None) -> bool:
    """Verify signature and expiry for a link minted by create_object_link_signature."""
    if expires is None or not signature:
        return False
    try:
        expires_ts = int(expires)
    except (ValueError, TypeError):
        return False
    expected = _sign(f"GET:{key}:{expires_ts}")
    if not hmac.compare_digest(signature, expected):
        return False
    return time.time() <= expires_ts


def verify_metrics_secret(header_value: str | None) -> bool:
    secret = get_settings().metrics_secret
    if not secret:
        return True
    if not header_value:
        return False
    return hmac.compare_digest(header_value, secret)
