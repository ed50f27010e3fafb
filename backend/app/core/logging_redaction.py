"""Redact sensitive data from structured logs. Never log credentials or presigned link signatures."""
import re
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# Keys (case-insensitive) that must be redacted in dicts
REDACT_KEYS = frozenset({
    "password", "token", "secret", "authorization", "cookie",
    "access_key", "secret_key", "api_key", "signature", "credential",
})

# Query parameters of presigned URLs that grant access on their own
_SIGNED_QUERY_PARAMS = frozenset({
    "x-amz-signature", "x-amz-credential", "x-amz-security-token", "signature",
})


def _redact_key(key: str) -> bool:
    k = key.lower()
    return any(r in k for r in REDACT_KEYS)


def redact_url(url: str) -> str:
    """Keep scheme/host/path of a presigned URL, blank out its signing parameters."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (k, "[REDACTED]" if k.lower() in _SIGNED_QUERY_PARAMS else v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="[]")))


def redact_for_log(obj: Any) -> Any:
    """Return a copy of obj safe for logging: sensitive keys replaced with '[REDACTED]'."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if _redact_key(k) else redact_for_log(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_for_log(x) for x in obj)
    if isinstance(obj, str):
        if _looks_like_secret(obj):
            return "[REDACTED]"
        if _looks_like_signed_url(obj):
            return redact_url(obj)
    return obj


def _looks_like_signed_url(s: str) -> bool:
    lowered = s.lower()
    return lowered.startswith(("http://", "https://")) and any(f"{p}=" in lowered for p in _SIGNED_QUERY_PARAMS)


def _looks_like_secret(s: str) -> bool:
    """Heuristic: JWT-like or bearer token."""
    if len(s) > 64 and re.match(r"^[A-Za-z0-9_-]+\.([A-Za-z0-9_-]+)\.", s):
        return True  # JWT-like
    if s.lower().startswith("bearer "):
        return True
    return False
