"""Presigned download links: short-lived read-only URLs minted by the storage backend."""
import logging

from app.core.errors import BadRequest, NotFound
from app.core.logging_redaction import redact_url
from app.core.metrics import record_download_link_mint, record_storage_op
from app.services.storage.base import StorageBackend, StorageError
from app.services.upload_validation import validate_object_key

logger = logging.getLogger(__name__)

DEFAULT_LINK_TTL_SECONDS = 300


def issue_download_link(storage: StorageBackend, key: str | None, ttl_seconds: int = DEFAULT_LINK_TTL_SECONDS) -> str:
    """Return a presigned GET URL for key.

    Every failure to sign is reported as NotFound, whatever the backend cause. The
    cause is logged so signing problems stay visible server-side.
    """
    if not key:
        raise BadRequest("Object name is required")
    try:
        validate_object_key(key)
    except ValueError as e:
        raise BadRequest(str(e))
    try:
        url = storage.presign_get(key, ttl_seconds)
    except StorageError as e:
        record_storage_op("presign", "not_found")
        logger.warning("Could not presign %r in bucket %r: %s", key, storage.bucket, e)
        raise NotFound("File not found")
    record_storage_op("presign", "success")
    record_download_link_mint()
    logger.info("Issued download link for %r (ttl=%ss): %s", key, ttl_seconds, redact_url(url))
    return url
