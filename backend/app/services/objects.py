"""Object lifecycle: upload, overwrite, delete, list, download over a StorageBackend.

Backend exceptions stop here. Callers get app.core.errors types with caller-safe
messages; the original failure goes to the log.
"""
import logging
from dataclasses import dataclass
from typing import BinaryIO

from app.core.errors import BadRequest, InternalError, NotFound, PayloadTooLarge
from app.core.metrics import record_storage_op
from app.services.storage.base import (
    DEFAULT_CONTENT_TYPE,
    KeyConflict,
    ObjectNotFound,
    StorageBackend,
    StorageError,
    StoredObject,
)
from app.services.upload_validation import (
    exceeds_upload_limit,
    max_upload_bytes,
    resolve_object_key,
    validate_object_key,
)

logger = logging.getLogger(__name__)


@dataclass
class Upload:
    """The `file` part of a multipart request."""

    filename: str | None
    content_type: str | None
    size: int
    file: BinaryIO


class ObjectService:
    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    @property
    def bucket(self) -> str:
        return self.storage.bucket

    def _check_upload(self, upload: Upload | None) -> Upload:
        if upload is None:
            raise BadRequest("Could not retrieve file from form-data")
        if exceeds_upload_limit(upload.size):
            raise PayloadTooLarge(f"File exceeds the {self._limit_label()} upload limit")
        return upload

    @staticmethod
    def _limit_label() -> str:
        limit = max_upload_bytes()
        if limit % (1024 * 1024) == 0:
            return f"{limit // (1024 * 1024)} MiB"
        return f"{limit} byte"

    def _put(self, key: str, upload: Upload) -> str:
        content_type = upload.content_type or DEFAULT_CONTENT_TYPE
        try:
            self.storage.put_object(key, upload.file, upload.size, content_type)
        except KeyConflict as e:
            record_storage_op("put", "rejected")
            logger.warning("Rejected %r for bucket %r: %s", key, self.bucket, e)
            raise BadRequest(f"Object name '{key}' conflicts with an existing object or prefix")
        except StorageError:
            record_storage_op("put", "failure")
            logger.exception("Error uploading %r to bucket %r", key, self.bucket)
            raise InternalError("Failed to upload file")
        record_storage_op("put", "success")
        logger.info("Stored %r in bucket %r (%d bytes, %s)", key, self.bucket, upload.size, content_type)
        return f"Successfully processed '{key}' in bucket '{self.bucket}'.\n"

    def create(self, upload: Upload | None, explicit_key: str | None = None) -> str:
        """Store a new object; key defaults to the uploaded filename. Return the confirmation text."""
        upload = self._check_upload(upload)
        try:
            key = resolve_object_key(explicit_key, upload.filename)
        except ValueError as e:
            raise BadRequest(str(e))
        return self._put(key, upload)

    def overwrite(self, key: str, upload: Upload | None) -> str:
        """Fully replace key with the uploaded content (no diffing)."""
        key = self._require_key(key, example="/modify/myfile.png")
        upload = self._check_upload(upload)
        return self._put(key, upload)

    def delete(self, key: str) -> str:
        """Remove key. A key that is already gone still counts as deleted."""
        key = self._require_key(key)
        try:
            self.storage.remove_object(key)
        except StorageError:
            record_storage_op("remove", "failure")
            logger.exception("Error removing %r from bucket %r", key, self.bucket)
            raise InternalError("Failed to delete file")
        record_storage_op("remove", "success")
        return f"Successfully deleted '{key}' from bucket '{self.bucket}'.\n"

    def list_keys(self) -> list[str]:
        """Every key in the bucket, in backend order. Any enumeration error fails the whole call."""
        keys: list[str] = []
        try:
            for key in self.storage.list_keys():
                keys.append(key)
        except StorageError:
            record_storage_op("list", "failure")
            logger.exception("Error listing bucket %r after %d key(s)", self.bucket, len(keys))
            raise InternalError("Failed to list files")
        record_storage_op("list", "success")
        return keys

    def open(self, key: str) -> StoredObject:
        key = self._require_key(key)
        try:
            obj = self.storage.get_object(key)
        except ObjectNotFound:
            record_storage_op("get", "not_found")
            raise NotFound("File not found")
        except StorageError:
            record_storage_op("get", "failure")
            logger.exception("Error reading %r from bucket %r", key, self.bucket)
            raise InternalError("Failed to read file")
        record_storage_op("get", "success")
        return obj

    @staticmethod
    def _require_key(key: str | None, example: str | None = None) -> str:
        if not key:
            msg = "Object name is required"
            if example:
                msg += f" in the URL path (e.g., {example})"
            raise BadRequest(msg)
        try:
            return validate_object_key(key)
        except ValueError as e:
            raise BadRequest(str(e))
