"""MinIO storage backend. Imported only when STORAGE_BACKEND=minio."""
from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import BinaryIO, Iterator

import urllib3
from minio import Minio
from minio.error import MinioException, S3Error

from app.services.storage.base import (
    DEFAULT_CONTENT_TYPE,
    ObjectNotFound,
    StorageBackend,
    StorageError,
    StoredObject,
    Subscription,
)

logger = logging.getLogger(__name__)

_MISSING_CODES = ("NoSuchKey", "NoSuchObject", "NoSuchBucket")
_BACKEND_ERRORS = (MinioException, urllib3.exceptions.HTTPError, OSError)


def _strip_http(endpoint: str) -> str:
    # Minio client expects "host:port" (no scheme)
    endpoint = (endpoint or "").strip()
    endpoint = endpoint.replace("http://", "").replace("https://", "")
    return endpoint.rstrip("/")


def _scheme_secure(endpoint: str, default: bool) -> bool:
    endpoint = (endpoint or "").strip().lower()
    if endpoint.startswith("https://"):
        return True
    if endpoint.startswith("http://"):
        return False
    return default


def _translate(e: Exception, key: str) -> StorageError:
    if isinstance(e, S3Error) and getattr(e, "code", "") in _MISSING_CODES:
        return ObjectNotFound(f"Object not found: {key}")
    return StorageError(f"MinIO request failed for {key!r}: {e}")


class _SubscriptionClosed(Exception):
    pass


class _ClosablePoolManager(urllib3.PoolManager):
    """Connection pool that refuses new requests once shut.

    The minio event iterator reconnects whenever its stream ends; refusing the
    reconnect is what lets close() actually end the listen.
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.shut = threading.Event()

    def urlopen(self, method, url, redirect=True, **kw):
        if self.shut.is_set():
            raise _SubscriptionClosed()
        return super().urlopen(method, url, redirect=redirect, **kw)


class MinioSubscription(Subscription):
    """ListenBucketNotification stream on a dedicated client and connection pool."""

    def __init__(self, client: Minio, pool: _ClosablePoolManager, bucket: str, event_types: tuple[str, ...]) -> None:
        self._pool = pool
        self._events = client.listen_bucket_notification(
            bucket_name=bucket,
            prefix="",
            suffix="",
            events=event_types,
        )
        self._lock = threading.Lock()
        self._closed = False

    def __iter__(self) -> Iterator[list[dict]]:
        try:
            for event in self._events:
                if self._closed:
                    return
                records = event.get("Records") if isinstance(event, dict) else None
                if records:
                    yield records
        except _SubscriptionClosed:
            return
        except _BACKEND_ERRORS as e:
            if self._closed:
                return
            raise StorageError(f"Bucket notification stream failed: {e}") from e
        finally:
            self.close()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._pool.shut.set()
        try:
            self._events.__exit__(None, None, None)
        except _BACKEND_ERRORS:
            logger.debug("Ignoring error while closing notification stream", exc_info=True)
        self._pool.clear()


class MinioStorage(StorageBackend):
    """MinIO-backed storage for one bucket. Keys are opaque strings (may contain slashes)."""

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        secure: bool = True,
        region: str | None = None,
    ) -> None:
        host = _strip_http(endpoint)
        if not host:
            raise RuntimeError("MINIO_ENDPOINT is empty or invalid")
        if not access_key or not secret_key:
            raise RuntimeError("MINIO_ACCESS_KEY / MINIO_SECRET_KEY not set")
        if not bucket:
            raise RuntimeError("MINIO_BUCKET not set")
        self.bucket = bucket
        self._host = host
        self._access_key = access_key
        self._secret_key = secret_key
        self._secure = _scheme_secure(endpoint, bool(secure))
        self._region = region
        self._client = self._make_client()

    @classmethod
    def from_settings(cls, settings) -> "MinioStorage":
        return cls(
            endpoint=settings.minio_endpoint,
            bucket=settings.minio_bucket.strip(),
            access_key=settings.minio_access_key.strip(),
            secret_key=settings.minio_secret_key.strip(),
            secure=settings.minio_secure,
            region=settings.minio_region,
        )

    def _make_client(self, http_client: urllib3.PoolManager | None = None) -> Minio:
        return Minio(
            self._host,
            access_key=self._access_key,
            secret_key=self._secret_key,
            secure=self._secure,
            region=self._region,
            http_client=http_client,
        )

    def bucket_exists(self) -> bool:
        try:
            return self._client.bucket_exists(bucket_name=self.bucket)
        except _BACKEND_ERRORS as e:
            raise StorageError(f"Bucket check failed (bucket={self.bucket}): {e}") from e

    def ensure_bucket(self) -> bool:
        try:
            self._client.make_bucket(bucket_name=self.bucket)
            return True
        except S3Error as e:
            if e.code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists") and self.bucket_exists():
                return False
            raise StorageError(f"MinIO bucket init failed (bucket={self.bucket}): {e}") from e
        except _BACKEND_ERRORS as e:
            raise StorageError(f"MinIO bucket init failed (bucket={self.bucket}): {e}") from e

    def put_object(self, key: str, data: BinaryIO, size: int, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        try:
            self._client.put_object(
                bucket_name=self.bucket,
                object_name=key,
                data=data,
                length=size,
                content_type=content_type or DEFAULT_CONTENT_TYPE,
            )
        except _BACKEND_ERRORS as e:
            raise _translate(e, key) from e

    def get_object(self, key: str) -> StoredObject:
        try:
            stat = self._client.stat_object(bucket_name=self.bucket, object_name=key)
            resp = self._client.get_object(bucket_name=self.bucket, object_name=key)
        except _BACKEND_ERRORS as e:
            raise _translate(e, key) from e
        return StoredObject(
            key=key,
            size=stat.size or 0,
            content_type=stat.content_type or DEFAULT_CONTENT_TYPE,
            body=resp,
        )

    def remove_object(self, key: str) -> None:
        try:
            self._client.remove_object(bucket_name=self.bucket, object_name=key)
        except S3Error as e:
            if getattr(e, "code", "") in ("NoSuchKey", "NoSuchObject"):
                return
            raise StorageError(f"MinIO delete failed for {key!r}: {e}") from e
        except _BACKEND_ERRORS as e:
            raise StorageError(f"MinIO delete failed for {key!r}: {e}") from e

    def list_keys(self) -> Iterator[str]:
        try:
            for obj in self._client.list_objects(bucket_name=self.bucket, recursive=True):
                if obj.is_dir:
                    continue
                yield obj.object_name
        except _BACKEND_ERRORS as e:
            raise StorageError(f"MinIO list failed (bucket={self.bucket}): {e}") from e

    def presign_get(self, key: str, ttl_seconds: int) -> str:
        # Signing is offline; stat first so a missing key fails here, not at download time
        try:
            self._client.stat_object(bucket_name=self.bucket, object_name=key)
            return self._client.presigned_get_object(
                bucket_name=self.bucket,
                object_name=key,
                expires=timedelta(seconds=max(1, ttl_seconds)),
            )
        except _BACKEND_ERRORS as e:
            raise _translate(e, key) from e

    def subscribe(self, event_types: tuple[str, ...]) -> MinioSubscription:
        pool = _ClosablePoolManager(
            timeout=urllib3.Timeout(connect=10.0, read=None),
            maxsize=1,
            retries=urllib3.Retry(total=3, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
        )
        try:
            return MinioSubscription(self._make_client(pool), pool, self.bucket, event_types)
        except (ValueError, *_BACKEND_ERRORS) as e:
            pool.clear()
            raise StorageError(f"Could not open bucket notification stream: {e}") from e
