"""Storage backend interface: put/get/remove/list, presigned GET and bucket notifications.

Implementations: local (dev disk) or MinIO.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Iterator

OBJECT_CREATED = "s3:ObjectCreated:*"
OBJECT_REMOVED = "s3:ObjectRemoved:*"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(Exception):
    """Backend call failed. Message may carry backend detail; never shown to callers."""


class ObjectNotFound(StorageError):
    """Object (or the bucket holding it) does not exist."""


class KeyConflict(StorageError):
    """Key collides with an existing key used as a prefix, or the other way round.

    Only backends with directory semantics raise this; S3 keys never collide.
    """


@dataclass
class StoredObject:
    """An open object read. Caller must close()."""

    key: str
    size: int
    content_type: str
    body: BinaryIO

    def iter_chunks(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.body.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self.body.close()
        # urllib3 responses (minio) hand their connection back to the pool separately
        release = getattr(self.body, "release_conn", None)
        if release is not None:
            release()


class Subscription(ABC):
    """Live notification channel. Iterating blocks until the next record set arrives.

    Each item is the list of S3-style event records from one notification. Iteration
    ends after close(); a broken channel raises StorageError from the iterator.
    close() is thread-safe and idempotent, so another thread can use it to unblock
    a reader.
    """

    @abstractmethod
    def __iter__(self) -> Iterator[list[dict]]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class StorageBackend(ABC):
    """Abstract object storage bound to one bucket."""

    bucket: str

    @abstractmethod
    def ensure_bucket(self) -> bool:
        """Create the bucket if missing. Return True if it was created."""
        ...

    @abstractmethod
    def bucket_exists(self) -> bool:
        ...

    @abstractmethod
    def put_object(self, key: str, data: BinaryIO, size: int, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        """Create or fully replace key. On failure the previous object stays intact."""
        ...

    @abstractmethod
    def get_object(self, key: str) -> StoredObject:
        """Open key for reading. Raise ObjectNotFound if missing."""
        ...

    @abstractmethod
    def remove_object(self, key: str) -> None:
        """Delete key. Missing keys are not an error."""
        ...

    @abstractmethod
    def list_keys(self) -> Iterator[str]:
        """Lazily yield every key in the bucket. May raise StorageError mid-iteration."""
        ...

    @abstractmethod
    def presign_get(self, key: str, ttl_seconds: int) -> str:
        """Return a read-only URL for key valid for ttl_seconds. Raise StorageError if it cannot."""
        ...

    @abstractmethod
    def subscribe(self, event_types: tuple[str, ...]) -> Subscription:
        """Open a notification channel for the given event classes."""
        ...

    def close(self) -> None:
        """Release backend resources at shutdown."""
