"""Local (dev disk) storage: files under dev_objects_dir, HMAC-signed links, in-process notifications."""
import fnmatch
import json
import logging
import os
import queue
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator
from urllib.parse import quote, urlencode

from app.core.security import create_object_link_signature
from app.services.storage.base import (
    DEFAULT_CONTENT_TYPE,
    KeyConflict,
    ObjectNotFound,
    StorageBackend,
    StorageError,
    StoredObject,
    Subscription,
)

logger = logging.getLogger(__name__)

_CLOSED = object()


class _ChannelBroken:
    def __init__(self, reason: str) -> None:
        self.reason = reason


class LocalSubscription(Subscription):
    """Queue-backed channel fed by LocalStorage._publish."""

    def __init__(self, owner: "LocalStorage", event_types: tuple[str, ...]) -> None:
        self._owner = owner
        self.event_types = event_types
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()

    def wants(self, event_name: str) -> bool:
        return any(fnmatch.fnmatchcase(event_name, pattern) for pattern in self.event_types)

    def deliver(self, records: list[dict]) -> None:
        if not self._closed.is_set():
            self._queue.put(records)

    def break_channel(self, reason: str) -> None:
        self._queue.put(_ChannelBroken(reason))

    def __iter__(self) -> Iterator[list[dict]]:
        while not self._closed.is_set():
            item = self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, _ChannelBroken):
                self.close()
                raise StorageError(item.reason)
            yield item

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._owner._unregister(self)
        self._queue.put(_CLOSED)


class LocalStorage(StorageBackend):
    """Dev disk storage.

    Layout: <root>/<bucket>/data/<key> holds bytes, <root>/<bucket>/meta/<key> the
    content type, <root>/<bucket>/tmp staging files renamed into place on success.
    """

    def __init__(self, root: str | Path, bucket: str, public_base_url: str) -> None:
        self.bucket = bucket
        self._bucket_root = Path(root) / bucket
        self._data = self._bucket_root / "data"
        self._meta = self._bucket_root / "meta"
        self._tmp = self._bucket_root / "tmp"
        self._base_url = public_base_url.rstrip("/")
        self._lock = threading.Lock()
        self._subscriptions: set[LocalSubscription] = set()

    # ----- paths -----

    def _path(self, base: Path, key: str) -> Path:
        path = (base / key).resolve()
        if base.resolve() not in path.parents:
            raise ObjectNotFound(f"Object key escapes bucket: {key!r}")
        return path

    # ----- bucket -----

    def bucket_exists(self) -> bool:
        return self._data.is_dir()

    def ensure_bucket(self) -> bool:
        created = not self.bucket_exists()
        for d in (self._data, self._meta, self._tmp):
            d.mkdir(parents=True, exist_ok=True)
        return created

    # ----- objects -----

    def _check_no_conflict(self, key: str, target: Path) -> None:
        # On disk a key cannot be both a file and a directory
        if target.is_dir():
            raise KeyConflict(f"Key is already used as a prefix: {key!r}")
        data_root = self._data.resolve()
        for parent in target.parents:
            if parent == data_root:
                break
            if parent.is_file():
                prefix = parent.relative_to(data_root).as_posix()
                raise KeyConflict(f"Prefix of {key!r} is an existing key: {prefix!r}")

    def put_object(self, key: str, data: BinaryIO, size: int, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        target = self._path(self._data, key)
        meta = self._path(self._meta, key)
        self._check_no_conflict(key, target)
        staged: list[str] = []
        try:
            self._tmp.mkdir(parents=True, exist_ok=True)
            fd, data_tmp = tempfile.mkstemp(dir=self._tmp)
            staged.append(data_tmp)
            written = 0
            with os.fdopen(fd, "wb") as out:
                while True:
                    chunk = data.read(64 * 1024)
                    if not chunk:
                        break
                    written += len(chunk)
                    out.write(chunk)
            if size >= 0 and written != size:
                raise StorageError(f"Short upload for {key!r}: expected {size} bytes, got {written}")
            fd, meta_tmp = tempfile.mkstemp(dir=self._tmp)
            staged.append(meta_tmp)
            with os.fdopen(fd, "w") as out:
                json.dump({"content_type": content_type or DEFAULT_CONTENT_TYPE}, out)

            target.parent.mkdir(parents=True, exist_ok=True)
            if meta.is_dir():
                # Leftover sidecar prefix with no data object behind it
                shutil.rmtree(meta)
            meta.parent.mkdir(parents=True, exist_ok=True)
            # Bytes first: a failed replace leaves both the old bytes and the old content type
            os.replace(data_tmp, target)
            staged.remove(data_tmp)
            os.replace(meta_tmp, meta)
            staged.remove(meta_tmp)
        except OSError as e:
            raise StorageError(f"Local write failed for {key!r}: {e}") from e
        finally:
            for name in staged:
                Path(name).unlink(missing_ok=True)
        self._publish("s3:ObjectCreated:Put", key, size=written, content_type=content_type)

    def get_object(self, key: str) -> StoredObject:
        path = self._path(self._data, key)
        if not path.is_file():
            raise ObjectNotFound(f"Object not found: {key}")
        return StoredObject(
            key=key,
            size=path.stat().st_size,
            content_type=self._content_type(key),
            body=path.open("rb"),
        )

    def _content_type(self, key: str) -> str:
        try:
            meta = json.loads(self._path(self._meta, key).read_text())
            return meta.get("content_type") or DEFAULT_CONTENT_TYPE
        except (OSError, ValueError):
            return DEFAULT_CONTENT_TYPE

    def remove_object(self, key: str) -> None:
        try:
            path = self._path(self._data, key)
        except ObjectNotFound:
            return
        if not path.is_file():
            return
        meta = self._path(self._meta, key)
        try:
            path.unlink()
            if meta.is_file():
                meta.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Local delete failed for {key!r}: {e}") from e
        self._prune_empty_dirs(path.parent, self._data)
        self._prune_empty_dirs(meta.parent, self._meta)
        self._publish("s3:ObjectRemoved:Delete", key)

    @staticmethod
    def _prune_empty_dirs(directory: Path, root: Path) -> None:
        root = root.resolve()
        while directory != root and root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def list_keys(self) -> Iterator[str]:
        if not self.bucket_exists():
            raise StorageError(f"Bucket does not exist: {self.bucket}")
        keys = [p.relative_to(self._data).as_posix() for p in self._data.rglob("*") if p.is_file()]
        yield from sorted(keys)

    def presign_get(self, key: str, ttl_seconds: int) -> str:
        if not self._path(self._data, key).is_file():
            raise ObjectNotFound(f"Object not found: {key}")
        expires, signature = create_object_link_signature(key, ttl_seconds)
        query = urlencode({"expires": expires, "signature": signature})
        return f"{self._base_url}/objects/{quote(key)}?{query}"

    # ----- notifications -----

    def subscribe(self, event_types: tuple[str, ...]) -> LocalSubscription:
        sub = LocalSubscription(self, event_types)
        with self._lock:
            self._subscriptions.add(sub)
        return sub

    def _unregister(self, sub: LocalSubscription) -> None:
        with self._lock:
            self._subscriptions.discard(sub)

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _publish(self, event_name: str, key: str, size: int | None = None, content_type: str | None = None) -> None:
        obj: dict = {"key": quote(key)}
        if size is not None:
            obj["size"] = size
        if content_type:
            obj["contentType"] = content_type
        record = {
            "eventVersion": "2.0",
            "eventSource": "minio:s3",
            "eventTime": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "eventName": event_name,
            "s3": {"bucket": {"name": self.bucket}, "object": obj},
        }
        with self._lock:
            targets = [s for s in self._subscriptions if s.wants(event_name)]
        for sub in targets:
            sub.deliver([record])

    def close(self) -> None:
        """Break every open channel so watchers end instead of blocking shutdown."""
        with self._lock:
            subs = list(self._subscriptions)
        for sub in subs:
            sub.break_channel("storage backend shutting down")
        if subs:
            logger.info("Closed %d open notification channel(s)", len(subs))
