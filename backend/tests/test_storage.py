"""Storage backends: local behaviour and MinIO path with mocks (no real server)."""
import io
from unittest.mock import MagicMock, patch

import pytest
from minio.error import MinioException

from app.core.config import get_settings
from app.services.storage import get_storage
from app.services.storage.base import KeyConflict, ObjectNotFound, StorageError
from app.services.storage.local import LocalStorage


def _put(storage, key: str, content: bytes, content_type: str = "text/plain") -> None:
    storage.put_object(key, io.BytesIO(content), len(content), content_type)


def _read(storage, key: str) -> bytes:
    return b"".join(storage.get_object(key).iter_chunks())


def test_get_storage_returns_local_by_default(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("DEV_OBJECTS_DIR", str(tmp_path))
    monkeypatch.setenv("MINIO_BUCKET", "dev-bucket")
    get_settings.cache_clear()
    get_storage.cache_clear()
    try:
        backend = get_storage()
        assert isinstance(backend, LocalStorage)
        assert backend.bucket == "dev-bucket"
        assert get_storage() is backend
    finally:
        get_storage.cache_clear()


def test_local_ensure_bucket_reports_creation(tmp_path):
    backend = LocalStorage(root=tmp_path, bucket="b", public_base_url="http://test")
    assert backend.bucket_exists() is False
    assert backend.ensure_bucket() is True
    assert backend.ensure_bucket() is False
    assert backend.bucket_exists() is True


def test_local_put_get_keeps_content_type(storage):
    _put(storage, "docs/readme.md", b"# hi", "text/markdown")
    obj = storage.get_object("docs/readme.md")
    assert obj.size == 4
    assert obj.content_type == "text/markdown"
    assert b"".join(obj.iter_chunks()) == b"# hi"


def test_local_short_upload_leaves_previous_object(storage):
    _put(storage, "a.txt", b"original")
    with pytest.raises(StorageError, match="Short upload"):
        storage.put_object("a.txt", io.BytesIO(b"new"), 100, "text/plain")
    assert _read(storage, "a.txt") == b"original"
    assert list(storage.list_keys()) == ["a.txt"]


def test_local_list_is_sorted_and_recursive(storage):
    for key in ("b.txt", "a/z.txt", "a/b/c.txt", "0.txt"):
        _put(storage, key, b"x")
    assert list(storage.list_keys()) == ["0.txt", "a/b/c.txt", "a/z.txt", "b.txt"]


def test_local_list_missing_bucket_errors(tmp_path):
    backend = LocalStorage(root=tmp_path, bucket="nope", public_base_url="http://test")
    with pytest.raises(StorageError):
        list(backend.list_keys())


def test_local_remove_missing_is_noop(storage):
    storage.remove_object("never.txt")
    storage.remove_object("dir/never.txt")


def test_local_remove_prunes_empty_prefixes(storage):
    _put(storage, "x/y/z.txt", b"1")
    storage.remove_object("x/y/z.txt")
    assert list(storage.list_keys()) == []
    _put(storage, "x", b"now a plain key")
    assert list(storage.list_keys()) == ["x"]


def test_local_nested_delete_then_prefix_key_upload(storage):
    _put(storage, "x/y/z.txt", b"1", "text/plain")
    storage.remove_object("x/y/z.txt")
    _put(storage, "x", b"2", "image/png")
    obj = storage.get_object("x")
    assert b"".join(obj.iter_chunks()) == b"2"
    assert obj.content_type == "image/png"


def test_local_put_tolerates_leftover_meta_prefix(storage):
    (storage._meta / "x" / "y").mkdir(parents=True)
    _put(storage, "x", b"data", "text/csv")
    assert storage.get_object("x").content_type == "text/csv"


def test_local_failed_replace_keeps_bytes_and_content_type(storage, monkeypatch):
    _put(storage, "a.txt", b"old", "text/plain")

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("app.services.storage.local.os.replace", failing_replace)
    with pytest.raises(StorageError, match="disk full"):
        _put(storage, "a.txt", b"new", "image/png")
    monkeypatch.undo()

    obj = storage.get_object("a.txt")
    assert obj.content_type == "text/plain"
    assert b"".join(obj.iter_chunks()) == b"old"
    assert list(storage._tmp.iterdir()) == []


def test_local_key_and_prefix_cannot_coexist(storage):
    _put(storage, "a", b"file")
    with pytest.raises(KeyConflict):
        _put(storage, "a/b", b"nested")
    _put(storage, "c/d", b"nested")
    with pytest.raises(KeyConflict):
        _put(storage, "c", b"file")
    assert list(storage.list_keys()) == ["a", "c/d"]


def test_local_get_missing_raises_not_found(storage):
    with pytest.raises(ObjectNotFound, match="not found"):
        storage.get_object("missing/key")


def test_local_key_cannot_escape_bucket(storage):
    with pytest.raises(ObjectNotFound):
        storage.get_object("../../etc/passwd")


def test_local_presigned_get_url(storage):
    _put(storage, "dir/a file.txt", b"x")
    url = storage.presign_get("dir/a file.txt", 300)
    assert url.startswith("http://test/objects/dir/a%20file.txt?")
    assert "expires=" in url and "signature=" in url


def test_local_presign_missing_raises(storage):
    with pytest.raises(ObjectNotFound):
        storage.presign_get("missing.txt", 300)


# ----- MinIO backend (mocked client) -----


class FakeS3Error(MinioException):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


@pytest.fixture
def minio_storage():
    from app.services.storage.minio_store import MinioStorage

    with patch("app.services.storage.minio_store.S3Error", FakeS3Error):
        storage = MinioStorage(
            endpoint="http://localhost:9000",
            bucket="test-bucket",
            access_key="minio",
            secret_key="minio123",
            secure=False,
        )
        storage._client = MagicMock()
        yield storage


def test_minio_requires_credentials():
    from app.services.storage.minio_store import MinioStorage

    with pytest.raises(RuntimeError, match="MINIO_ACCESS_KEY"):
        MinioStorage(endpoint="localhost:9000", bucket="b", access_key="", secret_key="")
    with pytest.raises(RuntimeError, match="MINIO_ENDPOINT"):
        MinioStorage(endpoint="https://", bucket="b", access_key="a", secret_key="s")


def test_minio_from_settings(monkeypatch):
    from app.services.storage.minio_store import MinioStorage

    monkeypatch.setenv("MINIO_ENDPOINT", "https://minio.internal:9000/")
    monkeypatch.setenv("MINIO_ACCESS_KEY", "ak")
    monkeypatch.setenv("MINIO_SECRET_KEY", "sk")
    monkeypatch.setenv("MINIO_BUCKET", "uploads")
    get_settings.cache_clear()
    storage = MinioStorage.from_settings(get_settings())
    assert storage.bucket == "uploads"
    assert storage._host == "minio.internal:9000"
    assert storage._secure is True


def test_minio_put_forwards_stream_size_and_type(minio_storage):
    data = io.BytesIO(b"abc")
    minio_storage.put_object("k/v.txt", data, 3, "text/plain")
    minio_storage._client.put_object.assert_called_once_with(
        bucket_name="test-bucket",
        object_name="k/v.txt",
        data=data,
        length=3,
        content_type="text/plain",
    )


def test_minio_put_failure_is_storage_error(minio_storage):
    minio_storage._client.put_object.side_effect = FakeS3Error("AccessDenied")
    with pytest.raises(StorageError):
        minio_storage.put_object("a", io.BytesIO(b"x"), 1)


def test_minio_remove_missing_is_noop(minio_storage):
    minio_storage._client.remove_object.side_effect = FakeS3Error("NoSuchKey")
    minio_storage.remove_object("gone.txt")


def test_minio_remove_other_error_raises(minio_storage):
    minio_storage._client.remove_object.side_effect = FakeS3Error("AccessDenied")
    with pytest.raises(StorageError):
        minio_storage.remove_object("a.txt")


def test_minio_list_keys_and_error(minio_storage):
    def objects():
        yield MagicMock(object_name="a.txt", is_dir=False)
        yield MagicMock(object_name="dir/", is_dir=True)
        yield MagicMock(object_name="dir/b.txt", is_dir=False)

    minio_storage._client.list_objects.return_value = objects()
    assert list(minio_storage.list_keys()) == ["a.txt", "dir/b.txt"]
    minio_storage._client.list_objects.assert_called_with(bucket_name="test-bucket", recursive=True)

    def broken():
        yield MagicMock(object_name="a.txt", is_dir=False)
        raise FakeS3Error("InternalError")

    minio_storage._client.list_objects.return_value = broken()
    with pytest.raises(StorageError):
        list(minio_storage.list_keys())


def test_minio_presign_missing_is_not_found(minio_storage):
    minio_storage._client.stat_object.side_effect = FakeS3Error("NoSuchKey")
    with pytest.raises(ObjectNotFound):
        minio_storage.presign_get("missing.txt", 300)
    minio_storage._client.presigned_get_object.assert_not_called()


def test_minio_presign_uses_ttl(minio_storage):
    from datetime import timedelta

    minio_storage._client.presigned_get_object.return_value = "https://minio/test-bucket/a.txt?X-Amz-Signature=abc"
    url = minio_storage.presign_get("a.txt", 300)
    assert url.startswith("https://minio/")
    minio_storage._client.presigned_get_object.assert_called_once_with(
        bucket_name="test-bucket",
        object_name="a.txt",
        expires=timedelta(seconds=300),
    )


def test_minio_get_object_uses_stat_metadata(minio_storage):
    minio_storage._client.stat_object.return_value = MagicMock(size=3, content_type="image/png")
    resp = MagicMock()
    resp.read.side_effect = [b"abc", b""]
    minio_storage._client.get_object.return_value = resp
    obj = minio_storage.get_object("a.png")
    assert (obj.size, obj.content_type) == (3, "image/png")
    assert b"".join(obj.iter_chunks()) == b"abc"
    resp.close.assert_called_once()
    resp.release_conn.assert_called_once()


def test_minio_ensure_bucket_existing(minio_storage):
    minio_storage._client.make_bucket.side_effect = FakeS3Error("BucketAlreadyOwnedByYou")
    minio_storage._client.bucket_exists.return_value = True
    assert minio_storage.ensure_bucket() is False
    minio_storage._client.make_bucket.side_effect = None
    assert minio_storage.ensure_bucket() is True


def test_minio_subscription_yields_records_and_closes():
    from app.services.storage.minio_store import MinioSubscription, _ClosablePoolManager

    events = MagicMock()
    events.__iter__.return_value = iter([
        {"Records": [{"eventName": "s3:ObjectCreated:Put"}]},
        {"Records": None},
        {"Records": [{"eventName": "s3:ObjectRemoved:Delete"}]},
    ])
    client = MagicMock()
    client.listen_bucket_notification.return_value = events
    pool = _ClosablePoolManager()

    sub = MinioSubscription(client, pool, "test-bucket", ("s3:ObjectCreated:*", "s3:ObjectRemoved:*"))
    batches = list(sub)
    assert [b[0]["eventName"] for b in batches] == ["s3:ObjectCreated:Put", "s3:ObjectRemoved:Delete"]
    client.listen_bucket_notification.assert_called_once_with(
        bucket_name="test-bucket",
        prefix="",
        suffix="",
        events=("s3:ObjectCreated:*", "s3:ObjectRemoved:*"),
    )
    # Iteration end closes the stream and refuses reconnects
    assert pool.shut.is_set()
    events.__exit__.assert_called_once()
    sub.close()
    events.__exit__.assert_called_once()


def test_minio_subscription_error_is_storage_error():
    from app.services.storage.minio_store import MinioSubscription, _ClosablePoolManager

    def failing():
        yield {"Records": [{"eventName": "s3:ObjectCreated:Put"}]}
        raise FakeS3Error("InternalError")

    events = MagicMock()
    events.__iter__.return_value = failing()
    client = MagicMock()
    client.listen_bucket_notification.return_value = events

    sub = MinioSubscription(client, _ClosablePoolManager(), "b", ("s3:ObjectCreated:*",))
    it = iter(sub)
    assert next(it)[0]["eventName"] == "s3:ObjectCreated:Put"
    with pytest.raises(StorageError, match="notification stream failed"):
        next(it)


def test_closable_pool_refuses_requests_once_shut():
    from app.services.storage.minio_store import _ClosablePoolManager, _SubscriptionClosed

    pool = _ClosablePoolManager()
    pool.shut.set()
    with pytest.raises(_SubscriptionClosed):
        pool.urlopen("GET", "http://localhost:9000/b?events=s3:ObjectCreated:*")


def test_minio_endpoint_scheme_decides_tls():
    from app.services.storage.minio_store import MinioStorage

    plain = MinioStorage(endpoint="http://minio:9000", bucket="b", access_key="a", secret_key="s", secure=True)
    assert (plain._host, plain._secure) == ("minio:9000", False)
    bare = MinioStorage(endpoint="minio:9000", bucket="b", access_key="a", secret_key="s", secure=True)
    assert bare._secure is True
