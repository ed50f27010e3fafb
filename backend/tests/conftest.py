"""Pytest fixtures: local-disk storage in tmp_path, test client wired to it."""
import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.core.config import get_settings
from app.core.deps import get_storage_backend
from app.services.storage.base import StorageError
from app.services.storage.local import LocalStorage

TEST_BUCKET = "test-bucket"


class BrokenStorage(LocalStorage):
    """Local storage whose mutating/listing calls fail like an unreachable backend."""

    def put_object(self, key, data, size, content_type="application/octet-stream"):
        raise StorageError("connection refused: minio:9000 (secret internal detail)")

    def remove_object(self, key):
        raise StorageError("connection refused: minio:9000 (secret internal detail)")

    def list_keys(self):
        yield "first.txt"
        raise StorageError("listing interrupted")

    def presign_get(self, key, ttl_seconds):
        raise StorageError("signature v4 clock skew")

    def bucket_exists(self):
        raise StorageError("connection refused")


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def storage(tmp_path):
    backend = LocalStorage(root=tmp_path / "objects", bucket=TEST_BUCKET, public_base_url="http://test")
    backend.ensure_bucket()
    yield backend
    backend.close()


@pytest.fixture
def broken_storage(tmp_path):
    # BrokenStorage.bucket_exists raises, so lay out the bucket with a healthy instance
    LocalStorage(root=tmp_path / "broken", bucket=TEST_BUCKET, public_base_url="http://test").ensure_bucket()
    return BrokenStorage(root=tmp_path / "broken", bucket=TEST_BUCKET, public_base_url="http://test")


def _client_for(backend):
    app.dependency_overrides[get_storage_backend] = lambda: backend
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
async def client(storage):
    async with _client_for(storage) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def broken_client(broken_storage):
    async with _client_for(broken_storage) as ac:
        yield ac
    app.dependency_overrides.clear()
