"""Storage backend factory: local (dev disk) or MinIO. MinIO backend is loaded only when STORAGE_BACKEND=minio."""
from functools import lru_cache

from app.core.config import get_settings
from app.services.storage.base import StorageBackend
from app.services.storage.local import LocalStorage


@lru_cache
def get_storage() -> StorageBackend:
    """Return the process-wide storage backend. Avoids importing minio when backend is local."""
    settings = get_settings()
    if settings.storage_backend == "minio":
        from app.services.storage.minio_store import MinioStorage
        return MinioStorage.from_settings(settings)
    return LocalStorage(
        root=settings.dev_objects_dir,
        bucket=settings.minio_bucket,
        public_base_url=settings.public_base_url,
    )
