"""FastAPI dependencies: storage backend, object service, metrics guard."""
from fastapi import Depends, Header, HTTPException, status

from app.core.security import verify_metrics_secret
from app.services.objects import ObjectService
from app.services.storage import get_storage
from app.services.storage.base import StorageBackend


def get_storage_backend() -> StorageBackend:
    """Process-wide backend; override in tests via app.dependency_overrides."""
    return get_storage()


def get_object_service(storage: StorageBackend = Depends(get_storage_backend)) -> ObjectService:
    return ObjectService(storage)


def require_metrics_access(
    x_metrics_secret: str | None = Header(None, alias="X-Metrics-Secret"),
) -> None:
    """When METRICS_SECRET is set, require it in X-Metrics-Secret. 404 otherwise (no enumeration)."""
    if not verify_metrics_secret(x_metrics_secret):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
