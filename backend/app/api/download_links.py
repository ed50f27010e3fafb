"""Download links: mint presigned GET (GET), serve local-backend signed links."""
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.core.config import get_settings
from app.core.deps import get_storage_backend
from app.core.errors import Forbidden, NotFound
from app.core.security import verify_object_link_signature
from app.api.schemas import DownloadLinkResponse
from app.services.download_links import issue_download_link
from app.services.storage.base import ObjectNotFound, StorageBackend
from app.services.storage.local import LocalStorage

router = APIRouter(tags=["download-links"])


@router.get("/get-download-link/{key:path}", response_model=DownloadLinkResponse)
def get_download_link(key: str, storage: StorageBackend = Depends(get_storage_backend)):
    url = issue_download_link(storage, key, get_settings().presign_ttl_seconds)
    return DownloadLinkResponse(url=url)


@router.get("/objects/{key:path}")
def serve_signed_object(
    key: str,
    expires: str | None = None,
    signature: str | None = None,
    storage: StorageBackend = Depends(get_storage_backend),
):
    """Target of links minted by the local backend. MinIO links point at MinIO itself."""
    if not isinstance(storage, LocalStorage):
        raise NotFound("Not Found")
    if not verify_object_link_signature(key, expires, signature):
        raise Forbidden("Invalid or expired link")
    try:
        obj = storage.get_object(key)
    except ObjectNotFound:
        raise NotFound("File not found")
    return StreamingResponse(
        obj.iter_chunks(),
        media_type=obj.content_type,
        headers={
            "Cache-Control": "private, no-store",
            "Content-Disposition": "inline",
            "Content-Length": str(obj.size),
        },
    )
