"""Watch: stream bucket create/remove events as Server-Sent Events."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.core.config import get_settings
from app.core.deps import get_storage_backend
from app.services.storage.base import StorageBackend
from app.services.watch import SSE_HEADERS, WatchSession

router = APIRouter(tags=["watch"])


@router.get("/watch")
async def watch_bucket(request: Request, storage: StorageBackend = Depends(get_storage_backend)):
    """Unbounded SSE stream: one `data:` frame per notification, `event: error` on backend failure."""
    session = WatchSession(
        storage,
        is_disconnected=request.is_disconnected,
        poll_interval=get_settings().watch_poll_interval_seconds,
    )
    return StreamingResponse(session.frames(), media_type="text/event-stream", headers=SSE_HEADERS)
