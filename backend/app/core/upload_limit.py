"""Reject oversized uploads from the declared Content-Length, before the body is read."""
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from app.core.config import get_settings

# Allowance for the multipart envelope (boundaries, part headers, small form fields)
MULTIPART_OVERHEAD_BYTES = 16 * 1024
UPLOAD_ROUTES = (("POST", "/upload"), ("PUT", "/modify/"))


def _is_upload(method: str, path: str) -> bool:
    return any(method == m and (path == p or (p.endswith("/") and path.startswith(p))) for m, p in UPLOAD_ROUTES)


class UploadLimitMiddleware:
    """413 for upload requests whose Content-Length exceeds the cap plus envelope allowance.

    Requests without a Content-Length (chunked) pass through; the parsed file size is
    checked again by the object service.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and _is_upload(scope["method"], scope["path"]):
            declared = None
            for name, value in scope.get("headers", []):
                if name == b"content-length":
                    try:
                        declared = int(value)
                    except ValueError:
                        declared = None
                    break
            limit = get_settings().max_upload_bytes
            if declared is not None and declared > limit + MULTIPART_OVERHEAD_BYTES:
                response = PlainTextResponse("Payload too large", status_code=413)
                await response(scope, receive, send)
                return
        await self.app(scope, receive, send)
