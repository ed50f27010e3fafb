"""Objects: upload (POST), modify (PUT), delete, list, download. Single bucket."""
import posixpath
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import PlainTextResponse, StreamingResponse

from app.core.deps import get_object_service
from app.services.objects import ObjectService, Upload

router = APIRouter(tags=["objects"])


def _to_upload(file: UploadFile | None) -> Upload | None:
    if file is None:
        return None
    size = file.size
    if size is None:
        # Older multipart parsers do not record size; measure the spooled file
        file.file.seek(0, 2)
        size = file.file.tell()
        file.file.seek(0)
    return Upload(filename=file.filename, content_type=file.content_type, size=size, file=file.file)


@router.post("/upload", status_code=status.HTTP_201_CREATED, response_class=PlainTextResponse)
def upload_object(
    file: UploadFile | None = File(None),
    key: str | None = Form(None),
    service: ObjectService = Depends(get_object_service),
):
    """Create (or replace) an object; key defaults to the uploaded filename."""
    return service.create(_to_upload(file), explicit_key=key)


@router.put("/modify/{key:path}", status_code=status.HTTP_201_CREATED, response_class=PlainTextResponse)
def modify_object(
    key: str,
    file: UploadFile | None = File(None),
    service: ObjectService = Depends(get_object_service),
):
    return service.overwrite(key, _to_upload(file))


@router.delete("/delete/{key:path}", response_class=PlainTextResponse)
def delete_object(key: str, service: ObjectService = Depends(get_object_service)):
    return service.delete(key)


@router.get("/list", response_model=list[str])
def list_objects(service: ObjectService = Depends(get_object_service)):
    return service.list_keys()


@router.get("/download/{key:path}")
def download_object(key: str, service: ObjectService = Depends(get_object_service)):
    obj = service.open(key)
    filename = posixpath.basename(obj.key)
    ascii_name = filename.encode("ascii", "replace").decode().replace('"', "_")
    return StreamingResponse(
        obj.iter_chunks(),
        media_type=obj.content_type,
        headers={
            # RFC 5987 style for filename with special chars
            "Content-Disposition": f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}",
            "Content-Length": str(obj.size),
        },
    )
