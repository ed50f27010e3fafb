"""FastAPI app: bucket bootstrap, middleware, routers, health and metrics."""
import os

# Optional: overlay env from AWS Secrets Manager (prod). Only when ARN set; never log secrets.
_aws_secrets_arn = os.environ.get("AWS_SECRETS_ARN")
if _aws_secrets_arn:
    try:
        import json
        import boto3
        _sm = boto3.client("secretsmanager")
        _r = _sm.get_secret_value(SecretId=_aws_secrets_arn)
        _data = json.loads(_r["SecretString"]) if _r.get("SecretString") else {}
        for _k, _v in (_data or {}).items():
            if isinstance(_v, str):
                os.environ[_k] = _v
    except Exception:
        # Log exception type only, never secret content
        import logging
        logging.getLogger(__name__).exception("Failed to load AWS Secrets Manager secret")

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from app.core.config import get_settings
from app.core.deps import get_storage_backend, require_metrics_access
from app.core.errors import register_error_handlers
from app.core.metrics import get_metrics
from app.core.request_logging import RequestLoggingMiddleware
from app.core.upload_limit import UploadLimitMiddleware
from app.api.objects import router as objects_router
from app.api.download_links import router as download_links_router
from app.api.watch import router as watch_router
from app.services.storage import get_storage
from app.services.storage.base import StorageBackend, StorageError

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
if settings.log_json:
    for h in logging.getLogger("app.request").handlers[:]:
        logging.getLogger("app.request").removeHandler(h)
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger("app.request").addHandler(h)
    logging.getLogger("app.request").setLevel(logging.INFO)
    logging.getLogger("app.request").propagate = False

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bucket must exist before serving; close open notification channels on shutdown."""
    storage = get_storage()
    logger.info("Using %s storage backend", settings.storage_backend)
    created = await run_in_threadpool(storage.ensure_bucket)
    if created:
        logger.info("Successfully created bucket '%s'.", storage.bucket)
    else:
        logger.info("Bucket '%s' already exists.", storage.bucket)
    yield
    storage.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
register_error_handlers(app)
app.add_middleware(UploadLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
)

app.include_router(objects_router)
app.include_router(download_links_router)
app.include_router(watch_router)


@app.get("/healthz")
async def healthz():
    """Liveness: no backend call."""
    return {"status": "ok"}


@app.get("/readyz")
def readyz(storage: StorageBackend = Depends(get_storage_backend)):
    """Readiness: bucket reachable and present."""
    try:
        if storage.bucket_exists():
            return {"status": "ok"}
        detail = "bucket missing"
    except StorageError:
        logger.exception("Readiness check failed")
        detail = "storage unreachable"
    return JSONResponse(status_code=503, content={"status": "unavailable", "detail": detail})


@app.get("/metrics", response_class=Response)
async def metrics(_: None = Depends(require_metrics_access)):
    """Prometheus metrics. Guard with METRICS_SECRET + X-Metrics-Secret header in prod."""
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)
