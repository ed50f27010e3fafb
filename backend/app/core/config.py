"""Application settings."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """App config from env."""

    app_name: str = "Object Gateway"
    debug: bool = False
    # Structured logging: set LOG_JSON=1 for one-JSON-object-per-line (CloudWatch, etc.)
    log_json: bool = False
    log_level: str = "INFO"
    # Metrics: if set, /metrics requires the X-Metrics-Secret header
    metrics_secret: str | None = None

    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Storage: local (dev disk) or minio (MinIO / S3-compatible server)
    storage_backend: str = "local"  # local | minio

    # MinIO (only used when storage_backend=minio)
    minio_endpoint: str = ""  # host:port, scheme optional
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_bucket: str = "objects"
    minio_secure: bool = True
    minio_region: str | None = None

    # Local disk backend
    dev_objects_dir: str = "./dev_objects"
    # Base URL embedded in local presigned links (the service itself serves them)
    public_base_url: str = "http://localhost:8080"
    # HMAC key for local presigned links
    secret_key: str = "dev-secret-change-in-production"

    # Uploads: hard cap, checked before any backend call (10 MiB)
    max_upload_bytes: int = 10 * 1024 * 1024
    # Presigned GET validity
    presign_ttl_seconds: int = 300

    # Watch: how often an idle SSE session checks whether the client went away
    watch_poll_interval_seconds: float = 1.0

    # Secrets Manager (optional; overlay MINIO_* etc. at startup)
    aws_secrets_arn: str | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
