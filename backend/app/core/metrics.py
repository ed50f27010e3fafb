"""Prometheus metrics: request count by route/status, latency, storage ops, link mint, watch sessions."""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total requests",
    ["method", "path", "status_class"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
STORAGE_OPS_TOTAL = Counter(
    "storage_operations_total",
    "Backend storage operations",
    ["operation", "result"],  # result: success | failure | not_found | rejected
)
DOWNLOAD_LINK_MINT_TOTAL = Counter(
    "download_link_mint_total",
    "Presigned download links issued",
)
WATCH_SESSIONS_ACTIVE = Gauge(
    "watch_sessions_active",
    "Open /watch SSE sessions",
)
WATCH_FRAMES_TOTAL = Counter(
    "watch_frames_total",
    "SSE frames written to watchers",
    ["kind"],  # data | error
)

# Route prefixes whose tail is an object key (normalized to avoid label cardinality blowup)
_KEYED_PREFIXES = ("/modify/", "/delete/", "/download/", "/get-download-link/", "/objects/")


def _status_class(status: int) -> str:
    if status < 200:
        return "1xx"
    if status < 300:
        return "2xx"
    if status < 400:
        return "3xx"
    if status < 500:
        return "4xx"
    return "5xx"


def normalize_path(path: str) -> str:
    path = path or "/"
    for prefix in _KEYED_PREFIXES:
        if path.startswith(prefix):
            return prefix + "{key}"
    return path


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    path = normalize_path(path)
    sc = _status_class(status_code)
    REQUEST_COUNT.labels(method=method, path=path, status_class=sc).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(latency_seconds)


def record_storage_op(operation: str, result: str) -> None:
    STORAGE_OPS_TOTAL.labels(operation=operation, result=result).inc()


def record_download_link_mint() -> None:
    DOWNLOAD_LINK_MINT_TOTAL.inc()


def record_watch_frame(kind: str) -> None:
    WATCH_FRAMES_TOTAL.labels(kind=kind).inc()


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
