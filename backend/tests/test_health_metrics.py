"""Health, readiness, metrics and request-id plumbing."""
import pytest
from httpx import AsyncClient

from app.core.config import get_settings
from app.core.metrics import normalize_path


@pytest.mark.asyncio
async def test_healthz(client: AsyncClient):
    r = await client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_readyz_ok(client: AsyncClient):
    r = await client.get("/readyz")
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_readyz_unavailable_when_backend_down(broken_client: AsyncClient):
    r = await broken_client.get("/readyz")
    assert r.status_code == 503
    assert r.json() == {"status": "unavailable", "detail": "storage unreachable"}


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient):
    r = await client.get("/list")
    assert r.headers.get("x-request-id")
    r = await client.get("/list", headers={"X-Request-ID": "abc-123"})
    assert r.headers["x-request-id"] == "abc-123"


@pytest.mark.asyncio
async def test_metrics_exposes_storage_counters(client: AsyncClient):
    await client.post("/upload", files={"file": ("m.txt", b"x", "text/plain")})
    await client.get("/get-download-link/m.txt")
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "storage_operations_total" in r.text
    assert "download_link_mint_total" in r.text
    assert 'path="/get-download-link/{key}"' in r.text


@pytest.mark.asyncio
async def test_metrics_secret_required_when_configured(client: AsyncClient, monkeypatch):
    monkeypatch.setenv("METRICS_SECRET", "s3cret")
    get_settings.cache_clear()
    r = await client.get("/metrics")
    assert r.status_code == 404
    r = await client.get("/metrics", headers={"X-Metrics-Secret": "wrong"})
    assert r.status_code == 404
    r = await client.get("/metrics", headers={"X-Metrics-Secret": "s3cret"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_unknown_route_plain_text_404(client: AsyncClient):
    r = await client.get("/nope")
    assert r.status_code == 404
    assert r.text == "Not Found"


def test_normalize_path_collapses_keys():
    assert normalize_path("/modify/a/b/c.txt") == "/modify/{key}"
    assert normalize_path("/delete/x") == "/delete/{key}"
    assert normalize_path("/list") == "/list"
    assert normalize_path("") == "/"
