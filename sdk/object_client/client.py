"""
Python client for the object gateway: upload, modify, delete, list, download links, watch.
Uploads retry with exponential backoff on transport errors only; HTTP errors are raised as-is.
"""
import json
import mimetypes
import time
from pathlib import Path
from typing import Iterator
from urllib.parse import quote

import httpx


class ObjectClientError(Exception):
    """Non-2xx response from the gateway. Body is the server's plain-text message."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class BucketEvent:
    """One SSE frame from /watch: `records` for data frames, `error` for error frames."""

    def __init__(self, event: str, data: str):
        self.event = event
        self.data = data

    @property
    def is_error(self) -> bool:
        return self.event == "error"

    @property
    def records(self) -> list[dict]:
        if self.is_error:
            return []
        return json.loads(self.data)

    def __repr__(self) -> str:
        return f"BucketEvent(event={self.event!r}, data={self.data!r})"


def iter_sse(lines: Iterator[str]) -> Iterator[BucketEvent]:
    """Parse SSE lines into events. Comment lines (':' prefix) are skipped."""
    event = "message"
    data: list[str] = []
    for line in lines:
        if line == "":
            if data:
                yield BucketEvent(event, "\n".join(data))
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield BucketEvent(event, "\n".join(data))


class ObjectClient:
    """Client for the single-bucket object gateway."""

    def __init__(self, base_url: str, timeout: float = 60.0, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._session: httpx.Client | None = None

    def _get_session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._session

    @staticmethod
    def _check(r: httpx.Response) -> httpx.Response:
        if r.status_code >= 400:
            raise ObjectClientError(r.status_code, r.text.strip())
        return r

    def _send_file(
        self,
        method: str,
        url: str,
        path: Path,
        data: dict | None = None,
        max_retries: int = 5,
    ) -> str:
        content_type = mimetypes.guess_type(str(path))[0] or "application/octet-stream"
        body = path.read_bytes()
        for attempt in range(max_retries):
            try:
                r = self._get_session().request(
                    method,
                    url,
                    files={"file": (path.name, body, content_type)},
                    data=data,
                )
                return self._check(r).text
            except httpx.TransportError:
                if attempt == max_retries - 1:
                    raise
                backoff = (2**attempt) + (time.time() % 1)  # exponential backoff + jitter
                time.sleep(backoff)
        raise RuntimeError("unreachable")

    def upload(self, path: str | Path, key: str | None = None) -> str:
        """Upload a local file. Key defaults to the file name. Returns the server's confirmation."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        return self._send_file("POST", "/upload", path, data={"key": key} if key else None)

    def modify(self, key: str, path: str | Path) -> str:
        """Replace object `key` with the contents of a local file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        return self._send_file("PUT", f"/modify/{quote(key)}", path)

    def delete(self, key: str) -> str:
        r = self._get_session().delete(f"/delete/{quote(key)}")
        return self._check(r).text

    def list_objects(self) -> list[str]:
        r = self._get_session().get("/list")
        return self._check(r).json()

    def download_link(self, key: str) -> str:
        """Presigned GET URL for key, valid for a few minutes."""
        r = self._get_session().get(f"/get-download-link/{quote(key)}")
        return self._check(r).json()["url"]

    def download(self, key: str, dest: str | Path) -> Path:
        dest = Path(dest)
        with self._get_session().stream("GET", f"/download/{quote(key)}") as r:
            if r.status_code >= 400:
                r.read()
                self._check(r)
            with dest.open("wb") as f:
                for chunk in r.iter_bytes():
                    f.write(chunk)
        return dest

    def watch(self) -> Iterator[BucketEvent]:
        """Yield bucket events until the server ends the stream (error frame) or the caller stops."""
        timeout = httpx.Timeout(self.timeout, read=None)
        with self._get_session().stream("GET", "/watch", timeout=timeout) as r:
            if r.status_code >= 400:
                r.read()
                self._check(r)
            yield from iter_sse(r.iter_lines())

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "ObjectClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
