"""Media store clients: fetch photo bytes and build public URLs."""

import logging
from pathlib import Path
from typing import Protocol

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from event_face_search.config import (
    DATA_DIR,
    MEDIA_BASE_URL,
    MEDIA_BUCKET,
    MEDIA_MAX_ATTEMPTS,
    MEDIA_TIMEOUT_SECONDS,
    THUMBNAIL_BUCKET,
)
from event_face_search.errors import MediaFetchError

logger = logging.getLogger(__name__)


class MediaStore(Protocol):
    """Source of photo bytes and public URLs."""

    def get_bytes(self, storage_path: str) -> bytes: ...

    def get_public_url(self, path: str) -> str: ...


class HttpMediaStore:
    """Client for a public object-storage bucket served over HTTP.

    Objects live at ``{base_url}/storage/v1/object/public/{bucket}/{path}``.
    Originals are read from ``bucket``; public URLs (thumbnails) point at
    ``public_bucket``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        bucket: str = MEDIA_BUCKET,
        public_bucket: str = THUMBNAIL_BUCKET,
        timeout: float = MEDIA_TIMEOUT_SECONDS,
        max_attempts: int = MEDIA_MAX_ATTEMPTS,
        retry_wait: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or MEDIA_BASE_URL).rstrip("/")
        if not self.base_url:
            raise ValueError("Media base URL is required. Set MEDIA_BASE_URL in .env file.")
        self.bucket = bucket
        self.public_bucket = public_bucket
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def object_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path.lstrip('/')}"

    def get_bytes(self, storage_path: str) -> bytes:
        """Download an original photo, retrying transport errors.

        Raises:
            MediaFetchError: After the last attempt failed, or on an HTTP
                error status.
        """
        url = self.object_url(self.bucket, storage_path)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            resp = retrying(self._client.get, url)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise MediaFetchError(storage_path, "timeout") from exc
        except httpx.HTTPStatusError as exc:
            raise MediaFetchError(storage_path, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise MediaFetchError(storage_path, str(exc) or type(exc).__name__) from exc
        return resp.content

    def get_public_url(self, path: str) -> str:
        return self.object_url(self.public_bucket, path)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpMediaStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class LocalMediaStore:
    """Photos stored as files under a data directory."""

    def __init__(self, root: Path | None = None, public_base_url: str | None = None) -> None:
        self.root = Path(root or DATA_DIR)
        self.public_base_url = public_base_url

    def get_bytes(self, storage_path: str) -> bytes:
        path = self.root / storage_path
        try:
            return path.read_bytes()
        except OSError as exc:
            raise MediaFetchError(storage_path, exc.strerror or str(exc)) from exc

    def get_public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path.lstrip('/')}"
        return (self.root / path).resolve().as_uri()


def default_media_store() -> MediaStore:
    """HTTP store when MEDIA_BASE_URL is configured, local files otherwise."""
    if MEDIA_BASE_URL:
        return HttpMediaStore()
    return LocalMediaStore()
