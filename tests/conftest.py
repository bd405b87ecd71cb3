"""Shared test fixtures."""

import time
from datetime import datetime, timedelta

import duckdb
import numpy as np
import pytest

from event_face_search.errors import MediaFetchError
from event_face_search.manager.repository import register_photo
from event_face_search.manager.schema import ensure_schema
from event_face_search.models import BoundingBox, DetectedFace

DIM = 8
EVENT = "event-1"
BASE_TIME = datetime(2026, 5, 1, 9, 0, 0)


@pytest.fixture
def db_conn():
    """In-memory DuckDB connection with schema initialized for DIM-d embeddings."""
    conn = duckdb.connect(":memory:")
    ensure_schema(conn, embedding_dim=DIM)
    yield conn
    conn.close()


@pytest.fixture
def media() -> "InMemoryMediaStore":
    return InMemoryMediaStore()


def basis(i: int, dim: int = DIM) -> np.ndarray:
    """Unit vector along axis ``i``."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[i] = 1.0
    return vec


def make_face(
    embedding: np.ndarray,
    x: float = 0.0,
    y: float = 0.0,
    width: float = 10.0,
    height: float = 10.0,
    confidence: float | None = 0.99,
) -> DetectedFace:
    """Helper to create a DetectedFace."""
    return DetectedFace(
        bounding_box=BoundingBox(x=x, y=y, width=width, height=height),
        embedding=np.asarray(embedding, dtype=np.float32),
        confidence=confidence,
    )


def add_photo(
    conn: duckdb.DuckDBPyConnection,
    photo_id: str,
    event_id: str = EVENT,
    minutes: int = 0,
    thumbnail: bool = True,
) -> str:
    """Register a pending photo created ``minutes`` after BASE_TIME."""
    register_photo(
        conn,
        photo_id,
        event_id,
        storage_path=f"{event_id}/{photo_id}.jpg",
        thumbnail_path=f"{event_id}/thumbs/{photo_id}.jpg" if thumbnail else None,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    return photo_id


class InMemoryMediaStore:
    """Media store serving bytes from a dict."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    def put(self, storage_path: str, data: bytes) -> None:
        self.objects[storage_path] = data

    def get_bytes(self, storage_path: str) -> bytes:
        try:
            return self.objects[storage_path]
        except KeyError:
            raise MediaFetchError(storage_path, "not found") from None

    def get_public_url(self, path: str) -> str:
        return f"https://cdn.example.com/{path}"


class FakeDetector:
    """Detector returning scripted faces per image payload.

    A scripted value may be an exception instance, which is raised instead.
    """

    def __init__(self, script: dict[bytes, list[DetectedFace] | Exception] | None = None) -> None:
        self.script = script or {}
        self.delays: dict[bytes, float] = {}
        self.calls: list[bytes] = []

    def detect(self, image_bytes: bytes) -> list[DetectedFace]:
        self.calls.append(image_bytes)
        delay = self.delays.get(image_bytes)
        if delay:
            time.sleep(delay)
        result = self.script.get(image_bytes, [])
        if isinstance(result, Exception):
            raise result
        return list(result)
