"""Data models for photos, face embeddings and match results."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

import numpy as np


class PhotoStatus(StrEnum):
    """Face-processing state of a photo."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    NO_FACE_FOUND = "no_face_found"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {PhotoStatus.PROCESSED, PhotoStatus.NO_FACE_FOUND, PhotoStatus.FAILED}
)


@dataclass(frozen=True)
class BoundingBox:
    """Face region within the source photo, in pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        """Build from (x1, y1, x2, y2) corner coordinates."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class Photo:
    """An event photo and its face-processing state."""

    id: str
    event_id: str
    storage_path: str
    thumbnail_path: str | None
    status: PhotoStatus = PhotoStatus.PENDING
    claimed_at: datetime | None = None
    processed_at: datetime | None = None
    faces_found: int = 0
    error_message: str | None = None
    created_at: datetime | None = None


@dataclass
class DetectedFace:
    """A single face returned by the detector."""

    bounding_box: BoundingBox
    embedding: np.ndarray  # shape (FACE_EMBEDDING_DIM,)
    confidence: float | None = None


@dataclass
class FaceEmbedding:
    """A persisted face embedding belonging to a photo."""

    id: str
    photo_id: str
    event_id: str
    embedding: np.ndarray
    bounding_box: BoundingBox
    confidence: float | None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ProcessingStats:
    """Per-event photo counts by processing state."""

    pending: int = 0
    processing: int = 0
    processed: int = 0
    no_face_found: int = 0
    failed: int = 0
    faces_found: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.processed + self.no_face_found + self.failed


@dataclass(frozen=True)
class MatchResult:
    """A photo matching a query face, with the closest face's distance."""

    photo_id: str
    bounding_box: BoundingBox
    distance: float

    @property
    def similarity(self) -> float:
        """Cosine similarity implied by the distance between unit vectors."""
        return distance_to_similarity(self.distance)


class PhotoOutcome(StrEnum):
    """Result of one photo passing through the batch processor."""

    PROCESSED = "processed"
    NO_FACE_FOUND = "no_face_found"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class BatchSummary:
    """Aggregate outcome counts for one batch run."""

    event_id: str
    processed: int = 0
    no_face_found: int = 0
    failed: int = 0
    skipped: int = 0
    faces_found: int = 0
    cancelled: bool = False
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return self.processed + self.no_face_found + self.failed

    def add(self, outcome: PhotoOutcome, faces: int = 0) -> None:
        if outcome is PhotoOutcome.PROCESSED:
            self.processed += 1
            self.faces_found += faces
        elif outcome is PhotoOutcome.NO_FACE_FOUND:
            self.no_face_found += 1
        elif outcome is PhotoOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


def distance_to_similarity(distance: float) -> float:
    """Convert a unit-vector Euclidean distance into cosine similarity."""
    return 1.0 - (distance**2) / 2.0


def similarity_to_distance(similarity: float) -> float:
    """Convert a cosine similarity into the equivalent unit-vector distance."""
    return math.sqrt(max(0.0, 2.0 - 2.0 * similarity))
