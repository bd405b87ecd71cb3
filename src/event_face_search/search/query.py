"""Selfie-to-photo matching."""

import math

import numpy as np

from event_face_search.config import (
    CONCURRENCY,
    DEFAULT_MATCH_LIMIT,
    DEFAULT_MATCH_THRESHOLD,
    DETECT_TIMEOUT_SECONDS,
    MAX_MATCH_LIMIT,
)
from event_face_search.embedding.detector import Detector, TimedDetector
from event_face_search.embedding.face_repository import validate_embedding
from event_face_search.errors import NoFaceDetectedError
from event_face_search.models import DetectedFace, MatchResult
from event_face_search.search.index import SimilarityIndex


def select_query_face(faces: list[DetectedFace]) -> DetectedFace:
    """Pick the face with the largest bounding box as the query subject.

    Raises:
        NoFaceDetectedError: ``faces`` is empty.
    """
    if not faces:
        raise NoFaceDetectedError("No face detected in selfie")
    return max(faces, key=lambda face: face.bounding_box.area)


class FaceMatcher:
    """Find an event's photos that contain the face in a selfie.

    The same ``threshold`` is used for every query unless a caller passes an
    explicit one. Up to ``max_concurrent`` selfies are detected at once;
    further queries wait for a free slot before their timeout starts.
    """

    def __init__(
        self,
        detector: Detector,
        index: SimilarityIndex,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        detect_timeout: float = DETECT_TIMEOUT_SECONDS,
        max_concurrent: int = CONCURRENCY,
    ) -> None:
        _check_threshold(threshold)
        self.detector = TimedDetector(detector, timeout=detect_timeout, max_workers=max_concurrent)
        self.index = index
        self.threshold = threshold

    def find_matches(
        self,
        event_id: str,
        selfie_bytes: bytes,
        threshold: float | None = None,
        max_results: int | None = None,
    ) -> list[MatchResult]:
        """Rank the event's photos by distance to the selfie's main face.

        Raises:
            NoFaceDetectedError: No face was found in the selfie.
            DetectorError: The detector failed or timed out.
        """
        face = select_query_face(self.detector.detect(selfie_bytes))
        return self.find_matches_by_embedding(event_id, face.embedding, threshold, max_results)

    def find_matches_by_embedding(
        self,
        event_id: str,
        embedding: np.ndarray,
        threshold: float | None = None,
        max_results: int | None = None,
    ) -> list[MatchResult]:
        """Rank the event's photos by distance to a precomputed face embedding.

        Raises:
            EmbeddingIntegrityError: The embedding has the wrong dimension, is
                all zeros or is not finite.
            ValueError: The threshold is negative or NaN.
        """
        embedding = validate_embedding(embedding, self.index.dim)
        if threshold is None:
            threshold = self.threshold
        _check_threshold(threshold)
        limit = DEFAULT_MATCH_LIMIT if max_results is None else max_results
        limit = min(MAX_MATCH_LIMIT, max(1, limit))
        return self.index.search(event_id, embedding, threshold, limit)

    def close(self) -> None:
        self.detector.close()


def _check_threshold(threshold: float) -> None:
    if math.isnan(threshold) or threshold < 0:
        raise ValueError(f"threshold must be non-negative, got {threshold}")
