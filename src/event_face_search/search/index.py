"""Per-event exact nearest-neighbour index over face embeddings.

Distances are Euclidean between L2-normalized vectors, both when the index
is built and when it is queried. Snapshots are immutable; a rebuild creates
a new ``EventIndex`` and swaps it into the cache.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import duckdb
import numpy as np

from event_face_search.errors import EmbeddingIntegrityError
from event_face_search.models import BoundingBox, FaceEmbedding, MatchResult

logger = logging.getLogger(__name__)

_SQ_DISTANCE_EPS = 1e-6


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Normalize rows (or a single vector) to unit length."""
    vectors = np.asarray(vectors, dtype=np.float32)
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return vectors / np.where(norms == 0, 1.0, norms)


@dataclass(frozen=True)
class EventIndex:
    """Immutable embedding matrix for one event at one generation."""

    event_id: str
    generation: int
    dim: int
    matrix: np.ndarray  # (n, dim) float32, unit rows
    photo_ids: tuple[str, ...]
    bounding_boxes: tuple[BoundingBox, ...]

    @classmethod
    def build(
        cls,
        event_id: str,
        embeddings: Sequence[FaceEmbedding],
        generation: int = 0,
        dim: int | None = None,
    ) -> "EventIndex":
        if dim is None:
            dim = len(embeddings[0].embedding) if embeddings else 0
        if embeddings:
            matrix = np.stack(
                [np.asarray(e.embedding, dtype=np.float32).reshape(-1) for e in embeddings]
            )
            if matrix.shape[1] != dim:
                raise EmbeddingIntegrityError(
                    f"Index for event {event_id} expects {dim}-d embeddings, "
                    f"got {matrix.shape[1]}-d"
                )
            matrix = l2_normalize(matrix)
        else:
            matrix = np.zeros((0, dim), dtype=np.float32)
        matrix.setflags(write=False)
        return cls(
            event_id=event_id,
            generation=generation,
            dim=dim,
            matrix=matrix,
            photo_ids=tuple(e.photo_id for e in embeddings),
            bounding_boxes=tuple(e.bounding_box for e in embeddings),
        )

    def __len__(self) -> int:
        return len(self.photo_ids)

    def distances(self, query: np.ndarray) -> np.ndarray:
        """Euclidean distance from the normalized query to every row."""
        q = l2_normalize(np.asarray(query, dtype=np.float32).reshape(-1))
        if self.dim and q.shape[0] != self.dim:
            raise EmbeddingIntegrityError(
                f"Query has {q.shape[0]} dimensions, index has {self.dim}"
            )
        # ||a - b||^2 = 2 - 2 a.b for unit vectors
        sq = 2.0 - 2.0 * (self.matrix @ q)
        # float32 rounding noise; identical vectors must come out at exactly 0
        sq[sq < _SQ_DISTANCE_EPS] = 0.0
        return np.sqrt(sq)

    def search(self, query: np.ndarray, threshold: float, max_results: int) -> list[MatchResult]:
        """Closest photos within ``threshold``, one result per photo.

        Ordered by ascending distance, then photo id.
        """
        if len(self) == 0 or max_results <= 0:
            return []
        dists = self.distances(query)
        candidates = np.flatnonzero(dists <= threshold)
        if candidates.size == 0:
            return []

        ranked = sorted(candidates.tolist(), key=lambda i: (float(dists[i]), self.photo_ids[i]))
        results: list[MatchResult] = []
        seen: set[str] = set()
        for i in ranked:
            photo_id = self.photo_ids[i]
            if photo_id in seen:
                continue
            seen.add(photo_id)
            results.append(
                MatchResult(
                    photo_id=photo_id,
                    bounding_box=self.bounding_boxes[i],
                    distance=float(dists[i]),
                )
            )
            if len(results) >= max_results:
                break
        return results


class SimilarityIndex:
    """Cache of EventIndex snapshots kept in step with the embedding store.

    Args:
        load_generation: Returns the persisted generation of an event.
        load_embeddings: Returns every embedding of an event.
        dim: Embedding dimension shared by all events.
    """

    def __init__(
        self,
        load_generation: Callable[[str], int],
        load_embeddings: Callable[[str], list[FaceEmbedding]],
        dim: int,
    ) -> None:
        self._load_generation = load_generation
        self._load_embeddings = load_embeddings
        self.dim = dim
        self._snapshots: dict[str, EventIndex] = {}
        self._build_lock = threading.Lock()

    @classmethod
    def from_connection(cls, conn: duckdb.DuckDBPyConnection) -> "SimilarityIndex":
        """Back the index with a DuckDB store; each load uses its own cursor."""
        from event_face_search.embedding.face_repository import (
            get_embeddings_for_event,
            get_generation,
        )
        from event_face_search.manager.schema import get_embedding_dim

        def load_generation(event_id: str) -> int:
            with conn.cursor() as cur:
                return get_generation(cur, event_id)

        def load_embeddings(event_id: str) -> list[FaceEmbedding]:
            with conn.cursor() as cur:
                return get_embeddings_for_event(cur, event_id)

        return cls(load_generation, load_embeddings, dim=get_embedding_dim(conn))

    def snapshot(self, event_id: str) -> EventIndex:
        """Return a snapshot at the event's current generation, rebuilding if stale."""
        generation = self._load_generation(event_id)
        current = self._snapshots.get(event_id)
        if current is not None and current.generation == generation:
            return current
        with self._build_lock:
            current = self._snapshots.get(event_id)
            if current is not None and current.generation == generation:
                return current
            return self._rebuild(event_id)

    def refresh(self, event_id: str) -> EventIndex:
        """Rebuild an event's snapshot unconditionally."""
        with self._build_lock:
            return self._rebuild(event_id)

    def invalidate(self, event_id: str) -> None:
        self._snapshots.pop(event_id, None)

    def search(
        self,
        event_id: str,
        query: np.ndarray,
        threshold: float,
        max_results: int,
    ) -> list[MatchResult]:
        """Ranked photo matches for ``query`` within one event."""
        return self.snapshot(event_id).search(query, threshold, max_results)

    def _rebuild(self, event_id: str) -> EventIndex:
        # Generation before rows: a concurrent write leaves this snapshot stale.
        generation = self._load_generation(event_id)
        embeddings = self._load_embeddings(event_id)
        index = EventIndex.build(event_id, embeddings, generation=generation, dim=self.dim)
        self._snapshots[event_id] = index
        logger.debug(
            "Built index for event %s: %d faces at generation %d",
            event_id,
            len(index),
            generation,
        )
        return index
