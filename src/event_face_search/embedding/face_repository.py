"""CRUD operations for face embeddings and photo processing outcomes in DuckDB."""

import uuid

import duckdb
import numpy as np

from event_face_search.db import transaction
from event_face_search.errors import EmbeddingIntegrityError, InvalidStateTransitionError
from event_face_search.manager.repository import require_photo, utcnow
from event_face_search.manager.schema import get_embedding_dim
from event_face_search.models import (
    TERMINAL_STATUSES,
    BoundingBox,
    DetectedFace,
    FaceEmbedding,
    PhotoStatus,
    ProcessingStats,
)

_OPEN_STATUSES = (PhotoStatus.PENDING, PhotoStatus.PROCESSING)
_RESETTABLE_STATUSES = TERMINAL_STATUSES


def record_detection_result(
    conn: duckdb.DuckDBPyConnection,
    photo_id: str,
    faces: list[DetectedFace],
    event_id: str | None = None,
) -> bool:
    """Persist all faces of a photo and close it in one transaction.

    The photo ends ``processed`` when ``faces`` is non-empty and
    ``no_face_found`` otherwise. Returns False, changing nothing, when the
    photo is no longer pending or processing (e.g. a retried write).

    Raises:
        EmbeddingIntegrityError: A vector has the wrong dimension, is not
            finite or is all zeros, or ``event_id`` does not match the photo.
        PhotoNotFoundError: Unknown photo id.
    """
    dim = get_embedding_dim(conn)
    vectors = [validate_embedding(face.embedding, dim) for face in faces]

    with transaction(conn):
        photo = require_photo(conn, photo_id)
        if event_id is not None and photo.event_id != event_id:
            raise EmbeddingIntegrityError(
                f"Photo {photo_id} belongs to event {photo.event_id}, not {event_id}"
            )
        if photo.status not in _OPEN_STATUSES:
            return False

        for face, vec in zip(faces, vectors):
            box = face.bounding_box
            conn.execute(
                """
                INSERT INTO face_embeddings
                (id, photo_id, event_id, bbox_x, bbox_y, bbox_width, bbox_height,
                 confidence, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    str(uuid.uuid4()),
                    photo_id,
                    photo.event_id,
                    box.x,
                    box.y,
                    box.width,
                    box.height,
                    face.confidence,
                    vec.tolist(),
                    utcnow(),
                ],
            )

        status = PhotoStatus.PROCESSED if faces else PhotoStatus.NO_FACE_FOUND
        conn.execute(
            """
            UPDATE photos
            SET status = ?, faces_found = ?, processed_at = ?,
                claimed_at = NULL, error_message = NULL
            WHERE id = ?
            """,
            [str(status), len(faces), utcnow(), photo_id],
        )
        if faces:
            _bump_generation(conn, photo.event_id)
    return True


def record_detection_failure(
    conn: duckdb.DuckDBPyConnection,
    photo_id: str,
    reason: str,
) -> bool:
    """Mark an open photo as failed with a diagnostic reason.

    Returns False when the photo was already closed.
    """
    with transaction(conn):
        photo = require_photo(conn, photo_id)
        if photo.status not in _OPEN_STATUSES:
            return False
        conn.execute(
            """
            UPDATE photos
            SET status = ?, faces_found = 0, processed_at = ?,
                claimed_at = NULL, error_message = ?
            WHERE id = ?
            """,
            [str(PhotoStatus.FAILED), utcnow(), reason, photo_id],
        )
    return True


def reprocess_photo(conn: duckdb.DuckDBPyConnection, photo_id: str) -> None:
    """Reset a closed photo to pending, dropping its embeddings.

    Raises:
        InvalidStateTransitionError: The photo is still pending or processing.
    """
    with transaction(conn):
        photo = require_photo(conn, photo_id)
        if photo.status not in _RESETTABLE_STATUSES:
            raise InvalidStateTransitionError(
                f"Photo {photo_id} is {photo.status}; only closed photos can be reprocessed"
            )
        deleted = _delete_embeddings(conn, photo_id)
        _reset_to_pending(conn, [photo_id])
        if deleted:
            _bump_generation(conn, photo.event_id)


def retry_failed_photos(conn: duckdb.DuckDBPyConnection, event_id: str) -> int:
    """Move every failed photo of an event back to pending. Returns the count."""
    with transaction(conn):
        rows = conn.execute(
            "SELECT id FROM photos WHERE event_id = ? AND status = ?",
            [event_id, str(PhotoStatus.FAILED)],
        ).fetchall()
        photo_ids = [row[0] for row in rows]
        _reset_to_pending(conn, photo_ids)
    return len(photo_ids)


def delete_photo(conn: duckdb.DuckDBPyConnection, photo_id: str) -> bool:
    """Delete a photo and its embeddings. Returns False for unknown ids."""
    with transaction(conn):
        row = conn.execute("SELECT event_id FROM photos WHERE id = ?", [photo_id]).fetchone()
        if row is None:
            return False
        deleted = _delete_embeddings(conn, photo_id)
        conn.execute("DELETE FROM photos WHERE id = ?", [photo_id])
        if deleted:
            _bump_generation(conn, row[0])
    return True


def get_embeddings_for_event(
    conn: duckdb.DuckDBPyConnection,
    event_id: str,
) -> list[FaceEmbedding]:
    """Return every face embedding of an event, ordered by photo id."""
    rows = conn.execute(
        """
        SELECT id, photo_id, event_id, bbox_x, bbox_y, bbox_width, bbox_height,
               confidence, embedding, created_at
        FROM face_embeddings
        WHERE event_id = ?
        ORDER BY photo_id, id
        """,
        [event_id],
    ).fetchall()
    return [_row_to_face_embedding(row) for row in rows]


def get_faces_for_photo(
    conn: duckdb.DuckDBPyConnection,
    photo_id: str,
) -> list[FaceEmbedding]:
    """Return all face embeddings for a given photo."""
    rows = conn.execute(
        """
        SELECT id, photo_id, event_id, bbox_x, bbox_y, bbox_width, bbox_height,
               confidence, embedding, created_at
        FROM face_embeddings
        WHERE photo_id = ?
        ORDER BY confidence DESC NULLS LAST, id
        """,
        [photo_id],
    ).fetchall()
    return [_row_to_face_embedding(row) for row in rows]


def get_stats(conn: duckdb.DuckDBPyConnection, event_id: str) -> ProcessingStats:
    """Return per-status photo counts and the total face count for an event."""
    rows = conn.execute(
        """
        SELECT status, COUNT(*), COALESCE(SUM(faces_found), 0)
        FROM photos
        WHERE event_id = ?
        GROUP BY status
        """,
        [event_id],
    ).fetchall()
    counts = {row[0]: row[1] for row in rows}
    faces = sum(int(row[2]) for row in rows)
    return ProcessingStats(
        pending=counts.get(PhotoStatus.PENDING, 0),
        processing=counts.get(PhotoStatus.PROCESSING, 0),
        processed=counts.get(PhotoStatus.PROCESSED, 0),
        no_face_found=counts.get(PhotoStatus.NO_FACE_FOUND, 0),
        failed=counts.get(PhotoStatus.FAILED, 0),
        faces_found=faces,
    )


def get_generation(conn: duckdb.DuckDBPyConnection, event_id: str) -> int:
    """Return the event's embedding generation (0 when never written)."""
    row = conn.execute(
        "SELECT generation FROM event_generations WHERE event_id = ?", [event_id]
    ).fetchone()
    return row[0] if row else 0


def event_has_faces(conn: duckdb.DuckDBPyConnection, event_id: str) -> bool:
    """Return True when at least one face embedding exists for the event."""
    row = conn.execute(
        "SELECT EXISTS (SELECT 1 FROM face_embeddings WHERE event_id = ?)", [event_id]
    ).fetchone()
    return bool(row[0]) if row else False


def validate_embedding(embedding: np.ndarray, dim: int) -> np.ndarray:
    """Return the embedding as a flat float32 vector or raise EmbeddingIntegrityError."""
    vec = np.asarray(embedding, dtype=np.float32).reshape(-1)
    if vec.shape[0] != dim:
        raise EmbeddingIntegrityError(f"Expected {dim}-d embedding, got {vec.shape[0]}-d")
    if not np.all(np.isfinite(vec)):
        raise EmbeddingIntegrityError("Embedding contains NaN or infinite values")
    if not np.any(vec):
        raise EmbeddingIntegrityError("Embedding is all zeros")
    return vec


def _delete_embeddings(conn: duckdb.DuckDBPyConnection, photo_id: str) -> int:
    rows = conn.execute(
        "DELETE FROM face_embeddings WHERE photo_id = ? RETURNING id", [photo_id]
    ).fetchall()
    return len(rows)


def _reset_to_pending(conn: duckdb.DuckDBPyConnection, photo_ids: list[str]) -> None:
    for photo_id in photo_ids:
        conn.execute(
            """
            UPDATE photos
            SET status = ?, faces_found = 0, processed_at = NULL,
                claimed_at = NULL, error_message = NULL
            WHERE id = ?
            """,
            [str(PhotoStatus.PENDING), photo_id],
        )


def _bump_generation(conn: duckdb.DuckDBPyConnection, event_id: str) -> None:
    updated = conn.execute(
        """
        UPDATE event_generations SET generation = generation + 1
        WHERE event_id = ?
        RETURNING generation
        """,
        [event_id],
    ).fetchall()
    if not updated:
        conn.execute(
            "INSERT INTO event_generations (event_id, generation) VALUES (?, 1)",
            [event_id],
        )


def _row_to_face_embedding(row: tuple) -> FaceEmbedding:
    """Convert a database row to a FaceEmbedding object."""
    return FaceEmbedding(
        id=row[0],
        photo_id=row[1],
        event_id=row[2],
        bounding_box=BoundingBox(x=row[3], y=row[4], width=row[5], height=row[6]),
        confidence=row[7],
        embedding=np.array(row[8], dtype=np.float32),
        created_at=row[9],
    )
