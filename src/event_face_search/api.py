"""Boundary calls for the admin and API layer.

Each function returns plain JSON-ready dicts with camelCase keys, the
shape the web layer sends to clients.
"""

import duckdb

from event_face_search.config import DEFAULT_PENDING_LIMIT
from event_face_search.embedding.face_repository import event_has_faces, get_stats
from event_face_search.manager.media import MediaStore
from event_face_search.manager.repository import get_photo, list_pending_photos
from event_face_search.search.query import FaceMatcher


def pending_photos(
    conn: duckdb.DuckDBPyConnection,
    media: MediaStore,
    event_id: str,
    limit: int = DEFAULT_PENDING_LIMIT,
) -> list[dict]:
    """Photos still awaiting face processing, with thumbnail URLs."""
    photos = list_pending_photos(conn, event_id, limit)
    return [
        {
            "photoId": photo.id,
            "thumbnailUrl": _public_url(media, photo.thumbnail_path),
        }
        for photo in photos
    ]


def processing_stats(conn: duckdb.DuckDBPyConnection, event_id: str) -> dict:
    """Per-status photo counts for an event's progress view."""
    stats = get_stats(conn, event_id)
    return {
        "pending": stats.pending,
        "processing": stats.processing,
        "processed": stats.processed,
        "noFaceFound": stats.no_face_found,
        "failed": stats.failed,
        "total": stats.total,
        "facesFound": stats.faces_found,
    }


def photo_processing_status(conn: duckdb.DuckDBPyConnection, photo_id: str) -> dict:
    """Processing status of one photo; unknown photos report as pending."""
    photo = get_photo(conn, photo_id)
    if photo is None:
        return {
            "photoId": photo_id,
            "status": "pending",
            "facesFound": 0,
            "processedAt": None,
            "errorMessage": None,
        }
    return {
        "photoId": photo.id,
        "status": str(photo.status),
        "facesFound": photo.faces_found,
        "processedAt": photo.processed_at.isoformat() if photo.processed_at else None,
        "errorMessage": photo.error_message,
    }


def face_search(
    matcher: FaceMatcher,
    conn: duckdb.DuckDBPyConnection,
    media: MediaStore,
    event_id: str,
    selfie_bytes: bytes,
    threshold: float | None = None,
    limit: int | None = None,
) -> list[dict]:
    """Match a selfie against an event and attach thumbnail URLs.

    Raises:
        NoFaceDetectedError: The selfie has no detectable face.
    """
    matches = matcher.find_matches(event_id, selfie_bytes, threshold, limit)
    results = []
    for match in matches:
        photo = get_photo(conn, match.photo_id)
        if photo is None:
            continue
        results.append(
            {
                "photoId": match.photo_id,
                "similarity": match.similarity,
                "distance": match.distance,
                "thumbnailUrl": _public_url(media, photo.thumbnail_path),
                "boundingBox": match.bounding_box.to_dict(),
            }
        )
    return results


def face_search_available(conn: duckdb.DuckDBPyConnection, event_id: str) -> dict:
    """Whether the event has any processed faces to search."""
    return {"available": event_has_faces(conn, event_id)}


def _public_url(media: MediaStore, path: str | None) -> str | None:
    return media.get_public_url(path) if path else None
