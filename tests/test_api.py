"""Tests for the JSON-shaped boundary functions."""

import pytest
from conftest import EVENT, FakeDetector, add_photo, basis, make_face

from event_face_search.api import (
    face_search,
    face_search_available,
    pending_photos,
    photo_processing_status,
    processing_stats,
)
from event_face_search.embedding.face_repository import (
    record_detection_failure,
    record_detection_result,
)
from event_face_search.errors import NoFaceDetectedError
from event_face_search.search.index import SimilarityIndex
from event_face_search.search.query import FaceMatcher


def test_pending_photos_with_thumbnail_urls(db_conn, media):
    add_photo(db_conn, "p1", minutes=0)
    add_photo(db_conn, "p2", minutes=1, thumbnail=False)
    add_photo(db_conn, "done", minutes=2)
    record_detection_result(db_conn, "done", [])

    assert pending_photos(db_conn, media, EVENT) == [
        {"photoId": "p1", "thumbnailUrl": f"https://cdn.example.com/{EVENT}/thumbs/p1.jpg"},
        {"photoId": "p2", "thumbnailUrl": None},
    ]
    assert len(pending_photos(db_conn, media, EVENT, limit=1)) == 1


def test_processing_stats(db_conn):
    add_photo(db_conn, "p1", minutes=0)
    add_photo(db_conn, "p2", minutes=1)
    add_photo(db_conn, "p3", minutes=2)
    record_detection_result(db_conn, "p1", [make_face(basis(0)), make_face(basis(1))])
    record_detection_failure(db_conn, "p2", "timeout")

    assert processing_stats(db_conn, EVENT) == {
        "pending": 1,
        "processing": 0,
        "processed": 1,
        "noFaceFound": 0,
        "failed": 1,
        "total": 3,
        "facesFound": 2,
    }


def test_photo_processing_status(db_conn):
    add_photo(db_conn, "p1")
    record_detection_failure(db_conn, "p1", "Failed to fetch p1: HTTP 404")

    status = photo_processing_status(db_conn, "p1")
    assert status["status"] == "failed"
    assert status["errorMessage"] == "Failed to fetch p1: HTTP 404"
    assert status["facesFound"] == 0
    assert status["processedAt"] is not None


def test_photo_processing_status_unknown_photo(db_conn):
    assert photo_processing_status(db_conn, "nope") == {
        "photoId": "nope",
        "status": "pending",
        "facesFound": 0,
        "processedAt": None,
        "errorMessage": None,
    }


def test_face_search_results(db_conn, media):
    add_photo(db_conn, "p1", minutes=0)
    add_photo(db_conn, "p2", minutes=1)
    record_detection_result(db_conn, "p1", [make_face(basis(0), x=12, y=8, width=30, height=40)])
    record_detection_result(db_conn, "p2", [make_face(basis(3))])
    matcher = FaceMatcher(
        FakeDetector({b"selfie": [make_face(basis(0))]}), SimilarityIndex.from_connection(db_conn)
    )

    results = face_search(matcher, db_conn, media, EVENT, b"selfie")
    matcher.close()

    assert len(results) == 1
    result = results[0]
    assert result["photoId"] == "p1"
    assert result["similarity"] == pytest.approx(1.0, abs=1e-3)
    assert result["distance"] == pytest.approx(0.0, abs=1e-3)
    assert result["thumbnailUrl"] == f"https://cdn.example.com/{EVENT}/thumbs/p1.jpg"
    assert result["boundingBox"] == {"x": 12, "y": 8, "width": 30, "height": 40}


def test_face_search_without_face(db_conn, media):
    matcher = FaceMatcher(FakeDetector(), SimilarityIndex.from_connection(db_conn))
    with pytest.raises(NoFaceDetectedError):
        face_search(matcher, db_conn, media, EVENT, b"landscape")
    matcher.close()


def test_face_search_available(db_conn):
    add_photo(db_conn, "p1")
    assert face_search_available(db_conn, EVENT) == {"available": False}
    record_detection_result(db_conn, "p1", [make_face(basis(0))])
    assert face_search_available(db_conn, EVENT) == {"available": True}
