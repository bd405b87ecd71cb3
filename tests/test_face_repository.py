"""Tests for face embedding persistence and processing outcomes."""

import numpy as np
import pytest
from conftest import DIM, EVENT, add_photo, basis, make_face

from event_face_search.embedding.face_repository import (
    delete_photo,
    event_has_faces,
    get_embeddings_for_event,
    get_faces_for_photo,
    get_generation,
    get_stats,
    record_detection_failure,
    record_detection_result,
    reprocess_photo,
    retry_failed_photos,
)
from event_face_search.errors import (
    EmbeddingIntegrityError,
    InvalidStateTransitionError,
    PhotoNotFoundError,
)
from event_face_search.manager.repository import claim_photo, get_photo
from event_face_search.models import PhotoStatus, ProcessingStats


def _count_embeddings(conn, photo_id):
    return conn.execute(
        "SELECT COUNT(*) FROM face_embeddings WHERE photo_id = ?", [photo_id]
    ).fetchone()[0]


def test_record_result_with_faces(db_conn):
    add_photo(db_conn, "p1")
    claim_photo(db_conn, "p1")
    faces = [make_face(basis(0), x=5, confidence=0.9), make_face(basis(1), x=50, confidence=0.8)]

    assert record_detection_result(db_conn, "p1", faces, event_id=EVENT)

    photo = get_photo(db_conn, "p1")
    assert photo.status is PhotoStatus.PROCESSED
    assert photo.faces_found == 2
    assert photo.processed_at is not None
    assert photo.claimed_at is None
    assert _count_embeddings(db_conn, "p1") == 2
    assert get_generation(db_conn, EVENT) == 1

    stored = get_faces_for_photo(db_conn, "p1")
    assert [f.bounding_box.x for f in stored] == [5, 50]
    assert all(f.event_id == EVENT for f in stored)
    np.testing.assert_allclose(stored[0].embedding, basis(0))


def test_record_result_without_faces(db_conn):
    add_photo(db_conn, "p1")
    assert record_detection_result(db_conn, "p1", [])
    photo = get_photo(db_conn, "p1")
    assert photo.status is PhotoStatus.NO_FACE_FOUND
    assert photo.faces_found == 0
    assert _count_embeddings(db_conn, "p1") == 0
    assert get_generation(db_conn, EVENT) == 0


def test_record_result_twice_does_not_duplicate(db_conn):
    add_photo(db_conn, "p1")
    faces = [make_face(basis(0)), make_face(basis(1))]
    assert record_detection_result(db_conn, "p1", faces)
    assert not record_detection_result(db_conn, "p1", faces)
    assert _count_embeddings(db_conn, "p1") == 2
    assert get_generation(db_conn, EVENT) == 1


def test_record_result_rejects_wrong_dimension(db_conn):
    add_photo(db_conn, "p1")
    claim_photo(db_conn, "p1")
    faces = [make_face(basis(0)), make_face(np.ones(DIM + 1, dtype=np.float32))]

    with pytest.raises(EmbeddingIntegrityError):
        record_detection_result(db_conn, "p1", faces)

    assert get_photo(db_conn, "p1").status is PhotoStatus.PROCESSING
    assert _count_embeddings(db_conn, "p1") == 0


@pytest.mark.parametrize(
    "vector",
    [np.zeros(DIM, dtype=np.float32), np.full(DIM, np.nan, dtype=np.float32)],
    ids=["zeros", "nan"],
)
def test_record_result_rejects_degenerate_vectors(db_conn, vector):
    add_photo(db_conn, "p1")
    with pytest.raises(EmbeddingIntegrityError):
        record_detection_result(db_conn, "p1", [make_face(vector)])
    assert get_photo(db_conn, "p1").status is PhotoStatus.PENDING


def test_record_result_rejects_event_mismatch(db_conn):
    add_photo(db_conn, "p1", event_id="event-2")
    with pytest.raises(EmbeddingIntegrityError):
        record_detection_result(db_conn, "p1", [make_face(basis(0))], event_id=EVENT)
    assert _count_embeddings(db_conn, "p1") == 0
    assert get_photo(db_conn, "p1").status is PhotoStatus.PENDING


def test_record_result_unknown_photo(db_conn):
    with pytest.raises(PhotoNotFoundError):
        record_detection_result(db_conn, "missing", [])


def test_record_failure(db_conn):
    add_photo(db_conn, "p1")
    claim_photo(db_conn, "p1")
    assert record_detection_failure(db_conn, "p1", "Detector timed out after 30s")
    photo = get_photo(db_conn, "p1")
    assert photo.status is PhotoStatus.FAILED
    assert photo.error_message == "Detector timed out after 30s"
    assert _count_embeddings(db_conn, "p1") == 0


def test_record_failure_on_closed_photo_is_ignored(db_conn):
    add_photo(db_conn, "p1")
    record_detection_result(db_conn, "p1", [make_face(basis(0))])
    assert not record_detection_failure(db_conn, "p1", "late failure")
    assert get_photo(db_conn, "p1").status is PhotoStatus.PROCESSED


def test_get_stats(db_conn):
    for i in range(6):
        add_photo(db_conn, f"p{i}", minutes=i)
    add_photo(db_conn, "other", event_id="event-2")
    record_detection_result(db_conn, "p0", [make_face(basis(0)), make_face(basis(1))])
    record_detection_result(db_conn, "p1", [make_face(basis(2))])
    record_detection_result(db_conn, "p2", [])
    record_detection_failure(db_conn, "p3", "corrupt image")
    claim_photo(db_conn, "p4")

    stats = get_stats(db_conn, EVENT)
    assert stats == ProcessingStats(
        pending=1, processing=1, processed=2, no_face_found=1, failed=1, faces_found=3
    )
    assert stats.total == 6
    assert get_stats(db_conn, "no-such-event") == ProcessingStats()


def test_reprocess_photo_clears_embeddings(db_conn):
    add_photo(db_conn, "p1")
    record_detection_result(db_conn, "p1", [make_face(basis(0))])

    reprocess_photo(db_conn, "p1")

    photo = get_photo(db_conn, "p1")
    assert photo.status is PhotoStatus.PENDING
    assert photo.faces_found == 0
    assert photo.processed_at is None
    assert _count_embeddings(db_conn, "p1") == 0
    assert get_generation(db_conn, EVENT) == 2


def test_reprocess_no_face_photo(db_conn):
    add_photo(db_conn, "p1")
    record_detection_result(db_conn, "p1", [])
    reprocess_photo(db_conn, "p1")
    assert get_photo(db_conn, "p1").status is PhotoStatus.PENDING
    assert get_generation(db_conn, EVENT) == 0


def test_reprocess_open_photo_rejected(db_conn):
    add_photo(db_conn, "p1")
    with pytest.raises(InvalidStateTransitionError):
        reprocess_photo(db_conn, "p1")
    claim_photo(db_conn, "p1")
    with pytest.raises(InvalidStateTransitionError):
        reprocess_photo(db_conn, "p1")


def test_retry_failed_photos(db_conn):
    add_photo(db_conn, "p1", minutes=0)
    add_photo(db_conn, "p2", minutes=1)
    add_photo(db_conn, "p3", minutes=2)
    record_detection_failure(db_conn, "p1", "timeout")
    record_detection_failure(db_conn, "p2", "timeout")
    record_detection_result(db_conn, "p3", [])

    assert retry_failed_photos(db_conn, EVENT) == 2
    assert get_photo(db_conn, "p1").status is PhotoStatus.PENDING
    assert get_photo(db_conn, "p1").error_message is None
    assert get_photo(db_conn, "p3").status is PhotoStatus.NO_FACE_FOUND


def test_delete_photo_cascades(db_conn):
    add_photo(db_conn, "p1")
    record_detection_result(db_conn, "p1", [make_face(basis(0)), make_face(basis(1))])

    assert delete_photo(db_conn, "p1")
    assert get_photo(db_conn, "p1") is None
    assert _count_embeddings(db_conn, "p1") == 0
    assert get_generation(db_conn, EVENT) == 2
    assert not delete_photo(db_conn, "p1")


def test_event_has_faces(db_conn):
    add_photo(db_conn, "p1")
    assert not event_has_faces(db_conn, EVENT)
    record_detection_result(db_conn, "p1", [make_face(basis(0))])
    assert event_has_faces(db_conn, EVENT)
    assert not event_has_faces(db_conn, "event-2")


def test_get_embeddings_for_event_scoped(db_conn):
    add_photo(db_conn, "b", minutes=0)
    add_photo(db_conn, "a", minutes=1)
    add_photo(db_conn, "x", event_id="event-2")
    record_detection_result(db_conn, "b", [make_face(basis(0))])
    record_detection_result(db_conn, "a", [make_face(basis(1)), make_face(basis(2))])
    record_detection_result(db_conn, "x", [make_face(basis(3))])

    embeddings = get_embeddings_for_event(db_conn, EVENT)
    assert [e.photo_id for e in embeddings] == ["a", "a", "b"]
    assert all(e.event_id == EVENT for e in embeddings)
    assert all(e.embedding.shape == (DIM,) for e in embeddings)
