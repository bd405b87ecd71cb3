"""CRUD operations for event photos and their processing claims in DuckDB."""

from datetime import UTC, datetime, timedelta

import duckdb

from event_face_search.config import LEASE_TIMEOUT_SECONDS
from event_face_search.errors import PhotoNotFoundError
from event_face_search.models import Photo, PhotoStatus

PHOTO_COLUMNS = (
    "id, event_id, storage_path, thumbnail_path, status, "
    "claimed_at, processed_at, faces_found, error_message, created_at"
)

# A photo is claimable when pending, or when its processing lease is older
# than the cutoff (the run that claimed it is presumed dead).
_CLAIMABLE_SQL = (
    "(status = 'pending' OR "
    "(status = 'processing' AND (claimed_at IS NULL OR claimed_at < ?)))"
)


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in TIMESTAMP columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def register_photo(
    conn: duckdb.DuckDBPyConnection,
    photo_id: str,
    event_id: str,
    storage_path: str,
    thumbnail_path: str | None = None,
    created_at: datetime | None = None,
) -> None:
    """Register an uploaded photo as pending. Skip on id conflict."""
    conn.execute(
        f"""
        INSERT INTO photos (id, event_id, storage_path, thumbnail_path, status, created_at)
        VALUES (?, ?, ?, ?, '{PhotoStatus.PENDING}', ?)
        ON CONFLICT (id) DO NOTHING
        """,
        [photo_id, event_id, storage_path, thumbnail_path, created_at or utcnow()],
    )


def register_photos(conn: duckdb.DuckDBPyConnection, photos: list[Photo]) -> None:
    """Bulk register photos."""
    for photo in photos:
        register_photo(
            conn,
            photo.id,
            photo.event_id,
            photo.storage_path,
            photo.thumbnail_path,
            photo.created_at,
        )


def get_photo(conn: duckdb.DuckDBPyConnection, photo_id: str) -> Photo | None:
    """Look up a single photo by id."""
    row = conn.execute(
        f"SELECT {PHOTO_COLUMNS} FROM photos WHERE id = ?", [photo_id]
    ).fetchone()
    if row is None:
        return None
    return _row_to_photo(row)


def require_photo(conn: duckdb.DuckDBPyConnection, photo_id: str) -> Photo:
    """Like get_photo, but raise PhotoNotFoundError for unknown ids."""
    photo = get_photo(conn, photo_id)
    if photo is None:
        raise PhotoNotFoundError(photo_id)
    return photo


def list_photos(
    conn: duckdb.DuckDBPyConnection,
    event_id: str,
    status: PhotoStatus | None = None,
) -> list[Photo]:
    """List an event's photos, oldest first, optionally filtered by status."""
    query = f"SELECT {PHOTO_COLUMNS} FROM photos WHERE event_id = ?"
    params: list = [event_id]
    if status is not None:
        query += " AND status = ?"
        params.append(str(status))
    query += " ORDER BY created_at, id"
    rows = conn.execute(query, params).fetchall()
    return [_row_to_photo(row) for row in rows]


def list_pending_photos(
    conn: duckdb.DuckDBPyConnection,
    event_id: str,
    limit: int,
    lease_timeout: float = LEASE_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> list[Photo]:
    """Return photos awaiting processing, oldest first.

    Includes ``processing`` photos whose lease has expired; photos leased
    within the last ``lease_timeout`` seconds are left to their owner.
    """
    cutoff = (now or utcnow()) - timedelta(seconds=lease_timeout)
    rows = conn.execute(
        f"""
        SELECT {PHOTO_COLUMNS}
        FROM photos
        WHERE event_id = ? AND {_CLAIMABLE_SQL}
        ORDER BY created_at, id
        LIMIT ?
        """,
        [event_id, cutoff, limit],
    ).fetchall()
    return [_row_to_photo(row) for row in rows]


def claim_photo(
    conn: duckdb.DuckDBPyConnection,
    photo_id: str,
    lease_timeout: float = LEASE_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> bool:
    """Atomically move a claimable photo to ``processing``.

    Returns False when the photo is terminal, leased by another run, or the
    update lost a write conflict against a concurrent claim.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=lease_timeout)
    try:
        rows = conn.execute(
            f"""
            UPDATE photos
            SET status = '{PhotoStatus.PROCESSING}', claimed_at = ?
            WHERE id = ? AND {_CLAIMABLE_SQL}
            RETURNING id
            """,
            [now, photo_id, cutoff],
        ).fetchall()
    except duckdb.TransactionException:
        return False
    return len(rows) == 1


def release_photo(conn: duckdb.DuckDBPyConnection, photo_id: str) -> bool:
    """Hand a claimed photo back to the queue without recording an outcome.

    Returns False when the photo is not ``processing``.
    """
    rows = conn.execute(
        f"""
        UPDATE photos
        SET status = '{PhotoStatus.PENDING}', claimed_at = NULL
        WHERE id = ? AND status = '{PhotoStatus.PROCESSING}'
        RETURNING id
        """,
        [photo_id],
    ).fetchall()
    return len(rows) == 1


def count_photos(conn: duckdb.DuckDBPyConnection, event_id: str) -> int:
    """Return the number of photos registered for an event."""
    row = conn.execute("SELECT COUNT(*) FROM photos WHERE event_id = ?", [event_id]).fetchone()
    return row[0] if row else 0


def _row_to_photo(row: tuple) -> Photo:
    """Convert a DB row tuple to Photo.

    Column order matches PHOTO_COLUMNS:
    0:id, 1:event_id, 2:storage_path, 3:thumbnail_path, 4:status,
    5:claimed_at, 6:processed_at, 7:faces_found, 8:error_message,
    9:created_at
    """
    return Photo(
        id=row[0],
        event_id=row[1],
        storage_path=row[2],
        thumbnail_path=row[3],
        status=PhotoStatus(row[4]),
        claimed_at=row[5],
        processed_at=row[6],
        faces_found=row[7],
        error_message=row[8],
        created_at=row[9],
    )
