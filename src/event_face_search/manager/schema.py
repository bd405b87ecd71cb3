"""DuckDB schema definition and migration."""

import duckdb

from event_face_search.errors import EmbeddingIntegrityError


def ensure_schema(conn: duckdb.DuckDBPyConnection, embedding_dim: int = 512) -> None:
    """Create tables and indexes if they do not exist.

    The embedding dimension is recorded on first use; opening the same
    database with a different dimension raises ``EmbeddingIntegrityError``.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS store_settings (
            key   VARCHAR PRIMARY KEY,
            value VARCHAR NOT NULL
        )
    """)
    _check_embedding_dim(conn, embedding_dim)

    # photos: no index on status, DuckDB rewrites updates of indexed columns
    # as delete+insert
    conn.execute("""
        CREATE TABLE IF NOT EXISTS photos (
            id             VARCHAR PRIMARY KEY,
            event_id       VARCHAR NOT NULL,
            storage_path   VARCHAR NOT NULL,
            thumbnail_path VARCHAR,
            status         VARCHAR NOT NULL DEFAULT 'pending',
            claimed_at     TIMESTAMP,
            processed_at   TIMESTAMP,
            faces_found    INTEGER NOT NULL DEFAULT 0,
            error_message  VARCHAR,
            created_at     TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_event ON photos(event_id)")

    # face_embeddings table (1:N relationship with photos). Cascade on photo
    # deletion is done in delete_photo.
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS face_embeddings (
            id          VARCHAR PRIMARY KEY,
            photo_id    VARCHAR NOT NULL,
            event_id    VARCHAR NOT NULL,
            bbox_x      FLOAT NOT NULL,
            bbox_y      FLOAT NOT NULL,
            bbox_width  FLOAT NOT NULL,
            bbox_height FLOAT NOT NULL,
            confidence  FLOAT,
            embedding   FLOAT[{embedding_dim}] NOT NULL,
            created_at  TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_face_photo_id ON face_embeddings(photo_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_face_event_id ON face_embeddings(event_id)")

    # event_generations: bumped whenever an event's embeddings change
    conn.execute("""
        CREATE TABLE IF NOT EXISTS event_generations (
            event_id   VARCHAR PRIMARY KEY,
            generation BIGINT NOT NULL DEFAULT 0
        )
    """)


def get_embedding_dim(conn: duckdb.DuckDBPyConnection) -> int:
    """Return the embedding dimension the database was created with."""
    row = conn.execute(
        "SELECT value FROM store_settings WHERE key = 'embedding_dim'"
    ).fetchone()
    if row is None:
        raise EmbeddingIntegrityError("Database has no embedding dimension; run ensure_schema")
    return int(row[0])


def _check_embedding_dim(conn: duckdb.DuckDBPyConnection, embedding_dim: int) -> None:
    row = conn.execute(
        "SELECT value FROM store_settings WHERE key = 'embedding_dim'"
    ).fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO store_settings (key, value) VALUES ('embedding_dim', ?)",
            [str(embedding_dim)],
        )
    elif int(row[0]) != embedding_dim:
        raise EmbeddingIntegrityError(
            f"Database was created for {row[0]}-d embeddings, got {embedding_dim}"
        )
