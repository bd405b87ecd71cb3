"""Shared DuckDB connection factory and transaction helper."""

from collections.abc import Iterator
from contextlib import contextmanager

import duckdb

from event_face_search.config import DB_PATH, FACE_EMBEDDING_DIM


def get_connection(
    db_path: str | None = None, embedding_dim: int = FACE_EMBEDDING_DIM
) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection. Defaults to the project-root DB file."""
    path = db_path or str(DB_PATH)
    conn = duckdb.connect(path)

    from event_face_search.manager.schema import ensure_schema

    ensure_schema(conn, embedding_dim=embedding_dim)
    return conn


@contextmanager
def transaction(conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """Run a block inside BEGIN/COMMIT, rolling back on any exception."""
    conn.begin()
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()
