"""Storage initialization, database path and connection helpers."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

_data_dir: Path | None = None

DB_FILENAME = "movie_games.sqlite"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    client_ip TEXT NOT NULL,
    route TEXT NOT NULL,
    status TEXT NOT NULL,
    request_payload TEXT,
    prompt TEXT,
    response TEXT,
    error_text TEXT,
    response_time_ms INTEGER,
    shared INTEGER NOT NULL DEFAULT 0,
    template TEXT,
    template_source TEXT
);
CREATE INDEX IF NOT EXISTS idx_requests_client_ip ON requests (client_ip);

CREATE TABLE IF NOT EXISTS shared_records (
    id TEXT PRIMARY KEY,
    request_id TEXT NOT NULL UNIQUE REFERENCES requests (id) ON DELETE CASCADE,
    shared_at TEXT NOT NULL,
    shared_ip TEXT NOT NULL,
    shared_user_agent TEXT
);

CREATE TABLE IF NOT EXISTS visits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id TEXT NOT NULL,
    visited_at TEXT NOT NULL,
    client_ip TEXT NOT NULL,
    user_agent TEXT
);
CREATE INDEX IF NOT EXISTS idx_visits_request ON visits (request_id);

CREATE TABLE IF NOT EXISTS quota_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    counter_key TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_quota_events_key ON quota_events (counter_key, created_at);
"""


def init_storage(data_dir: Path) -> None:
    global _data_dir

    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)
    with connect() as con:
        con.executescript(_SCHEMA)


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_storage() before using storage"
    return _data_dir


def db_path() -> Path:
    return data_dir() / DB_FILENAME


def open_connection() -> sqlite3.Connection:
    """Autocommit connection; callers open transactions explicitly."""
    con = sqlite3.connect(str(db_path()), timeout=30, isolation_level=None)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON")
    con.execute("PRAGMA busy_timeout = 30000")
    return con


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    con = open_connection()
    try:
        yield con
    finally:
        con.close()


@contextmanager
def transaction(immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Run a block in one transaction; IMMEDIATE takes the write lock up front."""
    with connect() as con:
        con.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield con
        except BaseException:
            con.execute("ROLLBACK")
            raise
        con.execute("COMMIT")
