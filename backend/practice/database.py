from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from .errors import StoreUnavailableError

_UNDEFINED_TABLE_SQLSTATE = "42P01"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
      id TEXT PRIMARY KEY,
      email TEXT UNIQUE NOT NULL,
      password_hash TEXT NOT NULL,
      name TEXT,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS clients (
      id TEXT PRIMARY KEY,
      user_id TEXT NOT NULL REFERENCES users(id),
      name TEXT NOT NULL,
      avatar TEXT,
      status TEXT NOT NULL DEFAULT 'Active',
      diagnosis TEXT,
      next_appointment TEXT,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notes (
      id TEXT PRIMARY KEY,
      client_id TEXT NOT NULL REFERENCES clients(id),
      date TEXT NOT NULL,
      content TEXT NOT NULL,
      summary TEXT,
      sentiment TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
      id TEXT PRIMARY KEY,
      client_id TEXT NOT NULL REFERENCES clients(id),
      name TEXT NOT NULL,
      type TEXT,
      upload_date TEXT,
      content TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS appointments (
      id TEXT PRIMARY KEY,
      user_id TEXT NOT NULL REFERENCES users(id),
      client_id TEXT NOT NULL,
      date TEXT NOT NULL,
      duration_minutes INTEGER NOT NULL DEFAULT 50,
      type TEXT NOT NULL DEFAULT 'In-Person'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_clients_user ON clients(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_notes_client_date ON notes(client_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_appointments_user_date ON appointments(user_id, date)",
)


def is_missing_relation(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == _UNDEFINED_TABLE_SQLSTATE:
        return True
    message = str(orig or exc).lower()
    if "no such table" in message:
        return True
    return "relation" in message and "does not exist" in message


class RelationalDB:
    def __init__(self, database_url: str | None) -> None:
        self._url = (database_url or "").strip()
        self._engine: Engine | None = None
        self._lock = threading.Lock()
        self._schema_lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._url)

    def _require_engine(self) -> Engine:
        if not self._url:
            raise StoreUnavailableError("Database URL missing, running in local-only mode.")
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = create_engine(self._url, pool_pre_ping=True, future=True)
        return self._engine

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        engine = self._require_engine()
        try:
            conn = engine.connect()
        except OperationalError as exc:
            raise StoreUnavailableError(f"Database connection failed: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._schema_lock, self.connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(text(statement))

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
