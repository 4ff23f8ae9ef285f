"""Persisted client identity.

The session remembers the last identity it connected with so a later run can
resume without asking again. Storage is injected through `IdentityStore`.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

IDENTITY_KEY = "client_identity"


class IdentityStore(Protocol):
    def get(self) -> str | None: ...

    def set(self, identity: str) -> None: ...

    def clear(self) -> None: ...


class MemoryIdentityStore:
    def __init__(self, identity: str | None = None):
        self._identity = identity

    def get(self) -> str | None:
        return self._identity

    def set(self, identity: str) -> None:
        self._identity = identity

    def clear(self) -> None:
        self._identity = None


def init_state_db(path: Path | str) -> sqlite3.Connection:
    """Open (and create) the client state database."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
    except sqlite3.OperationalError:
        # Best-effort; some environments may reject specific pragmas.
        pass

    conn.execute("""
        CREATE TABLE IF NOT EXISTS client_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.commit()
    return conn


class SqliteIdentityStore:
    """Identity kept in a small key/value table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @classmethod
    def open(cls, path: Path | str) -> SqliteIdentityStore:
        return cls(init_state_db(path))

    def get(self) -> str | None:
        row = self.conn.execute(
            "SELECT value FROM client_state WHERE key = ?", (IDENTITY_KEY,)
        ).fetchone()
        return row["value"] if row else None

    def set(self, identity: str) -> None:
        self.conn.execute(
            """INSERT INTO client_state (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                              updated_at = excluded.updated_at""",
            (IDENTITY_KEY, identity, datetime.now().isoformat()),
        )
        self.conn.commit()

    def clear(self) -> None:
        self.conn.execute("DELETE FROM client_state WHERE key = ?", (IDENTITY_KEY,))
        self.conn.commit()
