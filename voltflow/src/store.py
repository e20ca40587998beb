"""
Session history store using async SQLite.

Keeps the closed-session history across restarts. Each session is stored
as one JSON row using the camelCase record format
(``startTime``, ``avgWattage``, ...). The history is always written and
read back as a whole: :meth:`SessionStore.save` replaces every row in one
transaction, :meth:`SessionStore.load` returns the full list.

Loading is fail-open: a missing, unreadable or corrupt store yields an
empty history (with a logged warning) instead of an error, and individual
corrupt rows are skipped.

Operations:
- save(sessions): replace the stored history (most recent first).
- load(): return the stored history, ``[]`` on any failure.
- clear(): delete the stored history.
- close(): close the underlying database connection.

Supports async context manager protocol for clean resource management.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path

import aiosqlite
from pydantic import ValidationError

from voltflow.src.models import Session

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS sessions (
    position INTEGER PRIMARY KEY,
    payload TEXT NOT NULL,
    saved_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_INSERT_SQL = """\
INSERT INTO sessions (position, payload) VALUES (?, ?);
"""

_SELECT_SQL = """\
SELECT payload
FROM sessions
ORDER BY position ASC;
"""

_DELETE_SQL = "DELETE FROM sessions;"


class SessionStore:
    """Durable store for the closed-session history backed by SQLite.

    Args:
        path: Filesystem path for the SQLite database file.
              Accepts ``str`` or ``pathlib.Path``.

    Usage::

        async with SessionStore(path="/data/sessions.db") as store:
            tracker.load_past_sessions(await store.load())
            ...
            await store.save(tracker.past_sessions)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema.

        Creates the parent directory if needed and uses WAL journal mode
        for crash durability. A file that is not a valid database is moved
        aside to ``<name>.corrupt`` and a fresh store is created.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._connect()
        except sqlite3.DatabaseError:
            logger.warning(
                "Session store %s is corrupt, starting empty", self._path, exc_info=True
            )
            await self.close()
            self._path.replace(self._path.with_name(self._path.name + ".corrupt"))
            await self._connect()

    async def _connect(self) -> None:
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SessionStore:
        """Enter async context manager: open the database."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the database."""
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, sessions: Iterable[Session]) -> None:
        """Replace the stored history with *sessions*.

        An empty iterable clears the store. The delete and the inserts are
        committed together so a crash never leaves a partial history.

        Args:
            sessions: Closed sessions, most recent first.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        rows = [
            (position, json.dumps(session.to_record()))
            for position, session in enumerate(sessions)
        ]
        await self._db.execute(_DELETE_SQL)
        await self._db.executemany(_INSERT_SQL, rows)
        await self._db.commit()
        logger.debug("Saved %d sessions to %s", len(rows), self._path)

    async def load(self) -> list[Session]:
        """Return the stored history, most recent first.

        Returns:
            List of sessions. Empty when the store is empty or unreadable.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        try:
            cursor = await self._db.execute(_SELECT_SQL)
            rows = await cursor.fetchall()
        except sqlite3.Error:
            logger.warning("Session history unreadable, starting empty", exc_info=True)
            return []

        sessions: list[Session] = []
        for (payload,) in rows:
            try:
                sessions.append(Session.model_validate(json.loads(payload)))
            except (json.JSONDecodeError, ValidationError):
                logger.warning("Skipping corrupt session record: %.80s", payload)
        return sessions

    async def clear(self) -> None:
        """Delete the stored history."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        await self._db.execute(_DELETE_SQL)
        await self._db.commit()
