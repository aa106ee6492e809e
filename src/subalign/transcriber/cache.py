"""Persistent transcription cache.

SQLite store keyed by (content_hash, engine_version). A new engine version
simply misses, so stale transcripts never need an eviction pass. Every
write is a single transaction behind a per-key lock: concurrent writers of
one key serialize, and readers see either the previous row or the
committed one.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from subalign.core.errors import CacheIOError
from subalign.core.models import CacheEntry, TranscriptSegment

_SCHEMA = """
CREATE TABLE IF NOT EXISTS transcripts (
    content_hash   TEXT    NOT NULL,
    engine_version TEXT    NOT NULL,
    start_ms       INTEGER NOT NULL,
    end_ms         INTEGER NOT NULL,
    text           TEXT    NOT NULL,
    created_at     TEXT    NOT NULL,
    PRIMARY KEY (content_hash, engine_version)
)
"""


class TranscriptionCache:
    """Durable transcript store shared by the workers of a run.

    Args:
        path: SQLite database file; parent directories are created.
        timeout: Seconds to wait on a locked database before failing.

    Raises:
        CacheIOError: If the database cannot be opened or is corrupt.
    """

    def __init__(self, path: Path, timeout: float = 30.0) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.hits = 0
        self.misses = 0
        self.writes = 0
        self._closed = False
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(str(e), str(self.path)) from e

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_SCHEMA)

    def __enter__(self) -> TranscriptionCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._closed = True

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise CacheIOError("cache is closed", str(self.path))
        try:
            conn = sqlite3.connect(str(self.path), timeout=self.timeout)
        except sqlite3.Error as e:
            raise CacheIOError(str(e), str(self.path)) from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise CacheIOError(str(e), str(self.path)) from e
        finally:
            conn.close()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get_entry(self, content_hash: str, engine_version: str) -> CacheEntry | None:
        """Return the full cache record, or None on a miss."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT start_ms, end_ms, text, created_at FROM transcripts "
                "WHERE content_hash = ? AND engine_version = ?",
                (content_hash, engine_version),
            ).fetchone()

        with self._guard:
            if row is None:
                self.misses += 1
            else:
                self.hits += 1
        if row is None:
            return None

        start_ms, end_ms, text, created_at = row
        return CacheEntry(
            hash=content_hash,
            engine_version=engine_version,
            start=start_ms / 1000.0,
            end=end_ms / 1000.0,
            text=text,
            created_at=datetime.fromisoformat(created_at),
        )

    def get(self, content_hash: str, engine_version: str) -> TranscriptSegment | None:
        """Return the cached segment for this audio and engine, or None."""
        entry = self.get_entry(content_hash, engine_version)
        if entry is None:
            return None
        return TranscriptSegment(
            start=entry.start,
            end=entry.end,
            text=entry.text,
            source_hash=entry.hash,
        )

    def put(self, content_hash: str, engine_version: str, segment: TranscriptSegment) -> None:
        """Store a segment; the row is written atomically."""
        key = (content_hash, engine_version)
        with self._lock_for(key), self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO transcripts "
                "(content_hash, engine_version, start_ms, end_ms, text, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    content_hash,
                    engine_version,
                    int(round(segment.start * 1000)),
                    int(round(segment.end * 1000)),
                    segment.text,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
        with self._guard:
            self.writes += 1

    def __len__(self) -> int:
        with self._connect() as conn:
            (count,) = conn.execute("SELECT COUNT(*) FROM transcripts").fetchone()
        return count
