"""Ping storage: the LocationStore interface plus in-memory and SQLite backends."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterator, Protocol

from ride_stats.models import Ping, UserId

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the underlying storage fails to read or append."""


class LocationStore(Protocol):
    """Append-only ping storage consumed by the segmenter and aggregators."""

    def append_ping(self, ping: Ping) -> None: ...

    def append_if_last(self, expected_last: Ping | None, ping: Ping) -> bool:
        """Append ``ping`` only if the user's last ping is still ``expected_last``.

        The check and the append are one atomic step. Returns False, without
        appending, when another writer got in first.
        """
        ...

    def last_ping(self, user_id: UserId) -> Ping | None: ...

    def query_range(self, user_id: UserId, start_unix: int, end_unix: int) -> list[Ping]: ...

    def distinct_users_in_range(self, start_unix: int, end_unix: int) -> list[tuple[UserId, str]]: ...


def _session_order(p: Ping) -> tuple[int, int]:
    return (p.session_id, p.timestamp)


class InMemoryLocationStore:
    """Process-local store keeping each user's pings in append order."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._by_user: dict[UserId, list[Ping]] = {}
        self._last: dict[UserId, Ping] = {}
        # global append order, needed for "first-seen username" lookups
        self._all: list[Ping] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._all)

    def append_ping(self, ping: Ping) -> None:
        with self._lock:
            self._by_user.setdefault(ping.user_id, []).append(ping)
            self._all.append(ping)
            current = self._last.get(ping.user_id)
            # equal timestamps resolve to the latest append
            if current is None or ping.timestamp >= current.timestamp:
                self._last[ping.user_id] = ping

    def append_if_last(self, expected_last: Ping | None, ping: Ping) -> bool:
        with self._lock:
            if self._last.get(ping.user_id) != expected_last:
                return False
            self.append_ping(ping)
            return True

    def last_ping(self, user_id: UserId) -> Ping | None:
        with self._lock:
            return self._last.get(user_id)

    def query_range(self, user_id: UserId, start_unix: int, end_unix: int) -> list[Ping]:
        with self._lock:
            pings = [p for p in self._by_user.get(user_id, ()) if start_unix <= p.timestamp <= end_unix]
        pings.sort(key=_session_order)
        return pings

    def distinct_users_in_range(self, start_unix: int, end_unix: int) -> list[tuple[UserId, str]]:
        with self._lock:
            in_range = [p for p in self._all if start_unix <= p.timestamp <= end_unix]
        in_range.sort(key=lambda p: p.timestamp)
        seen: dict[UserId, str] = {}
        for p in in_range:
            seen.setdefault(p.user_id, p.username)
        return list(seen.items())


_SCHEMA = """
CREATE TABLE IF NOT EXISTS locations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    username TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    session_id INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_locations_user_ts ON locations(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_locations_ts ON locations(timestamp);
"""


def _row_to_ping(row: sqlite3.Row) -> Ping:
    return Ping(
        user_id=int(row["user_id"]),
        username=str(row["username"]),
        timestamp=int(row["timestamp"]),
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        session_id=int(row["session_id"]),
    )


def _insert(cur: sqlite3.Cursor, ping: Ping) -> None:
    cur.execute(
        """
        INSERT INTO locations (user_id, username, timestamp, latitude, longitude, session_id)
        VALUES (?, ?, ?, ?, ?, ?);
        """,
        (ping.user_id, ping.username, ping.timestamp, ping.latitude, ping.longitude, ping.session_id),
    )


def _last_ping(cur: sqlite3.Cursor, user_id: UserId) -> Ping | None:
    row = cur.execute(
        """
        SELECT * FROM locations
        WHERE user_id=?
        ORDER BY timestamp DESC, id DESC
        LIMIT 1;
        """,
        (user_id,),
    ).fetchone()
    return _row_to_ping(row) if row is not None else None


class SqliteLocationStore:
    """SQLite-backed store.

    A short-lived connection is opened per call, so one instance can be shared
    across threads. ``sqlite3.Error`` is surfaced as :class:`StoreError`.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        with self._cursor() as cur:
            cur.executescript(_SCHEMA)
        logger.debug("opened location store at %s", self.db_path)

    @contextlib.contextmanager
    def _cursor(self, immediate: bool = False) -> Iterator[sqlite3.Cursor]:
        """Connection scoped to one call.

        With ``immediate=True`` the body runs in a ``BEGIN IMMEDIATE``
        transaction, which takes the database write lock up front so a
        read-then-insert cannot interleave with another writer.
        """

        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open {self.db_path!r}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            cur = conn.cursor()
            if immediate:
                cur.execute("BEGIN IMMEDIATE;")
            yield cur
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"location store failure: {exc}") from exc
        finally:
            conn.close()

    def append_ping(self, ping: Ping) -> None:
        with self._cursor() as cur:
            _insert(cur, ping)

    def append_if_last(self, expected_last: Ping | None, ping: Ping) -> bool:
        with self._cursor(immediate=True) as cur:
            if _last_ping(cur, ping.user_id) != expected_last:
                return False
            _insert(cur, ping)
        return True

    def last_ping(self, user_id: UserId) -> Ping | None:
        with self._cursor() as cur:
            return _last_ping(cur, user_id)

    def query_range(self, user_id: UserId, start_unix: int, end_unix: int) -> list[Ping]:
        with self._cursor() as cur:
            rows = cur.execute(
                """
                SELECT * FROM locations
                WHERE user_id=? AND timestamp BETWEEN ? AND ?
                ORDER BY session_id ASC, timestamp ASC, id ASC;
                """,
                (user_id, start_unix, end_unix),
            ).fetchall()
        return [_row_to_ping(r) for r in rows]

    def distinct_users_in_range(self, start_unix: int, end_unix: int) -> list[tuple[UserId, str]]:
        with self._cursor() as cur:
            rows = cur.execute(
                """
                SELECT user_id, username FROM locations
                WHERE timestamp BETWEEN ? AND ?
                ORDER BY timestamp ASC, id ASC;
                """,
                (start_unix, end_unix),
            ).fetchall()
        seen: dict[UserId, str] = {}
        for r in rows:
            seen.setdefault(int(r["user_id"]), str(r["username"]))
        return list(seen.items())
