"""
SQLite Event Store - Append-only log with optimistic locking

The event store is the source of truth for the whole engine. It provides:
- Append-only semantics (events never modified or deleted)
- Optimistic locking via UNIQUE(stream_id, version)
- Serializable writes: the version check and the insert run under one
  write lock (BEGIN IMMEDIATE), so check-then-insert is never racy
- Atomic multi-stream batches (a mutation and its audit record commit together)
- A global position for incremental catch-up of read models

Fun fact: SQLite's "BEGIN IMMEDIATE" grabs the reserved lock up front - it is
the cheapest way to get serializable isolation out of a single file.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from org_authority.kernel.errors import EventStoreError, StreamVersionConflict
from org_authority.kernel.events import Event
from org_authority.kernel.logging import get_logger
from org_authority.kernel.metrics import events_appended_total, stream_version_conflicts_total
from org_authority.kernel.retry import retry_on_sqlite_lock

logger = get_logger(__name__)

# (stream_id, expected_version, events)
StreamWrite = tuple[str, int, list[Event]]

_EVENT_COLUMNS = """
    position, event_id, stream_id, stream_type, version,
    command_id, event_type, occurred_at, actor_id, payload_json
"""


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    Schema:
    - events table: append-only event log, position is the global order
    - Unique constraints: (stream_id, version), event_id
    - Indices: stream_id, event_type, command_id
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize event store with SQLite database

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    position INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL UNIQUE,
                    stream_id TEXT NOT NULL,
                    stream_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    command_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    actor_id TEXT,
                    payload_json TEXT NOT NULL,

                    UNIQUE(stream_id, version)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_stream ON events(stream_id, version)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_command ON events(command_id)"
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Connections run in autocommit mode; writers open their own
        BEGIN IMMEDIATE transaction.
        """
        conn = sqlite3.connect(str(self.db_path), isolation_level=None, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def append(
        self,
        stream_id: str,
        expected_version: int,
        events: list[Event],
    ) -> list[Event]:
        """
        Append events to a single stream with optimistic locking

        Args:
            stream_id: Consistency boundary
            expected_version: Version the caller based its decision on
            events: Events to append (sequential versions after expected_version)

        Returns:
            The appended events, with their global positions

        Raises:
            StreamVersionConflict: If stream version doesn't match expected
            EventStoreError: On other database errors
        """
        return self.append_batch([(stream_id, expected_version, events)])

    def append_batch(self, writes: list[StreamWrite]) -> list[Event]:
        """
        Append to several streams in one serializable transaction

        Either every write lands or none does. Each stream's version is
        checked under the write lock before anything is inserted.

        Args:
            writes: (stream_id, expected_version, events) triples

        Returns:
            All appended events in insertion order, with positions

        Raises:
            StreamVersionConflict: If any stream moved since the caller read it
            EventStoreError: On other database errors
        """
        writes = [w for w in writes if w[2]]
        if not writes:
            return []

        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")

                for stream_id, expected_version, _ in writes:
                    current_version = self._get_stream_version(conn, stream_id)
                    if current_version != expected_version:
                        raise StreamVersionConflict(stream_id, expected_version, current_version)

                appended: list[Event] = []
                for _, _, events in writes:
                    for event in events:
                        cursor = conn.execute(
                            """
                            INSERT INTO events (
                                event_id, stream_id, stream_type, version,
                                command_id, event_type, occurred_at, actor_id, payload_json
                            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                            (
                                event.event_id,
                                event.stream_id,
                                event.stream_type,
                                event.version,
                                event.command_id,
                                event.event_type,
                                event.occurred_at.isoformat(),
                                event.actor_id,
                                json.dumps(event.payload),
                            ),
                        )
                        appended.append(event.model_copy(update={"position": cursor.lastrowid}))

                conn.execute("COMMIT")

            except StreamVersionConflict as e:
                conn.execute("ROLLBACK")
                stream_version_conflicts_total.labels(stream_type=e.stream_id.split(":")[0]).inc()
                logger.warning(
                    "Stream version conflict",
                    stream_id=e.stream_id,
                    expected_version=e.expected_version,
                    actual_version=e.actual_version,
                )
                raise

            except sqlite3.IntegrityError as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise EventStoreError(f"Failed to append events: {e}") from e

            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise EventStoreError(f"Unexpected error appending events: {e}") from e

        for event in appended:
            events_appended_total.labels(
                stream_type=event.stream_type, event_type=event.event_type
            ).inc()
        return appended

    @retry_on_sqlite_lock()
    def load_stream(self, stream_id: str) -> list[Event]:
        """
        Load all events for a stream in version order

        Args:
            stream_id: Consistency boundary

        Returns:
            List of events in version order (empty if stream doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE stream_id = ? ORDER BY version ASC",
                (stream_id,),
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    @retry_on_sqlite_lock()
    def load_all_events(
        self,
        after_position: int = 0,
        limit: int | None = None,
    ) -> list[Event]:
        """
        Load events in global order (for building read models)

        Args:
            after_position: Only events with a greater position (0 for all)
            limit: Maximum number of events to return, or None for all

        Returns:
            List of events in append order
        """
        query = f"SELECT {_EVENT_COLUMNS} FROM events WHERE position > ? ORDER BY position ASC"
        params: tuple = (after_position,)
        if limit:
            query += " LIMIT ?"
            params = (after_position, limit)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    @retry_on_sqlite_lock()
    def query_events(
        self,
        *,
        stream_type: str | None = None,
        event_type: str | None = None,
        command_id: str | None = None,
    ) -> list[Event]:
        """
        Query events by various criteria

        Args:
            stream_type: Filter by stream type (e.g., "delegation", "audit")
            event_type: Filter by event type (e.g., "AuthorityDelegated")
            command_id: Filter by the operation that produced the events

        Returns:
            List of matching events in append order
        """
        conditions = []
        params = []

        if stream_type:
            conditions.append("stream_type = ?")
            params.append(stream_type)

        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)

        if command_id:
            conditions.append("command_id = ?")
            params.append(command_id)

        where_clause = " AND ".join(conditions) if conditions else "1=1"

        with self._connect() as conn:
            cursor = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE {where_clause} ORDER BY position ASC",
                params,
            )
            return [self._row_to_event(row) for row in cursor.fetchall()]

    @retry_on_sqlite_lock()
    def get_stream_version(self, stream_id: str) -> int:
        """
        Get current version of a stream

        Returns:
            Current stream version (0 if stream doesn't exist)
        """
        with self._connect() as conn:
            return self._get_stream_version(conn, stream_id)

    def _get_stream_version(self, conn: sqlite3.Connection, stream_id: str) -> int:
        """Internal helper to get stream version within a connection"""
        cursor = conn.execute(
            "SELECT MAX(version) FROM events WHERE stream_id = ?",
            (stream_id,),
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        """Convert SQLite row to Event object"""
        return Event(
            event_id=row["event_id"],
            stream_id=row["stream_id"],
            stream_type=row["stream_type"],
            version=row["version"],
            command_id=row["command_id"],
            event_type=row["event_type"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            actor_id=row["actor_id"],
            payload=json.loads(row["payload_json"]),
            position=row["position"],
        )

    @retry_on_sqlite_lock()
    def count_events(self) -> int:
        """Get total number of events in store"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM events")
            return cursor.fetchone()[0]
