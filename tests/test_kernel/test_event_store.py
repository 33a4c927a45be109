"""
Tests for SQLite Event Store

Verifies core event sourcing properties:
- Append-only semantics
- Optimistic locking via stream versioning
- Atomic multi-stream batches
- Incremental catch-up by global position

Fun fact: Event sourcing tests are like archaeology - we're verifying
that the historical record is complete, immutable, and replayable!
"""

from datetime import datetime, timezone

import pytest
from pydantic import BaseModel

from org_authority.kernel.errors import EventStoreError, StreamVersionConflict
from org_authority.kernel.event_store import SQLiteEventStore
from org_authority.kernel.events import Event, StreamEvents
from org_authority.kernel.ids import SequentialIdFactory, generate_id
from org_authority.kernel.metrics import events_appended_total, stream_version_conflicts_total


def make_event(stream_id: str, version: int, event_type: str = "TestEvent", **payload) -> Event:
    return Event(
        event_id=generate_id("evt"),
        stream_id=stream_id,
        stream_type=stream_id.split(":")[0],
        event_type=event_type,
        occurred_at=datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
        actor_id="usr-1",
        command_id=generate_id("cmd"),
        payload=payload,
        version=version,
    )


def test_append_and_load_single_event(event_store: SQLiteEventStore) -> None:
    """Test appending and loading a single event"""
    event = make_event("directory", 1, message="Hello, World!")

    appended = event_store.append("directory", 0, [event])
    assert len(appended) == 1
    assert appended[0].event_id == event.event_id
    assert appended[0].position is not None

    loaded = event_store.load_stream("directory")
    assert len(loaded) == 1
    assert loaded[0].event_id == event.event_id
    assert loaded[0].payload == {"message": "Hello, World!"}
    assert loaded[0].occurred_at == event.occurred_at


def test_stream_versioning(event_store: SQLiteEventStore) -> None:
    """Test that stream versions continue from the expected version"""
    event_store.append("directory", 0, [make_event("directory", 1)])
    event_store.append("directory", 1, [make_event("directory", 2), make_event("directory", 3)])

    assert event_store.get_stream_version("directory") == 3
    assert [e.version for e in event_store.load_stream("directory")] == [1, 2, 3]


def test_version_conflict_on_stale_expected_version(event_store: SQLiteEventStore) -> None:
    """Two writers deciding on the same version: only the first wins"""
    event_store.append("delegations:usr-2", 0, [make_event("delegations:usr-2", 1)])

    before = stream_version_conflicts_total.labels(stream_type="delegations")._value.get()
    with pytest.raises(StreamVersionConflict) as exc_info:
        event_store.append("delegations:usr-2", 0, [make_event("delegations:usr-2", 1)])

    assert exc_info.value.expected_version == 0
    assert exc_info.value.actual_version == 1
    assert event_store.get_stream_version("delegations:usr-2") == 1
    after = stream_version_conflicts_total.labels(stream_type="delegations")._value.get()
    assert after == before + 1


def test_stream_version_of_missing_stream_is_zero(event_store: SQLiteEventStore) -> None:
    assert event_store.get_stream_version("nowhere") == 0
    assert event_store.load_stream("nowhere") == []


def test_append_batch_is_atomic(event_store: SQLiteEventStore) -> None:
    """A conflict on one stream rolls back the writes to every stream"""
    event_store.append("audit", 0, [make_event("audit", 1)])

    with pytest.raises(StreamVersionConflict):
        event_store.append_batch(
            [
                ("directory", 0, [make_event("directory", 1)]),
                ("audit", 0, [make_event("audit", 1)]),
            ]
        )

    assert event_store.get_stream_version("directory") == 0
    assert event_store.count_events() == 1


def test_append_batch_writes_every_stream(event_store: SQLiteEventStore) -> None:
    appended = event_store.append_batch(
        [
            ("directory", 0, [make_event("directory", 1)]),
            ("audit", 0, [make_event("audit", 1)]),
            ("delegations:usr-3", 0, []),
        ]
    )

    assert [e.stream_id for e in appended] == ["directory", "audit"]
    assert appended[0].position < appended[1].position
    assert event_store.count_events() == 2


def test_duplicate_event_id_is_rejected(event_store: SQLiteEventStore) -> None:
    event = make_event("directory", 1)
    event_store.append("directory", 0, [event])

    with pytest.raises(EventStoreError):
        event_store.append("directory", 1, [event.model_copy(update={"version": 2})])


def test_load_all_events_after_position(event_store: SQLiteEventStore) -> None:
    """Read models catch up incrementally from their last seen position"""
    first = event_store.append("directory", 0, [make_event("directory", 1)])
    event_store.append("audit", 0, [make_event("audit", 1)])
    event_store.append("directory", 1, [make_event("directory", 2)])

    everything = event_store.load_all_events()
    assert len(everything) == 3

    newer = event_store.load_all_events(after_position=first[0].position)
    assert [(e.stream_id, e.version) for e in newer] == [("audit", 1), ("directory", 2)]

    limited = event_store.load_all_events(limit=1)
    assert len(limited) == 1


def test_query_events(event_store: SQLiteEventStore) -> None:
    event_store.append(
        "directory",
        0,
        [make_event("directory", 1, "UserRegistered"), make_event("directory", 2, "UserUpdated")],
    )
    event_store.append("audit", 0, [make_event("audit", 1, "AuditRecorded")])

    assert len(event_store.query_events(stream_type="directory")) == 2
    assert len(event_store.query_events(event_type="AuditRecorded")) == 1
    assert event_store.query_events(event_type="Missing") == []


def test_events_appended_metric(event_store: SQLiteEventStore) -> None:
    before = events_appended_total.labels(stream_type="directory", event_type="Counted")._value.get()

    event_store.append("directory", 0, [make_event("directory", 1, "Counted")])

    after = events_appended_total.labels(stream_type="directory", event_type="Counted")._value.get()
    assert after == before + 1


class _Note(BaseModel):
    text: str


def test_stream_events_numbers_versions_from_the_base() -> None:
    """StreamEvents continues from the version the handler decided on"""
    stream = StreamEvents(
        stream_id="directory",
        stream_type="directory",
        version=7,
        occurred_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        command_id="cmd-1",
        actor_id=None,
        id_factory=SequentialIdFactory(),
    )

    stream.emit("Noted", _Note(text="a"))
    stream.emit("Noted", _Note(text="b"))

    assert [e.version for e in stream.events] == [8, 9]
    assert [e.event_id for e in stream.events] == ["evt-1", "evt-2"]
    assert stream.events[1].payload == {"text": "b"}
    assert all(e.command_id == "cmd-1" for e in stream.events)
