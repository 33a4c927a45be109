"""
Base Event model

Events are immutable facts about what changed: an organization was created,
a delegation was revoked, an audit record was written. The append-only log of
events is the source of truth; every read model is rebuilt from it.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from org_authority.kernel.ids import IdFactory

# Stream layout: one stream for the whole directory, one per delegatee, one audit chain
DIRECTORY_STREAM = "directory"
AUDIT_STREAM = "audit"


def delegation_stream(delegatee_id: str) -> str:
    return f"delegations:{delegatee_id}"


class Event(BaseModel):
    """
    Base event class - every stored fact is one of these

    Events are:
    - Immutable (never modified after creation)
    - Append-only (never deleted)
    - Versioned per stream (optimistic locking)
    - Globally ordered by their store position once persisted
    """

    event_id: str = Field(
        ...,
        description="Unique event identifier",
    )

    stream_id: str = Field(
        ...,
        description="Consistency boundary: 'directory', 'delegations:<user>', 'audit'",
    )

    stream_type: str = Field(
        ...,
        description="Kind of stream: 'directory', 'delegation', 'audit'",
    )

    event_type: str = Field(
        ...,
        description="Specific event type: 'OrganizationCreated', 'AuthorityDelegated', etc.",
    )

    occurred_at: datetime = Field(
        ...,
        description="UTC timestamp when event occurred",
    )

    actor_id: str | None = Field(
        default=None,
        description="ID of the acting user (None for system-initiated changes)",
    )

    command_id: str = Field(
        ...,
        description="ID of the operation that produced this event; shared with its audit record",
    )

    payload: dict = Field(
        default_factory=dict,
        description="Event-specific data (must be JSON-serializable)",
    )

    version: int = Field(
        ...,
        description="Stream version after this event (monotonically increasing)",
        ge=1,
    )

    position: int | None = Field(
        default=None,
        description="Global position in the store (assigned on append)",
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "evt-0192f3a1-3b87-7000-8000-123456789abc",
                    "stream_id": "directory",
                    "stream_type": "directory",
                    "event_type": "OrganizationCreated",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_id": "usr-admin",
                    "command_id": "cmd-123",
                    "payload": {"organization_id": "org-1", "name": "Head Office"},
                    "version": 1,
                }
            ]
        },
    }


def create_event(
    *,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    event_id: str,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """
    Factory function for creating events with all required fields

    Keeps handler code to named parameters only.
    """
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
    )


class StreamEvents:
    """
    Collects the events one command emits into one stream

    Versions continue from the stream version the handler decided on, so a
    concurrent writer that moved the stream in the meantime makes the whole
    batch fail with StreamVersionConflict.
    """

    def __init__(
        self,
        *,
        stream_id: str,
        stream_type: str,
        version: int,
        occurred_at: datetime,
        command_id: str,
        actor_id: str | None,
        id_factory: IdFactory,
    ) -> None:
        self.stream_id = stream_id
        self.stream_type = stream_type
        self.version = version
        self.occurred_at = occurred_at
        self.command_id = command_id
        self.actor_id = actor_id
        self.id_factory = id_factory
        self.events: list[Event] = []

    def emit(self, event_type: str, payload: BaseModel) -> Event:
        """Append an event whose payload is the JSON dump of a payload model"""
        event = create_event(
            event_id=self.id_factory.generate("evt"),
            stream_id=self.stream_id,
            stream_type=self.stream_type,
            event_type=event_type,
            occurred_at=self.occurred_at,
            command_id=self.command_id,
            actor_id=self.actor_id,
            payload=payload.model_dump(mode="json"),
            version=self.version + len(self.events) + 1,
        )
        self.events.append(event)
        return event
