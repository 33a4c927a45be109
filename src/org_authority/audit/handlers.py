"""
Audit Handlers - Turn a change description into the next link of the chain

The handler only builds the event. The façade appends it in the same
transaction as the mutation it describes, so a change and its audit record
exist together or not at all.
"""

from org_authority.audit.commands import RecordChange
from org_authority.audit.diff import changed_fields, compute_digest, normalize_snapshot
from org_authority.audit.events import AuditRecorded
from org_authority.audit.models import AuditRecord
from org_authority.kernel.events import AUDIT_STREAM, Event, StreamEvents
from org_authority.kernel.ids import IdFactory
from org_authority.kernel.logging import get_logger
from org_authority.kernel.time import Clock

logger = get_logger(__name__)


class AuditCommandHandlers:
    """Builds AuditRecorded events for the audit stream"""

    def __init__(self, clock: Clock, id_factory: IdFactory) -> None:
        self.clock = clock
        self.id_factory = id_factory

    def handle_record_change(
        self,
        command: RecordChange,
        command_id: str,
        previous_digest: str,
        version: int,
    ) -> list[Event]:
        """
        Handle RecordChange command

        Several records in one transaction chain onto each other: pass the
        digest of the record built just before, and its version.

        Args:
            command: What changed, with snapshots
            command_id: Shared with the audited mutation's events
            previous_digest: Digest of the record this one chains onto
            version: Audit stream version; the new record's sequence is version + 1

        Returns:
            A single AuditRecorded event
        """
        stream = StreamEvents(
            stream_id=AUDIT_STREAM,
            stream_type="audit",
            version=version,
            occurred_at=self.clock.now(),
            command_id=command_id,
            actor_id=command.actor_user_id,
            id_factory=self.id_factory,
        )

        record = AuditRecord(
            audit_id=self.id_factory.generate("aud"),
            sequence=version + 1,
            command_id=command_id,
            actor_user_id=command.actor_user_id,
            action=command.action,
            resource=command.resource,
            resource_id=command.resource_id,
            before=normalize_snapshot(command.before),
            after=normalize_snapshot(command.after),
            timestamp=stream.occurred_at,
            source_address=command.source_address,
            previous_digest=previous_digest,
        )
        record = record.model_copy(update={"digest": compute_digest(record)})

        logger.debug(
            "Audit record built",
            audit_id=record.audit_id,
            resource=record.resource,
            action=record.action,
            changed_fields=sorted(changed_fields(record.before, record.after)),
        )
        stream.emit("AuditRecorded", AuditRecorded(record=record))
        return stream.events
