"""
Audit Projections - The audit chain as a read model
"""

from org_authority.audit.diff import compute_digest
from org_authority.audit.models import GENESIS_DIGEST, AuditRecord
from org_authority.kernel.errors import AuditChainBroken, NotFound
from org_authority.kernel.events import Event
from org_authority.kernel.logging import get_logger

logger = get_logger(__name__)


class AuditTrail:
    """
    Projection: audit records in chain order

    Records are appended and never modified.
    """

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self._by_id: dict[str, AuditRecord] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        if event.event_type == "AuditRecorded":
            record = AuditRecord.model_validate(event.payload["record"])
            self.records.append(record)
            self._by_id[record.audit_id] = record

    @property
    def last_digest(self) -> str:
        return self.records[-1].digest if self.records else GENESIS_DIGEST

    def get(self, audit_id: str) -> AuditRecord:
        """Get record by ID or raise NotFound"""
        record = self._by_id.get(audit_id)
        if record is None:
            raise NotFound("AuditRecord", audit_id)
        return record

    def list_records(
        self,
        resource: str | None = None,
        actor_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditRecord]:
        """
        Records newest first, optionally filtered

        Args:
            resource: Only records for this resource kind (case-insensitive)
            actor_id: Only records by this actor
            limit: Maximum number of records
        """
        matching = [
            r
            for r in reversed(self.records)
            if (resource is None or r.resource.lower() == resource.lower())
            and (actor_id is None or r.actor_user_id == actor_id)
        ]
        return matching[:limit] if limit is not None else matching

    def for_command(self, command_id: str) -> list[AuditRecord]:
        return [r for r in self.records if r.command_id == command_id]

    def verify_chain(self) -> int:
        """
        Recompute every digest and check each link to its predecessor

        Returns:
            Number of records verified

        Raises:
            AuditChainBroken: At the first record that does not verify
        """
        previous = GENESIS_DIGEST
        for expected_sequence, record in enumerate(self.records, start=1):
            if (
                record.sequence != expected_sequence
                or record.previous_digest != previous
                or compute_digest(record) != record.digest
            ):
                logger.critical(
                    "Audit chain verification failed",
                    alert=True,
                    severity="high",
                    audit_id=record.audit_id,
                    sequence=record.sequence,
                )
                raise AuditChainBroken(record.audit_id, record.sequence)
            previous = record.digest
        return len(self.records)
