"""
Audit Domain Models - Tamper-evident records of every mutation

Each record keeps full before/after snapshots and is chained to the record
before it by a SHA-256 digest. Changed fields are never stored; they are
recomputed from the snapshots whenever a record is read.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

GENESIS_DIGEST = "0" * 64


class AuditRecord(BaseModel):
    """
    One immutable audit record

    Attributes:
        audit_id: Unique identifier
        sequence: Position in the audit chain (1-based)
        command_id: Operation that produced the audited change
        actor_user_id: Who acted (None = system)
        action: What happened ("create", "update", "delete", "delegate", ...)
        resource: Kind of thing changed ("Organization", "User", ...)
        resource_id: Which one, when known
        before: Snapshot before the change (None for creations)
        after: Snapshot after the change (None for deletions)
        timestamp: When it happened
        source_address: Caller address as reported upstream (personal data)
        previous_digest: Digest of the previous record (zeros for the first)
        digest: SHA-256 over this record's canonical form
    """

    audit_id: str
    sequence: int = Field(..., ge=1)
    command_id: str
    actor_user_id: str | None = None
    action: str
    resource: str
    resource_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    timestamp: datetime
    source_address: str | None = None
    previous_digest: str = GENESIS_DIGEST
    digest: str = ""

    model_config = {"frozen": True}


class FieldChange(BaseModel):
    """Before/after values of one top-level field"""

    field: str
    before: Any = None
    after: Any = None


class AuditView(BaseModel):
    """A rendered audit record: the record plus its per-field changes"""

    record: AuditRecord
    changed_fields: list[str] = Field(default_factory=list)
    changes: list[FieldChange] = Field(default_factory=list)
