"""
Audit Events - The audit chain itself

The audit stream holds exactly one event type. The stream version doubles
as the record's sequence number.
"""

from pydantic import BaseModel

from org_authority.audit.models import AuditRecord


class AuditRecorded(BaseModel):
    """An audit record was appended to the chain"""

    record: AuditRecord
