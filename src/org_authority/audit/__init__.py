"""
Audit Module - hash-chained, field-level audit records
"""

from org_authority.audit.diff import changed_fields, render
from org_authority.audit.models import AuditRecord, AuditView, FieldChange

__all__ = [
    "AuditRecord",
    "AuditView",
    "FieldChange",
    "changed_fields",
    "render",
]
