"""
Audit Diff - changed fields, canonical form and rendering

All functions here are pure. Values are compared by their canonical JSON
serialization, so nested lists and dicts compare by content and key order
never matters.

Fun fact: deep comparison by serialization is what makes
{"tags": ["a", "b"]} and a freshly loaded copy of it compare equal, while
{"tags": ["b", "a"]} does not - order inside lists is data.
"""

import copy
import hashlib
import json
from typing import Any

from org_authority.audit.models import AuditRecord, AuditView, FieldChange


def canonical_json(value: Any) -> str:
    """Stable serialization: sorted keys, no whitespace, non-JSON types as str"""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def normalize_snapshot(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    """JSON-safe deep copy of a snapshot (datetimes and enums become strings)"""
    if snapshot is None:
        return None
    return json.loads(canonical_json(snapshot))


def changed_fields(
    before: dict[str, Any] | None, after: dict[str, Any] | None
) -> set[str]:
    """
    Top-level keys whose values differ between before and after

    Keys present on only one side count as changed. When either snapshot is
    None (a creation or a deletion) there is nothing to compare and the
    result is empty.

    Example:
        >>> changed_fields({"status": "pending"}, {"status": "active", "access_level": "expert"})
        {"status", "access_level"}
    """
    if before is None or after is None:
        return set()

    missing = object()
    changed = set()
    for key in set(before) | set(after):
        old = before.get(key, missing)
        new = after.get(key, missing)
        if old is missing or new is missing:
            changed.add(key)
        elif canonical_json(old) != canonical_json(new):
            changed.add(key)
    return changed


def compute_digest(record: AuditRecord) -> str:
    """SHA-256 over the canonical form of every field except the digest itself"""
    body = record.model_dump(mode="json", exclude={"digest"})
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()


def render(record: AuditRecord) -> AuditView:
    """
    Per-field before/after pairs for display

    Works on deep copies, so callers may mutate the view freely without
    touching the stored snapshots.
    """
    fields = sorted(changed_fields(record.before, record.after))
    before = copy.deepcopy(record.before) or {}
    after = copy.deepcopy(record.after) or {}
    return AuditView(
        record=record.model_copy(deep=True),
        changed_fields=fields,
        changes=[FieldChange(field=f, before=before.get(f), after=after.get(f)) for f in fields],
    )
