"""
Kernel - Core event sourcing infrastructure

The kernel provides the machinery every domain module builds on: the
append-only event store, ids, clocks, the error hierarchy, policy, logging
and metrics.

Fun fact: Event sourcing was inspired by accountants - they never erase ledger
entries, they add correcting entries. An audit trail is the same idea turned
on the engine's own history.
"""

from org_authority.kernel.errors import (
    EventStoreError,
    InvariantViolation,
    NotFound,
    OrgAuthorityError,
    StreamVersionConflict,
    Unauthorized,
)
from org_authority.kernel.events import Event, create_event
from org_authority.kernel.ids import IdFactory, generate_id
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import Clock, FrozenClock, SystemClock

__all__ = [
    # IDs
    "IdFactory",
    "generate_id",
    # Time
    "Clock",
    "SystemClock",
    "FrozenClock",
    # Events & policy
    "Event",
    "create_event",
    "AuthorityPolicy",
    # Errors
    "OrgAuthorityError",
    "EventStoreError",
    "StreamVersionConflict",
    "InvariantViolation",
    "NotFound",
    "Unauthorized",
]
