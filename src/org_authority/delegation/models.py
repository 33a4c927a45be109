"""
Delegation Domain Models - Time-bounded grants of authority

A delegation lends part of a senior user's authority to someone else until
an end date, or until it is revoked. The ledger of delegations is the only
place delegated authority lives; nothing is copied onto the user.

Fun fact: expiry is computed, not stored. A delegation whose end date has
passed is expired the moment anyone looks at it, whether or not the sweep
has written that down yet.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from org_authority.kernel.time import ensure_utc


class DelegationStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class DelegatedAuthority(BaseModel):
    """The capabilities a delegation grants"""

    can_manage_teams: bool = False
    can_manage_departments: bool = False
    can_approve_reports: bool = False

    model_config = {"frozen": True}

    def capabilities(self) -> list[str]:
        """Names of the granted capability flags"""
        return [name for name, granted in self.model_dump().items() if granted]

    def is_empty(self) -> bool:
        return not self.capabilities()


class Delegation(BaseModel):
    """
    One delegation record (never deleted)

    Attributes:
        delegation_id: Unique identifier
        delegator_id: Who lends the authority
        delegatee_id: Who receives it
        authority: Granted capabilities
        reason: Free-text justification (treated as personal data in logs)
        start_date: When the grant began
        end_date: When it lapses (None = until revoked)
        status: Stored status; see effective_status for the read-time view
        revoked_at: When it was revoked
        revoked_by: Who revoked it (None = system)
        expired_at: When the sweep recorded the expiry
    """

    delegation_id: str
    delegator_id: str
    delegatee_id: str
    authority: DelegatedAuthority
    reason: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    status: DelegationStatus = DelegationStatus.ACTIVE
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    expired_at: datetime | None = None

    def has_lapsed(self, now: datetime) -> bool:
        """True once end_date is at or before now"""
        return self.end_date is not None and ensure_utc(self.end_date) <= ensure_utc(now)

    def is_active(self, now: datetime) -> bool:
        """Stored as active AND not lapsed - the only test authority decisions use"""
        return self.status == DelegationStatus.ACTIVE and not self.has_lapsed(now)

    def effective_status(self, now: datetime) -> DelegationStatus:
        """Status as seen at `now` (an active record past its end date reads as expired)"""
        if self.status == DelegationStatus.ACTIVE and self.has_lapsed(now):
            return DelegationStatus.EXPIRED
        return self.status


class DelegationView(BaseModel):
    """A delegation as returned to callers, with its read-time status"""

    delegation: Delegation
    effective_status: DelegationStatus


class DelegationHistory(BaseModel):
    """
    Both sides of a user's delegation history, newest first

    delegated_by holds the delegations the user granted; delegated_to the
    ones the user received.
    """

    delegated_by: list[DelegationView] = Field(default_factory=list)
    delegated_to: list[DelegationView] = Field(default_factory=list)
