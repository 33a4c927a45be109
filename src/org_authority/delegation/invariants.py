"""
Delegation Invariants - Who may lend what to whom, and for how long

Pure functions. The "one active delegation per delegatee" rule is checked
here for a clear error and enforced again by the delegatee's stream version
at append time.
"""

from datetime import datetime

from org_authority.authority.access_levels import at_least, strictly_lower
from org_authority.delegation.models import DelegatedAuthority
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.models import User
from org_authority.kernel.errors import (
    ActiveDelegationExists,
    EmptyDelegatedAuthority,
    InsufficientRank,
    InvalidDelegationWindow,
    SelfDelegation,
)
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import ensure_utc


def validate_not_self(delegator_id: str, delegatee_id: str) -> None:
    if delegator_id == delegatee_id:
        raise SelfDelegation(delegator_id)


def validate_delegator_rank(delegator: User, policy: AuthorityPolicy) -> None:
    """
    The delegator must rank at least the policy's minimum delegator level

    Rank only: a branch admin ties a directorate at 70 and qualifies.

    Raises:
        InsufficientRank: If the delegator ranks too low
    """
    if not at_least(delegator.access_level, policy.min_delegator_level):
        raise InsufficientRank(
            delegator.user_id,
            delegator.access_level.value,
            f"{policy.min_delegator_level} or higher",
        )


def validate_delegatee_rank(delegator: User, delegatee: User, policy: AuthorityPolicy) -> None:
    """
    The delegatee must rank strictly below the delegator (policy flag)

    Incomparable pairs (equal rank, different scope kind) are not lower.

    Raises:
        InsufficientRank: If the delegatee is not strictly lower
    """
    if policy.delegation_requires_lower_rank and not strictly_lower(
        delegatee.access_level, delegator.access_level
    ):
        raise InsufficientRank(
            delegatee.user_id,
            delegatee.access_level.value,
            f"rank below {delegator.access_level.value}",
        )


def validate_authority(authority: DelegatedAuthority) -> None:
    if authority.is_empty():
        raise EmptyDelegatedAuthority()


def validate_window(end_date: datetime | None, now: datetime) -> None:
    """
    Raises:
        InvalidDelegationWindow: If end_date is not strictly after now
    """
    if end_date is not None and ensure_utc(end_date) <= ensure_utc(now):
        raise InvalidDelegationWindow(ensure_utc(end_date).isoformat(), ensure_utc(now).isoformat())


def validate_no_active_delegation(
    ledger: DelegationLedger, delegatee_id: str, now: datetime
) -> None:
    """
    Raises:
        ActiveDelegationExists: If the delegatee holds a non-expired active delegation
    """
    active = ledger.active_for(delegatee_id, now)
    if active is not None:
        raise ActiveDelegationExists(delegatee_id, active.delegation_id)
