"""
Delegation Events - Facts about delegated authority

Every event for a delegatee lands on that delegatee's own stream, which is
what makes "one active delegation per delegatee" a storage guarantee.
"""

from datetime import datetime

from pydantic import BaseModel

from org_authority.delegation.models import Delegation


class AuthorityDelegated(BaseModel):
    """A delegation was granted"""

    delegation: Delegation


class DelegationRevoked(BaseModel):
    """
    A delegation was revoked before its end date

    revoked_by is None when the system revoked it.
    """

    delegation_id: str
    delegatee_id: str
    revoked_at: datetime
    revoked_by: str | None


class DelegationExpired(BaseModel):
    """The sweep recorded that a delegation's end date had passed"""

    delegation_id: str
    delegatee_id: str
    expired_at: datetime
