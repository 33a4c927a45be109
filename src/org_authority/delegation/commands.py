"""
Delegation Commands - Intentions to grant or withdraw delegated authority
"""

from datetime import datetime

from pydantic import BaseModel, Field

from org_authority.delegation.models import DelegatedAuthority


class DelegateAuthority(BaseModel):
    """
    Lend authority from delegator to delegatee

    Subject to:
    - Delegator ranks at least the policy's minimum delegator level
    - Delegatee ranks strictly below the delegator (policy flag)
    - At least one capability granted
    - end_date, if given, lies in the future
    - The delegatee holds no other active delegation
    """

    delegator_id: str = Field(..., min_length=1)
    delegatee_id: str = Field(..., min_length=1)
    authority: DelegatedAuthority
    reason: str | None = Field(default=None, max_length=1000)
    end_date: datetime | None = None


class RevokeDelegation(BaseModel):
    """Revoke whatever active delegation the delegatee holds (no-op if none)"""

    delegatee_id: str = Field(..., min_length=1)
