"""
Authority Decisions - may this user perform this action on this resource?

Evaluation short-circuits in a fixed order:
1. super_admin access level, or a held role named like the policy's super
   admin role (case-insensitive)
2. a held role grants (resource, action), case-insensitively
3. an active, non-expired delegation grants the matching capability
4. otherwise no

Nothing is cached between calls: every decision re-reads the ledger against
the clock, so an expired delegation stops working the instant it lapses.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from org_authority.delegation.models import Delegation
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.models import AccessLevel, User
from org_authority.directory.projections import RoleRegistry
from org_authority.kernel.errors import Unauthorized
from org_authority.kernel.logging import get_logger
from org_authority.kernel.metrics import authorization_decisions_total
from org_authority.kernel.policy import AuthorityPolicy

logger = get_logger(__name__)


class DecisionPath(str, Enum):
    """Which rule decided"""

    SUPER_ADMIN = "super_admin"
    PERMISSION = "permission"
    DELEGATION = "delegation"
    NONE = "none"


class Decision(BaseModel):
    allowed: bool
    path: DecisionPath
    delegation_id: str | None = None

    model_config = {"frozen": True}


def is_super_admin(user: User, roles: RoleRegistry, policy: AuthorityPolicy) -> bool:
    if user.access_level == AccessLevel.SUPER_ADMIN:
        return True
    target = policy.super_admin_role_name.lower()
    return any(role.name.lower() == target for role in roles.roles_of(user))


def delegation_grants(
    delegation: Delegation, resource: str, action: str, policy: AuthorityPolicy
) -> bool:
    """True if any capability the delegation carries unlocks (resource, action)"""
    return any(
        policy.capability_grants(capability, resource, action)
        for capability in delegation.authority.capabilities()
    )


def decide(
    user: User,
    resource: str,
    action: str,
    roles: RoleRegistry,
    ledger: DelegationLedger,
    policy: AuthorityPolicy,
    now: datetime,
) -> Decision:
    """
    Evaluate a permission check and record which rule decided it

    Args:
        user: The acting user
        resource: Resource name, e.g. "User", "team" (case-insensitive)
        action: Action name, e.g. "create", "approve" (case-insensitive)
        roles: Role and permission catalogue
        ledger: Delegation ledger
        policy: Super admin role name and capability mapping
        now: Current time for delegation expiry

    Returns:
        Decision with the deciding path
    """
    if is_super_admin(user, roles, policy):
        decision = Decision(allowed=True, path=DecisionPath.SUPER_ADMIN)
    elif any(p.matches(resource, action) for p in roles.permissions_of(user)):
        decision = Decision(allowed=True, path=DecisionPath.PERMISSION)
    else:
        delegation = ledger.active_for(user.user_id, now)
        if delegation is not None and delegation_grants(delegation, resource, action, policy):
            decision = Decision(
                allowed=True,
                path=DecisionPath.DELEGATION,
                delegation_id=delegation.delegation_id,
            )
        else:
            decision = Decision(allowed=False, path=DecisionPath.NONE)

    authorization_decisions_total.labels(
        resource=resource.lower(),
        action=action.lower(),
        outcome="allow" if decision.allowed else "deny",
        path=decision.path.value,
    ).inc()
    logger.debug(
        "Authorization decided",
        user_id=user.user_id,
        resource=resource,
        action=action,
        allowed=decision.allowed,
        path=decision.path.value,
    )
    return decision


def can_perform(
    user: User,
    resource: str,
    action: str,
    roles: RoleRegistry,
    ledger: DelegationLedger,
    policy: AuthorityPolicy,
    now: datetime,
) -> bool:
    """Boolean form of decide()"""
    return decide(user, resource, action, roles, ledger, policy, now).allowed


def authorize(
    user: User,
    resource: str,
    action: str,
    roles: RoleRegistry,
    ledger: DelegationLedger,
    policy: AuthorityPolicy,
    now: datetime,
) -> Decision:
    """
    Raises:
        Unauthorized: If the user may not perform the action
    """
    decision = decide(user, resource, action, roles, ledger, policy, now)
    if not decision.allowed:
        raise Unauthorized(user.user_id, resource, action, "no role or delegation grants it")
    return decision
