"""
Directory Invariants - Placement, reporting lines and catalogue uniqueness

Pure functions. Placement validation reuses the field visibility table:
a field hidden for a user's access level must stay empty.
"""

from datetime import datetime

from pydantic import BaseModel

from org_authority.authority.access_levels import strictly_lower
from org_authority.authority.visibility import field_visibility
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.models import AccessLevel, User, UserOrganizationType
from org_authority.directory.projections import RoleRegistry, UserDirectory
from org_authority.kernel.errors import (
    DuplicatePermission,
    HasDependents,
    InsufficientRank,
    InvalidPlacement,
    OwnerMismatch,
    ReportingCycle,
)
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.structure.models import OrganizationType
from org_authority.structure.projections import StructureRegistry


class Placement(BaseModel):
    """A validated, consistent placement with every implied ancestor filled in"""

    organization_type: UserOrganizationType = UserOrganizationType.BRANCH
    organization_id: str | None = None
    sector_id: str | None = None
    department_id: str | None = None
    team_id: str | None = None


def _agree(implied: str | None, given: str | None) -> str | None:
    if given is not None and given != implied:
        raise OwnerMismatch("User placement", implied, given)
    return implied


def normalize_placement(
    registry: StructureRegistry,
    access_level: AccessLevel,
    organization_id: str | None = None,
    sector_id: str | None = None,
    department_id: str | None = None,
    team_id: str | None = None,
) -> Placement:
    """
    Validate a placement and fill in the ancestors it implies

    Args:
        registry: Current structure
        access_level: Level of the user being placed
        organization_id/sector_id/department_id/team_id: Requested placement

    Returns:
        Consistent placement (team -> department -> sector/organization)

    Raises:
        InvalidPlacement: A field hidden for the access level is filled in
        NotFound: A referenced entity does not exist
        OwnerMismatch: The given ids disagree with what the tree implies
    """
    visibility = field_visibility(access_level)
    requested = {
        "organization": organization_id,
        "sector": sector_id,
        "department": department_id,
        "team": team_id,
    }
    for field in visibility.hidden_fields():
        if requested[field] is not None:
            raise InvalidPlacement(access_level.value, field)

    if team_id is not None:
        team = registry.require_team(team_id)
        department_id = _agree(team.department_id, department_id)

    if department_id is not None:
        department = registry.require_department(department_id)
        sector_id = _agree(department.sector_id, sector_id)
        organization_id = _agree(department.organization_id, organization_id)
    elif sector_id is not None:
        sector = registry.require_sector(sector_id)
        organization_id = _agree(sector.organization_id, organization_id)

    organization_type = UserOrganizationType.BRANCH
    if organization_id is not None:
        organization = registry.require_organization(organization_id)
        if organization.organization_type == OrganizationType.HEAD_OFFICE:
            organization_type = UserOrganizationType.HEAD_OFFICE

    return Placement(
        organization_type=organization_type,
        organization_id=organization_id,
        sector_id=sector_id,
        department_id=department_id,
        team_id=team_id,
    )


def validate_reports_to(
    users: UserDirectory,
    user: User,
    manager: User,
    policy: AuthorityPolicy,
) -> None:
    """
    Check that user may report to manager

    Raises:
        ReportingCycle: If the manager is the user or already reports up to them
        InsufficientRank: If the manager does not rank strictly above the user (policy flag)
        CorruptHierarchy: If the manager's own chain is already broken
    """
    if manager.user_id == user.user_id:
        raise ReportingCycle(user.user_id, manager.user_id)
    if user.user_id in users.reporting_chain_ids(manager.user_id):
        raise ReportingCycle(user.user_id, manager.user_id)

    if policy.reports_to_requires_higher_rank and not strictly_lower(
        user.access_level, manager.access_level
    ):
        raise InsufficientRank(
            manager.user_id,
            manager.access_level.value,
            f"rank above {user.access_level.value}",
        )


def validate_managed_entities(
    registry: StructureRegistry, department_ids: list[str], team_ids: list[str]
) -> None:
    """Every explicitly managed department and team must exist (NotFound otherwise)"""
    for department_id in department_ids:
        registry.require_department(department_id)
    for team_id in team_ids:
        registry.require_team(team_id)


def validate_unique_permission(roles: RoleRegistry, resource: str, action: str) -> None:
    """
    Raises:
        DuplicatePermission: If (resource, action) already exists, case-insensitively
    """
    if roles.find_permission(resource, action) is not None:
        raise DuplicatePermission(resource, action)


def user_dependents(
    users: UserDirectory,
    registry: StructureRegistry,
    ledger: DelegationLedger,
    user_id: str,
    now: datetime,
) -> dict[str, list[str]]:
    """
    Records that still point at a user

    Direct reports, team memberships, and delegations in force that the
    user granted or received. Ended delegations stay in the history and
    do not block.
    """
    in_force = [*ledger.granted_by(user_id), *ledger.received_by(user_id)]
    dependents = {
        "reports": [u.user_id for u in users.direct_reports(user_id)],
        "teams": sorted(t.team_id for t in registry.teams.values() if user_id in t.members),
        "delegations": sorted(d.delegation_id for d in in_force if d.is_active(now)),
    }
    return {kind: ids for kind, ids in dependents.items() if ids}


def ensure_role_unused(users: UserDirectory, role_id: str) -> None:
    holders = [u.user_id for u in users.holders_of_role(role_id)]
    if holders:
        raise HasDependents("Role", role_id, {"users": holders})


def ensure_permission_unused(roles: RoleRegistry, permission_id: str) -> None:
    granting = [r.role_id for r in roles.roles_granting(permission_id)]
    if granting:
        raise HasDependents("Permission", permission_id, {"roles": granting})
