"""
Scope Sets - the part of the tree a user administers

A scope starts from the entities named by the user's scope kind and is
expanded downwards: an organization covers its sectors, departments and
teams, a sector its departments and teams, a department its teams. Child
organizations are separate jurisdictions and are never covered by their
parent's scope.
"""

from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel

from org_authority.authority.access_levels import ScopeKind, user_scope_kind
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.models import AccessLevel, User
from org_authority.directory.projections import UserDirectory
from org_authority.structure.projections import StructureRegistry


class ScopeSet(BaseModel):
    """Expanded set of entity ids a user administers (is_global covers everything)"""

    is_global: bool = False
    organization_ids: frozenset[str] = frozenset()
    sector_ids: frozenset[str] = frozenset()
    department_ids: frozenset[str] = frozenset()
    team_ids: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    def union(self, other: "ScopeSet") -> "ScopeSet":
        return ScopeSet(
            is_global=self.is_global or other.is_global,
            organization_ids=self.organization_ids | other.organization_ids,
            sector_ids=self.sector_ids | other.sector_ids,
            department_ids=self.department_ids | other.department_ids,
            team_ids=self.team_ids | other.team_ids,
        )

    def is_empty(self) -> bool:
        return not (
            self.is_global
            or self.organization_ids
            or self.sector_ids
            or self.department_ids
            or self.team_ids
        )

    def covers(self, kind: str, entity_id: str) -> bool:
        """
        True if the entity lies inside the scope

        Args:
            kind: "organization", "sector", "department" or "team"
            entity_id: Entity identifier
        """
        if self.is_global:
            return True
        ids = {
            "organization": self.organization_ids,
            "sector": self.sector_ids,
            "department": self.department_ids,
            "team": self.team_ids,
        }[kind]
        return entity_id in ids

    def covers_placement(self, user: User) -> bool:
        """True if any of the user's placement fields falls in the scope"""
        if self.is_global:
            return True
        return (
            (user.team_id is not None and user.team_id in self.team_ids)
            or (user.department_id is not None and user.department_id in self.department_ids)
            or (user.sector_id is not None and user.sector_id in self.sector_ids)
            or (user.organization_id is not None and user.organization_id in self.organization_ids)
        )


GLOBAL_SCOPE = ScopeSet(is_global=True)


def expand(
    registry: StructureRegistry,
    organization_ids: Iterable[str] = (),
    sector_ids: Iterable[str] = (),
    department_ids: Iterable[str] = (),
    team_ids: Iterable[str] = (),
) -> ScopeSet:
    """Expand seed ids downwards; ids that no longer exist are dropped"""
    orgs = {o for o in organization_ids if registry.get_organization(o) is not None}
    sectors = {s for s in sector_ids if registry.get_sector(s) is not None}
    departments = {d for d in department_ids if registry.get_department(d) is not None}
    teams = {t for t in team_ids if registry.get_team(t) is not None}

    for organization_id in orgs:
        sectors.update(s.sector_id for s in registry.sectors_of(organization_id))
        departments.update(d.department_id for d in registry.departments_of_organization(organization_id))
    for sector_id in list(sectors):
        departments.update(d.department_id for d in registry.departments_of_sector(sector_id))
    for department_id in list(departments):
        teams.update(t.team_id for t in registry.teams_of_department(department_id))

    return ScopeSet(
        organization_ids=frozenset(orgs),
        sector_ids=frozenset(sectors),
        department_ids=frozenset(departments),
        team_ids=frozenset(teams),
    )


def own_scope(user: User, registry: StructureRegistry) -> ScopeSet:
    """
    Scope from the user's own access level and assignments

    - global: everything
    - organization: the user's organization
    - managed departments: explicit assignments; a directorate without any
      falls back to their own department
    - sector: the user's sector
    - managed teams: explicit assignments plus teams they lead, else their own team
    - self: nothing
    """
    kind = user_scope_kind(user)

    if kind == ScopeKind.GLOBAL:
        return GLOBAL_SCOPE

    if kind == ScopeKind.ORGANIZATION:
        seeds = {user.organization_id} if user.organization_id else set()
        return expand(registry, organization_ids=seeds)

    if kind == ScopeKind.MANAGED_DEPARTMENTS:
        seeds = set(user.managed_department_ids)
        if not seeds and user.access_level == AccessLevel.DIRECTORATE and user.department_id:
            seeds = {user.department_id}
        return expand(registry, department_ids=seeds)

    if kind == ScopeKind.SECTOR:
        seeds = {user.sector_id} if user.sector_id else set()
        return expand(registry, sector_ids=seeds)

    if kind == ScopeKind.MANAGED_TEAMS:
        seeds = set(user.managed_team_ids) | {t.team_id for t in registry.teams_led_by(user.user_id)}
        if not seeds:
            own = user.team_id
            if own is None:
                member_of = registry.team_of_member(user.user_id)
                own = member_of.team_id if member_of else None
            seeds = {own} if own else set()
        return expand(registry, team_ids=seeds)

    return ScopeSet()


def lender_scope(delegator: User, registry: StructureRegistry) -> ScopeSet:
    """The delegator's own scope as concrete ids (a global scope lists every organization)"""
    scope = own_scope(delegator, registry)
    if scope.is_global:
        return expand(registry, organization_ids=set(registry.organizations))
    return scope.union(
        expand(
            registry,
            department_ids=delegator.managed_department_ids,
            team_ids=delegator.managed_team_ids,
        )
    )


def delegated_scope(
    user: User,
    registry: StructureRegistry,
    users: UserDirectory,
    ledger: DelegationLedger,
    now: datetime,
) -> ScopeSet:
    """
    Scope borrowed through the user's active delegation

    can_manage_departments lends the delegator's departments together with
    the organizations and sectors that hold them, so new departments can be
    created there. can_manage_teams lends the delegator's teams together
    with their departments. can_approve_reports lends no part of the tree.
    """
    delegation = ledger.active_for(user.user_id, now)
    if delegation is None:
        return ScopeSet()
    delegator = users.get(delegation.delegator_id)
    if delegator is None:
        return ScopeSet()

    lender = lender_scope(delegator, registry)
    scope = ScopeSet()
    if delegation.authority.can_manage_departments:
        scope = scope.union(
            expand(
                registry,
                organization_ids=lender.organization_ids,
                sector_ids=lender.sector_ids,
                department_ids=lender.department_ids,
            )
        )
    if delegation.authority.can_manage_teams:
        scope = scope.union(
            ScopeSet(department_ids=lender.department_ids, team_ids=lender.team_ids)
        )
    return scope
