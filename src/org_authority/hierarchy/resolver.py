"""
Hierarchy Resolver - who reports to whom, and who may act for whom

Read-only queries over the structure, the user directory and the delegation
ledger. Results are returned sorted by id so callers get stable output;
set semantics is the contract.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.models import User
from org_authority.directory.projections import UserDirectory
from org_authority.hierarchy.scope import ScopeSet, delegated_scope, lender_scope, own_scope
from org_authority.kernel.errors import CorruptHierarchy
from org_authority.kernel.logging import alert_corrupt_hierarchy, get_logger
from org_authority.kernel.metrics import corrupt_hierarchy_total
from org_authority.structure.models import Department, Team
from org_authority.structure.projections import StructureRegistry

logger = get_logger(__name__)


class ManagedEntities(BaseModel):
    """
    Departments and teams a user manages

    The direct lists come from explicit assignments, led teams and scope;
    the delegated lists from the user's active delegation (if any).
    """

    departments: list[Department] = Field(default_factory=list)
    teams: list[Team] = Field(default_factory=list)
    delegated_departments: list[Department] = Field(default_factory=list)
    delegated_teams: list[Team] = Field(default_factory=list)
    delegation_id: str | None = None


class ReportingLine(BaseModel):
    """A user with their manager, peers (same manager) and subordinates"""

    user: User
    manager: User | None = None
    peers: list[User] = Field(default_factory=list)
    subordinates: list[User] = Field(default_factory=list)


class HierarchyResolver:
    """
    Hierarchy queries over the current projections

    The resolver holds references to live projections, so it always sees
    the state the façade last caught up to.
    """

    def __init__(
        self,
        registry: StructureRegistry,
        users: UserDirectory,
        ledger: DelegationLedger,
    ) -> None:
        self.registry = registry
        self.users = users
        self.ledger = ledger

    def scope_set(self, user_id: str) -> ScopeSet:
        """The user's own expanded scope (NotFound for unknown users)"""
        return own_scope(self.users.require(user_id), self.registry)

    def effective_scope(self, user_id: str, now: datetime) -> ScopeSet:
        """Own scope plus anything borrowed through an active delegation"""
        user = self.users.require(user_id)
        return own_scope(user, self.registry).union(
            delegated_scope(user, self.registry, self.users, self.ledger, now)
        )

    def get_subordinates(self, user_id: str) -> list[User]:
        """
        Users inside the user's scope, excluding the user

        A global scope (super admin, head-office manager) returns every
        other user. Otherwise a user is a subordinate when their placement,
        or the team they are a member of, falls in the scope.
        """
        user = self.users.require(user_id)
        scope = own_scope(user, self.registry)

        if scope.is_global:
            return [u for u in self.users.all() if u.user_id != user_id]
        if scope.is_empty():
            return []

        members = {
            member
            for team_id in scope.team_ids
            for member in self.registry.require_team(team_id).members
        }
        return [
            u
            for u in self.users.all()
            if u.user_id != user_id and (scope.covers_placement(u) or u.user_id in members)
        ]

    def get_manager_chain(self, user_id: str) -> list[User]:
        """
        Managers from the direct manager up to the top, nearest first

        Raises:
            NotFound: Unknown user
            CorruptHierarchy: The chain loops or points at a missing user;
                reported as an operational alert before propagating
        """
        try:
            chain_ids = self.users.reporting_chain_ids(user_id)
        except CorruptHierarchy as e:
            corrupt_hierarchy_total.labels(hierarchy=e.kind).inc()
            alert_corrupt_hierarchy(logger, e.kind, e.path, e.reason)
            raise
        return [self.users.require(manager_id) for manager_id in chain_ids]

    def get_managed_entities(self, user_id: str, now: datetime) -> ManagedEntities:
        """Departments and teams managed directly or through an active delegation"""
        user = self.users.require(user_id)
        own = lender_scope(user, self.registry)

        department_ids = set(own.department_ids)
        team_ids = set(own.team_ids) | {t.team_id for t in self.registry.teams_led_by(user_id)}
        result = ManagedEntities(
            departments=self._departments(department_ids),
            teams=self._teams(team_ids),
        )

        delegation = self.ledger.active_for(user_id, now)
        if delegation is None:
            return result

        lent = delegated_scope(user, self.registry, self.users, self.ledger, now)
        return result.model_copy(
            update={
                "delegated_departments": self._departments(lent.department_ids)
                if delegation.authority.can_manage_departments
                else [],
                "delegated_teams": self._teams(lent.team_ids)
                if delegation.authority.can_manage_teams
                else [],
                "delegation_id": delegation.delegation_id,
            }
        )

    def can_manage_user(self, actor_id: str, target_id: str) -> bool:
        """Global scope, or the target is one of the actor's subordinates"""
        actor = self.users.require(actor_id)
        self.users.require(target_id)
        if own_scope(actor, self.registry).is_global:
            return True
        return any(u.user_id == target_id for u in self.get_subordinates(actor_id))

    def get_reporting_line(self, user_id: str) -> ReportingLine:
        user = self.users.require(user_id)
        manager = self.users.get(user.reports_to_id) if user.reports_to_id else None
        peers = (
            [
                u
                for u in self.users.direct_reports(user.reports_to_id)
                if u.user_id != user_id
            ]
            if user.reports_to_id
            else []
        )
        return ReportingLine(
            user=user,
            manager=manager,
            peers=peers,
            subordinates=self.get_subordinates(user_id),
        )

    def _departments(self, ids: set[str] | frozenset[str]) -> list[Department]:
        return [self.registry.departments[d] for d in sorted(ids) if d in self.registry.departments]

    def _teams(self, ids: set[str] | frozenset[str]) -> list[Team]:
        return [self.registry.teams[t] for t in sorted(ids) if t in self.registry.teams]

