"""
OrgAuthority - Main façade class

The single entry point of the engine. It hides event sourcing, projections
and command handlers behind plain method calls, and it owns the control
flow every mutation follows:

1. catch the projections up with the event store
2. permission check for the acting user (Unauthorized on failure)
3. scope check: the target must lie inside the actor's scope
4. handler validates invariants and emits events
5. the events AND their audit record are appended in one transaction

Example:
    >>> from org_authority import OrgAuthority
    >>> engine = OrgAuthority("authority.db")
    >>> hq = engine.create_organization("Head Office", "head_office")
    >>> finance = engine.create_department("Finance", hq.organization_id)
    >>> director = engine.register_user("Abebe Kebede", "directorate",
    ...                                 organization_id=hq.organization_id,
    ...                                 department_id=finance.department_id)
    >>> engine.can_perform(director.user_id, "Team", "create")
    False
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from org_authority.audit.commands import RecordChange
from org_authority.audit.diff import render
from org_authority.audit.handlers import AuditCommandHandlers
from org_authority.audit.models import AuditRecord, AuditView
from org_authority.audit.projections import AuditTrail
from org_authority.authority.decision import Decision, authorize, decide
from org_authority.authority.visibility import FieldVisibility, field_visibility
from org_authority.delegation.commands import DelegateAuthority, RevokeDelegation
from org_authority.delegation.handlers import DelegationCommandHandlers
from org_authority.delegation.models import DelegatedAuthority, Delegation, DelegationHistory
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.commands import (
    AssignManagedEntities,
    AssignRole,
    CreatePermission,
    CreateRole,
    DeletePermission,
    DeleteRole,
    DeleteUser,
    PlaceUser,
    RegisterUser,
    SetReportsTo,
    UnassignRole,
    UpdateRole,
    UpdateUser,
)
from org_authority.directory.handlers import DirectoryCommandHandlers
from org_authority.directory.models import AccessLevel, Action, Permission, Role, User, UserStatus
from org_authority.directory.projections import RoleRegistry, UserDirectory
from org_authority.hierarchy.chart import TreeNode, get_organizational_chart
from org_authority.hierarchy.resolver import HierarchyResolver, ManagedEntities, ReportingLine
from org_authority.hierarchy.scope import ScopeSet
from org_authority.kernel.errors import CorruptHierarchy, InvariantViolation, NotFound, Unauthorized
from org_authority.kernel.event_store import SQLiteEventStore, StreamWrite
from org_authority.kernel.events import AUDIT_STREAM, DIRECTORY_STREAM, Event, delegation_stream
from org_authority.kernel.ids import DefaultIdFactory, IdFactory
from org_authority.kernel.logging import LogOperation, alert_corrupt_hierarchy, get_logger
from org_authority.kernel.metrics import (
    audit_records_total,
    corrupt_hierarchy_total,
    delegations_total,
    track_operation,
)
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import Clock, SystemClock
from org_authority.structure.commands import (
    AddTeamMember,
    AssignTeamLeader,
    CreateDepartment,
    CreateOrganization,
    CreateSector,
    CreateTeam,
    DeleteDepartment,
    DeleteOrganization,
    DeleteSector,
    DeleteTeam,
    RemoveTeamMember,
    RenameSector,
    RenameTeam,
    UpdateDepartment,
    UpdateOrganization,
)
from org_authority.structure.handlers import StructureCommandHandlers
from org_authority.structure.models import Department, Organization, OrganizationType, Sector, Team
from org_authority.structure.projections import StructureRegistry

logger = get_logger(__name__)


def _snapshot(model: Any) -> dict[str, Any] | None:
    return model.model_dump(mode="json") if model is not None else None


class OrgAuthority:
    """
    Hierarchy-aware access control & delegation engine

    Provides a unified API for:
    - The organizational tree (organizations, sectors, departments, teams)
    - Users, roles and permissions
    - Hierarchy queries (subordinates, manager chain, org chart)
    - Authority decisions and field visibility
    - Time-bounded delegation of authority
    - The hash-chained audit trail

    Every method taking actor_id treats None as the system, which bypasses
    permission and scope checks.
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: AuthorityPolicy | None = None,
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        """
        Initialize the engine

        Args:
            sqlite_path: Path to SQLite database
            policy: Authority policy (uses defaults if None)
            clock: Clock for timestamps and expiry (uses system time if None)
            id_factory: Id generation (time-ordered ids if None)
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or AuthorityPolicy()
        self.clock = clock or SystemClock()
        self.id_factory = id_factory or DefaultIdFactory()

        # Initialize infrastructure
        self.event_store = SQLiteEventStore(self.sqlite_path)
        self.structure_handlers = StructureCommandHandlers(self.clock, self.policy, self.id_factory)
        self.directory_handlers = DirectoryCommandHandlers(self.clock, self.policy, self.id_factory)
        self.delegation_handlers = DelegationCommandHandlers(
            self.clock, self.policy, self.id_factory
        )
        self.audit_handlers = AuditCommandHandlers(self.clock, self.id_factory)

        # Initialize projections
        self.structure = StructureRegistry()
        self.users = UserDirectory()
        self.roles = RoleRegistry()
        self.ledger = DelegationLedger()
        self.audit_trail = AuditTrail()
        self.resolver = HierarchyResolver(self.structure, self.users, self.ledger)

        self._position = 0
        self._stream_versions: dict[str, int] = {}

        self.refresh()

    # Projection maintenance

    def refresh(self) -> int:
        """
        Catch projections up with the event store

        Called before every operation, so no decision uses state older than
        the call - even when other processes write to the same database.

        Returns:
            Number of events applied
        """
        events = self.event_store.load_all_events(after_position=self._position)
        for event in events:
            self._apply(event)
        return len(events)

    def _apply(self, event: Event) -> None:
        if event.stream_type == "directory":
            self.structure.apply_event(event)
            self.users.apply_event(event)
            self.roles.apply_event(event)
        elif event.stream_type == "delegation":
            self.ledger.apply_event(event)
        elif event.stream_type == "audit":
            self.audit_trail.apply_event(event)

        self._stream_versions[event.stream_id] = event.version
        if event.position is not None:
            self._position = event.position

    def _version(self, stream_id: str) -> int:
        return self._stream_versions.get(stream_id, 0)

    def _now(self) -> datetime:
        return self.clock.now()

    @contextmanager
    def _alerting(self) -> Iterator[None]:
        """Report corrupt hierarchy data as an operational alert, then propagate"""
        try:
            yield
        except CorruptHierarchy as e:
            corrupt_hierarchy_total.labels(hierarchy=e.kind).inc()
            alert_corrupt_hierarchy(logger, e.kind, e.path, e.reason)
            raise

    @contextmanager
    def _operation(self, operation: str, **context: Any) -> Iterator[None]:
        self.refresh()
        with LogOperation(logger, operation, **context), self._alerting():
            yield

    # Authorization helpers

    def _authorize(self, actor_id: str | None, resource: str, action: str) -> User | None:
        """Permission check; returns the acting user (None for the system)"""
        if actor_id is None:
            return None
        actor = self.users.get(actor_id)
        if actor is None:
            raise Unauthorized(actor_id, resource, action, "unknown actor")
        authorize(actor, resource, action, self.roles, self.ledger, self.policy, self._now())
        return actor

    def _require_entity(self, kind: str, entity_id: str) -> None:
        {
            "organization": self.structure.require_organization,
            "sector": self.structure.require_sector,
            "department": self.structure.require_department,
            "team": self.structure.require_team,
        }[kind](entity_id)

    def _require_scope(self, actor: User | None, kind: str, entity_id: str) -> None:
        """
        The target must lie inside the actor's scope, including delegated scope

        Raises:
            NotFound: If the target does not exist
            Unauthorized: If it lies outside the actor's scope
        """
        self._require_entity(kind, entity_id)
        if actor is None:
            return
        scope = self.resolver.effective_scope(actor.user_id, self._now())
        if not scope.covers(kind, entity_id):
            raise Unauthorized(
                actor.user_id, kind, "access", f"{kind} {entity_id} is outside the actor's scope"
            )

    def _require_manageable(self, actor: User | None, target_id: str, resource: str) -> None:
        if actor is None:
            self.users.require(target_id)
            return
        if not self.resolver.can_manage_user(actor.user_id, target_id):
            raise Unauthorized(
                actor.user_id, resource, "manage", f"user {target_id} is outside the actor's scope"
            )

    def _require_placement_scope(
        self,
        actor: User | None,
        organization_id: str | None,
        sector_id: str | None,
        department_id: str | None,
        team_id: str | None,
    ) -> None:
        # The most specific placement field names the target
        for kind, entity_id in (
            ("team", team_id),
            ("department", department_id),
            ("sector", sector_id),
            ("organization", organization_id),
        ):
            if entity_id is not None:
                self._require_scope(actor, kind, entity_id)
                return

    # Commit

    def _audit_events(self, changes: list[RecordChange], command_id: str) -> list[Event]:
        events: list[Event] = []
        previous_digest = self.audit_trail.last_digest
        version = self._version(AUDIT_STREAM)
        for change in changes:
            built = self.audit_handlers.handle_record_change(
                change, command_id, previous_digest, version
            )
            previous_digest = built[-1].payload["record"]["digest"]
            version += len(built)
            events.extend(built)
        return events

    def _commit(
        self,
        command_id: str,
        events: list[Event],
        changes: list[RecordChange],
    ) -> None:
        """
        Append mutation events and their audit records in ONE transaction

        Raises:
            StreamVersionConflict: If another writer moved any touched stream
        """
        writes: list[StreamWrite] = []
        by_stream: dict[str, list[Event]] = {}
        for event in events:
            by_stream.setdefault(event.stream_id, []).append(event)
        for stream_id, stream_events in by_stream.items():
            writes.append((stream_id, self._version(stream_id), stream_events))
        if changes:
            writes.append((AUDIT_STREAM, self._version(AUDIT_STREAM), self._audit_events(changes, command_id)))

        self.event_store.append_batch(writes)
        for change in changes:
            audit_records_total.labels(resource=change.resource, action=change.action).inc()
        self.refresh()

    def _change(
        self,
        actor_id: str | None,
        source_address: str | None,
        action: str,
        resource: str,
        resource_id: str | None,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> RecordChange:
        return RecordChange(
            actor_user_id=actor_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            before=before,
            after=after,
            source_address=source_address,
        )

    def _follow_on_changes(
        self, actor_id: str | None, source_address: str | None, events: list[Event]
    ) -> list[RecordChange]:
        """
        Audit the teams and users a command touched besides its target

        Membership and placement move together, so one command can update a
        second team or the member's own record. Must run before the commit.
        """
        changes = []
        for event in events:
            if event.event_type == "TeamUpdated":
                after = event.payload["team"]
                before = _snapshot(self.structure.teams.get(after["team_id"]))
                changes.append(
                    self._change(actor_id, source_address, "update", "Team", after["team_id"], before, after)
                )
            elif event.event_type == "UserUpdated":
                after = event.payload["user"]
                before = _snapshot(self.users.get(after["user_id"]))
                changes.append(
                    self._change(actor_id, source_address, "update", "User", after["user_id"], before, after)
                )
        return changes

    def _new_command_id(self) -> str:
        return self.id_factory.generate("cmd")

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    @track_operation("create_organization")
    def create_organization(
        self,
        name: str,
        organization_type: OrganizationType | str,
        parent_id: str | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Organization:
        """
        Create an organization

        Args:
            name: Organization name
            organization_type: head_office, branch, subcity or woreda
            parent_id: Parent organization (None for a root)
            actor_id: Acting user (None = system)
            source_address: Caller address for the audit record

        Returns:
            The created organization

        Raises:
            Unauthorized, InvalidParent, HierarchyTooDeep, CorruptHierarchy
        """
        with self._operation("create_organization", actor_id=actor_id, parent_id=parent_id):
            actor = self._authorize(actor_id, "Organization", "create")
            if parent_id is not None and self.structure.get_organization(parent_id) is not None:
                self._require_scope(actor, "organization", parent_id)

            command_id = self._new_command_id()
            events = self.structure_handlers.handle_create_organization(
                CreateOrganization(
                    name=name, organization_type=organization_type, parent_id=parent_id
                ),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["organization"]
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "create", "Organization", after["organization_id"], None, after)],
            )
            return self.structure.require_organization(after["organization_id"])

    @track_operation("update_organization")
    def update_organization(
        self,
        organization_id: str,
        name: str | None = None,
        organization_type: OrganizationType | str | None = None,
        parent_id: str | None = None,
        detach: bool = False,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Organization:
        """
        Rename, retype or move an organization

        Raises:
            Unauthorized, NotFound, InvalidParent, HierarchyTooDeep, InvalidOwnerType
        """
        with self._operation("update_organization", actor_id=actor_id, organization_id=organization_id):
            actor = self._authorize(actor_id, "Organization", "update")
            self._require_scope(actor, "organization", organization_id)
            if parent_id is not None and self.structure.get_organization(parent_id) is not None:
                self._require_scope(actor, "organization", parent_id)

            before = _snapshot(self.structure.require_organization(organization_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_update_organization(
                UpdateOrganization(
                    organization_id=organization_id,
                    name=name,
                    organization_type=organization_type,
                    parent_id=parent_id,
                    detach=detach,
                ),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["organization"]
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "update", "Organization", organization_id, before, after)],
            )
            return self.structure.require_organization(organization_id)

    @track_operation("delete_organization")
    def delete_organization(
        self,
        organization_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        """
        Delete an organization with no dependents (never cascades)

        Raises:
            Unauthorized, NotFound, HasDependents
        """
        with self._operation("delete_organization", actor_id=actor_id, organization_id=organization_id):
            actor = self._authorize(actor_id, "Organization", "delete")
            self._require_scope(actor, "organization", organization_id)

            before = _snapshot(self.structure.require_organization(organization_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_delete_organization(
                DeleteOrganization(organization_id=organization_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "Organization", organization_id, before, None)],
            )

    def get_organization(self, organization_id: str) -> Organization:
        self.refresh()
        return self.structure.require_organization(organization_id)

    def list_organizations(self) -> list[Organization]:
        self.refresh()
        return sorted(self.structure.organizations.values(), key=lambda o: o.organization_id)

    # ------------------------------------------------------------------
    # Sectors
    # ------------------------------------------------------------------

    @track_operation("create_sector")
    def create_sector(
        self,
        name: str,
        organization_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Sector:
        """
        Create a sector of a head-office organization

        Raises:
            Unauthorized, NotFound, InvalidOwnerType
        """
        with self._operation("create_sector", actor_id=actor_id, organization_id=organization_id):
            actor = self._authorize(actor_id, "Sector", "create")
            self._require_scope(actor, "organization", organization_id)

            command_id = self._new_command_id()
            events = self.structure_handlers.handle_create_sector(
                CreateSector(name=name, organization_id=organization_id),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["sector"]
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "create", "Sector", after["sector_id"], None, after)],
            )
            return self.structure.require_sector(after["sector_id"])

    @track_operation("rename_sector")
    def rename_sector(
        self,
        sector_id: str,
        name: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Sector:
        with self._operation("rename_sector", actor_id=actor_id, sector_id=sector_id):
            actor = self._authorize(actor_id, "Sector", "update")
            self._require_scope(actor, "sector", sector_id)

            before = _snapshot(self.structure.require_sector(sector_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_rename_sector(
                RenameSector(sector_id=sector_id, name=name),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "update", "Sector", sector_id, before, events[0].payload["sector"])],
            )
            return self.structure.require_sector(sector_id)

    @track_operation("delete_sector")
    def delete_sector(
        self,
        sector_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        """
        Raises:
            Unauthorized, NotFound, HasDependents
        """
        with self._operation("delete_sector", actor_id=actor_id, sector_id=sector_id):
            actor = self._authorize(actor_id, "Sector", "delete")
            self._require_scope(actor, "sector", sector_id)

            before = _snapshot(self.structure.require_sector(sector_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_delete_sector(
                DeleteSector(sector_id=sector_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "Sector", sector_id, before, None)],
            )

    # ------------------------------------------------------------------
    # Departments
    # ------------------------------------------------------------------

    @track_operation("create_department")
    def create_department(
        self,
        name: str,
        organization_id: str,
        sector_id: str | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Department:
        """
        Create a department, optionally inside a sector of the same organization

        Raises:
            Unauthorized, NotFound, OwnerMismatch
        """
        with self._operation("create_department", actor_id=actor_id, organization_id=organization_id):
            actor = self._authorize(actor_id, "Department", "create")
            if sector_id is not None:
                self._require_scope(actor, "sector", sector_id)
            else:
                self._require_scope(actor, "organization", organization_id)

            command_id = self._new_command_id()
            events = self.structure_handlers.handle_create_department(
                CreateDepartment(name=name, organization_id=organization_id, sector_id=sector_id),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["department"]
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "create", "Department", after["department_id"], None, after)],
            )
            return self.structure.require_department(after["department_id"])

    @track_operation("update_department")
    def update_department(
        self,
        department_id: str,
        name: str | None = None,
        sector_id: str | None = None,
        clear_sector: bool = False,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Department:
        """
        Rename a department or move it between sectors

        Raises:
            Unauthorized, NotFound, OwnerMismatch
        """
        with self._operation("update_department", actor_id=actor_id, department_id=department_id):
            actor = self._authorize(actor_id, "Department", "update")
            self._require_scope(actor, "department", department_id)
            if sector_id is not None:
                self._require_scope(actor, "sector", sector_id)

            before = _snapshot(self.structure.require_department(department_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_update_department(
                UpdateDepartment(
                    department_id=department_id,
                    name=name,
                    sector_id=sector_id,
                    clear_sector=clear_sector,
                ),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "update", "Department", department_id, before, events[0].payload["department"])],
            )
            return self.structure.require_department(department_id)

    @track_operation("delete_department")
    def delete_department(
        self,
        department_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        """
        Raises:
            Unauthorized, NotFound, HasDependents
        """
        with self._operation("delete_department", actor_id=actor_id, department_id=department_id):
            actor = self._authorize(actor_id, "Department", "delete")
            self._require_scope(actor, "department", department_id)

            before = _snapshot(self.structure.require_department(department_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_delete_department(
                DeleteDepartment(department_id=department_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "Department", department_id, before, None)],
            )

    def get_department(self, department_id: str) -> Department:
        self.refresh()
        return self.structure.require_department(department_id)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    @track_operation("create_team")
    def create_team(
        self,
        name: str,
        department_id: str,
        team_leader_id: str | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Team:
        """
        Create a team; the leader becomes a member in the same event

        Raises:
            Unauthorized, NotFound
        """
        with self._operation("create_team", actor_id=actor_id, department_id=department_id):
            actor = self._authorize(actor_id, "Team", "create")
            self._require_scope(actor, "department", department_id)

            command_id = self._new_command_id()
            events = self.structure_handlers.handle_create_team(
                CreateTeam(name=name, department_id=department_id, team_leader_id=team_leader_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["team"]
            self._commit(
                command_id,
                events,
                [
                    self._change(actor_id, source_address, "create", "Team", after["team_id"], None, after),
                    *self._follow_on_changes(actor_id, source_address, events[1:]),
                ],
            )
            return self.structure.require_team(after["team_id"])

    def _team_update(
        self,
        operation: str,
        team_id: str,
        actor_id: str | None,
        source_address: str | None,
        build: Any,
        **context: Any,
    ) -> Team:
        with self._operation(operation, actor_id=actor_id, team_id=team_id, **context):
            actor = self._authorize(actor_id, "Team", "update")
            self._require_scope(actor, "team", team_id)

            before = _snapshot(self.structure.require_team(team_id))
            command_id = self._new_command_id()
            events = build(command_id, self._version(DIRECTORY_STREAM))
            self._commit(
                command_id,
                events,
                [
                    self._change(
                        actor_id, source_address, "update", "Team", team_id, before, events[0].payload["team"]
                    ),
                    *self._follow_on_changes(actor_id, source_address, events[1:]),
                ],
            )
            return self.structure.require_team(team_id)

    @track_operation("rename_team")
    def rename_team(
        self,
        team_id: str,
        name: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Team:
        return self._team_update(
            "rename_team",
            team_id,
            actor_id,
            source_address,
            lambda command_id, version: self.structure_handlers.handle_rename_team(
                RenameTeam(team_id=team_id, name=name), command_id, actor_id, self.structure, version
            ),
        )

    @track_operation("add_team_member")
    def add_team_member(
        self,
        team_id: str,
        user_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Team:
        """
        Add a member; a user in another team is moved out of it

        Raises:
            Unauthorized, NotFound
        """
        return self._team_update(
            "add_team_member",
            team_id,
            actor_id,
            source_address,
            lambda command_id, version: self.structure_handlers.handle_add_team_member(
                AddTeamMember(team_id=team_id, user_id=user_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                version,
            ),
            member_id=user_id,
        )

    @track_operation("remove_team_member")
    def remove_team_member(
        self,
        team_id: str,
        user_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Team:
        """Remove a member; removing the leader clears the leader"""
        return self._team_update(
            "remove_team_member",
            team_id,
            actor_id,
            source_address,
            lambda command_id, version: self.structure_handlers.handle_remove_team_member(
                RemoveTeamMember(team_id=team_id, user_id=user_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                version,
            ),
            member_id=user_id,
        )

    @track_operation("assign_team_leader")
    def assign_team_leader(
        self,
        team_id: str,
        user_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Team:
        """Make a user the team leader, adding them as a member atomically"""
        return self._team_update(
            "assign_team_leader",
            team_id,
            actor_id,
            source_address,
            lambda command_id, version: self.structure_handlers.handle_assign_team_leader(
                AssignTeamLeader(team_id=team_id, user_id=user_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                version,
            ),
            member_id=user_id,
        )

    @track_operation("delete_team")
    def delete_team(
        self,
        team_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        """
        Raises:
            Unauthorized, NotFound, HasDependents
        """
        with self._operation("delete_team", actor_id=actor_id, team_id=team_id):
            actor = self._authorize(actor_id, "Team", "delete")
            self._require_scope(actor, "team", team_id)

            before = _snapshot(self.structure.require_team(team_id))
            command_id = self._new_command_id()
            events = self.structure_handlers.handle_delete_team(
                DeleteTeam(team_id=team_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "Team", team_id, before, None)],
            )

    def get_team(self, team_id: str) -> Team:
        self.refresh()
        return self.structure.require_team(team_id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @track_operation("register_user")
    def register_user(
        self,
        full_name: str,
        access_level: AccessLevel | str = AccessLevel.PUBLIC,
        email: str | None = None,
        organization_id: str | None = None,
        sector_id: str | None = None,
        department_id: str | None = None,
        team_id: str | None = None,
        status: UserStatus | str = UserStatus.PENDING,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        """
        Register a user, optionally placed in the tree

        Raises:
            Unauthorized, NotFound, InvalidPlacement, OwnerMismatch
        """
        with self._operation(
            "register_user", actor_id=actor_id, access_level=str(access_level), email=email
        ):
            actor = self._authorize(actor_id, "User", "create")
            self._require_placement_scope(actor, organization_id, sector_id, department_id, team_id)

            command_id = self._new_command_id()
            events = self.directory_handlers.handle_register_user(
                RegisterUser(
                    full_name=full_name,
                    email=email,
                    access_level=access_level,
                    organization_id=organization_id,
                    sector_id=sector_id,
                    department_id=department_id,
                    team_id=team_id,
                    status=status,
                ),
                command_id,
                actor_id,
                self.structure,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["user"]
            self._commit(
                command_id,
                events,
                [
                    self._change(actor_id, source_address, "create", "User", after["user_id"], None, after),
                    *self._follow_on_changes(actor_id, source_address, events[1:]),
                ],
            )
            return self.users.require(after["user_id"])

    def _user_update(
        self,
        operation: str,
        user_id: str,
        actor_id: str | None,
        source_address: str | None,
        build: Any,
        check: Callable[[User | None], None] | None = None,
        **context: Any,
    ) -> User:
        with self._operation(operation, actor_id=actor_id, user_id=user_id, **context):
            actor = self._authorize(actor_id, "User", "update")
            self._require_manageable(actor, user_id, "User")
            if check is not None:
                check(actor)

            before = _snapshot(self.users.require(user_id))
            command_id = self._new_command_id()
            events = build(command_id, self._version(DIRECTORY_STREAM))
            self._commit(
                command_id,
                events,
                [
                    self._change(
                        actor_id, source_address, "update", "User", user_id, before, events[0].payload["user"]
                    ),
                    *self._follow_on_changes(actor_id, source_address, events[1:]),
                ],
            )
            return self.users.require(user_id)

    @track_operation("update_user")
    def update_user(
        self,
        user_id: str,
        full_name: str | None = None,
        email: str | None = None,
        access_level: AccessLevel | str | None = None,
        status: UserStatus | str | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        """
        Update profile, access level or status

        Raises:
            Unauthorized, NotFound, InvalidPlacement
        """
        return self._user_update(
            "update_user",
            user_id,
            actor_id,
            source_address,
            lambda command_id, version: self.directory_handlers.handle_update_user(
                UpdateUser(
                    user_id=user_id,
                    full_name=full_name,
                    email=email,
                    access_level=access_level,
                    status=status,
                ),
                command_id,
                actor_id,
                self.structure,
                self.users,
                version,
            ),
        )

    @track_operation("place_user")
    def place_user(
        self,
        user_id: str,
        organization_id: str | None = None,
        sector_id: str | None = None,
        department_id: str | None = None,
        team_id: str | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        """
        Replace a user's placement

        Raises:
            Unauthorized, NotFound, InvalidPlacement, OwnerMismatch
        """
        return self._user_update(
            "place_user",
            user_id,
            actor_id,
            source_address,
            lambda command_id, version: self.directory_handlers.handle_place_user(
                PlaceUser(
                    user_id=user_id,
                    organization_id=organization_id,
                    sector_id=sector_id,
                    department_id=department_id,
                    team_id=team_id,
                ),
                command_id,
                actor_id,
                self.structure,
                self.users,
                version,
            ),
            check=lambda actor: self._require_placement_scope(
                actor, organization_id, sector_id, department_id, team_id
            ),
        )

    @track_operation("set_reports_to")
    def set_reports_to(
        self,
        user_id: str,
        manager_id: str | None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        """
        Set or clear a user's direct manager

        Raises:
            Unauthorized, NotFound, ReportingCycle, InsufficientRank
        """
        return self._user_update(
            "set_reports_to",
            user_id,
            actor_id,
            source_address,
            lambda command_id, version: self.directory_handlers.handle_set_reports_to(
                SetReportsTo(user_id=user_id, manager_id=manager_id),
                command_id,
                actor_id,
                self.users,
                version,
            ),
            manager_id=manager_id,
        )

    @track_operation("assign_managed_entities")
    def assign_managed_entities(
        self,
        user_id: str,
        department_ids: list[str] | None = None,
        team_ids: list[str] | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        """Replace the departments and teams explicitly assigned to a user"""

        def check(actor: User | None) -> None:
            for department_id in department_ids or []:
                self._require_scope(actor, "department", department_id)
            for team_id in team_ids or []:
                self._require_scope(actor, "team", team_id)

        return self._user_update(
            "assign_managed_entities",
            user_id,
            actor_id,
            source_address,
            lambda command_id, version: self.directory_handlers.handle_assign_managed_entities(
                AssignManagedEntities(
                    user_id=user_id,
                    department_ids=department_ids or [],
                    team_ids=team_ids or [],
                ),
                command_id,
                actor_id,
                self.structure,
                self.users,
                version,
            ),
            check=check,
        )

    @track_operation("assign_role")
    def assign_role(
        self,
        user_id: str,
        role_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        return self._user_update(
            "assign_role",
            user_id,
            actor_id,
            source_address,
            lambda command_id, version: self.directory_handlers.handle_assign_role(
                AssignRole(user_id=user_id, role_id=role_id),
                command_id,
                actor_id,
                self.users,
                self.roles,
                version,
            ),
            role_id=role_id,
        )

    @track_operation("unassign_role")
    def unassign_role(
        self,
        user_id: str,
        role_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> User:
        return self._user_update(
            "unassign_role",
            user_id,
            actor_id,
            source_address,
            lambda command_id, version: self.directory_handlers.handle_unassign_role(
                UnassignRole(user_id=user_id, role_id=role_id),
                command_id,
                actor_id,
                self.users,
                version,
            ),
            role_id=role_id,
        )

    @track_operation("delete_user")
    def delete_user(
        self,
        user_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        """
        Raises:
            Unauthorized, NotFound, HasDependents
        """
        with self._operation("delete_user", actor_id=actor_id, user_id=user_id):
            actor = self._authorize(actor_id, "User", "delete")
            self._require_manageable(actor, user_id, "User")

            before = _snapshot(self.users.require(user_id))
            command_id = self._new_command_id()
            events = self.directory_handlers.handle_delete_user(
                DeleteUser(user_id=user_id),
                command_id,
                actor_id,
                self.structure,
                self.users,
                self.ledger,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "User", user_id, before, None)],
            )

    def get_user(self, user_id: str) -> User:
        self.refresh()
        return self.users.require(user_id)

    def list_users(self) -> list[User]:
        self.refresh()
        return self.users.all()

    # ------------------------------------------------------------------
    # Roles & permissions
    # ------------------------------------------------------------------

    @track_operation("create_permission")
    def create_permission(
        self,
        resource: str,
        action: Action | str,
        description: str | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Permission:
        """
        Raises:
            Unauthorized, DuplicatePermission
        """
        with self._operation("create_permission", actor_id=actor_id, resource=resource, action=str(action)):
            self._authorize(actor_id, "Permission", "create")

            command_id = self._new_command_id()
            events = self.directory_handlers.handle_create_permission(
                CreatePermission(resource=resource, action=action, description=description),
                command_id,
                actor_id,
                self.roles,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["permission"]
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "create", "Permission", after["permission_id"], None, after)],
            )
            return self.roles.require_permission(after["permission_id"])

    @track_operation("delete_permission")
    def delete_permission(
        self,
        permission_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        with self._operation("delete_permission", actor_id=actor_id, permission_id=permission_id):
            self._authorize(actor_id, "Permission", "delete")

            before = _snapshot(self.roles.require_permission(permission_id))
            command_id = self._new_command_id()
            events = self.directory_handlers.handle_delete_permission(
                DeletePermission(permission_id=permission_id),
                command_id,
                actor_id,
                self.roles,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "Permission", permission_id, before, None)],
            )

    def list_permissions(self) -> list[Permission]:
        self.refresh()
        return self.roles.list_permissions()

    @track_operation("create_role")
    def create_role(
        self,
        name: str,
        description: str | None = None,
        permission_ids: list[str] | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Role:
        with self._operation("create_role", actor_id=actor_id):
            self._authorize(actor_id, "Role", "create")

            command_id = self._new_command_id()
            events = self.directory_handlers.handle_create_role(
                CreateRole(name=name, description=description, permission_ids=permission_ids or []),
                command_id,
                actor_id,
                self.roles,
                self._version(DIRECTORY_STREAM),
            )
            after = events[0].payload["role"]
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "create", "Role", after["role_id"], None, after)],
            )
            return self.roles.require_role(after["role_id"])

    @track_operation("update_role")
    def update_role(
        self,
        role_id: str,
        name: str | None = None,
        description: str | None = None,
        permission_ids: list[str] | None = None,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Role:
        """Rename a role or replace its permissions (None leaves a field unchanged)"""
        with self._operation("update_role", actor_id=actor_id, role_id=role_id):
            self._authorize(actor_id, "Role", "update")

            before = _snapshot(self.roles.require_role(role_id))
            command_id = self._new_command_id()
            events = self.directory_handlers.handle_update_role(
                UpdateRole(
                    role_id=role_id,
                    name=name,
                    description=description,
                    permission_ids=permission_ids,
                ),
                command_id,
                actor_id,
                self.roles,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "update", "Role", role_id, before, events[0].payload["role"])],
            )
            return self.roles.require_role(role_id)

    def grant_permission(
        self, role_id: str, permission_id: str, *, actor_id: str | None = None, source_address: str | None = None
    ) -> Role:
        """Add one permission to a role"""
        self.refresh()
        role = self.roles.require_role(role_id)
        return self.update_role(
            role_id,
            permission_ids=sorted(set(role.permission_ids) | {permission_id}),
            actor_id=actor_id,
            source_address=source_address,
        )

    def revoke_permission(
        self, role_id: str, permission_id: str, *, actor_id: str | None = None, source_address: str | None = None
    ) -> Role:
        """Remove one permission from a role"""
        self.refresh()
        role = self.roles.require_role(role_id)
        return self.update_role(
            role_id,
            permission_ids=[p for p in role.permission_ids if p != permission_id],
            actor_id=actor_id,
            source_address=source_address,
        )

    @track_operation("delete_role")
    def delete_role(
        self,
        role_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> None:
        """
        Raises:
            Unauthorized, NotFound, HasDependents
        """
        with self._operation("delete_role", actor_id=actor_id, role_id=role_id):
            self._authorize(actor_id, "Role", "delete")

            before = _snapshot(self.roles.require_role(role_id))
            command_id = self._new_command_id()
            events = self.directory_handlers.handle_delete_role(
                DeleteRole(role_id=role_id),
                command_id,
                actor_id,
                self.users,
                self.roles,
                self._version(DIRECTORY_STREAM),
            )
            self._commit(
                command_id,
                events,
                [self._change(actor_id, source_address, "delete", "Role", role_id, before, None)],
            )

    def list_roles(self) -> list[Role]:
        self.refresh()
        return self.roles.list_roles()

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def decide(self, user_id: str, resource: str, action: str) -> Decision:
        """Permission decision with the rule that decided it (NotFound for unknown users)"""
        self.refresh()
        user = self.users.require(user_id)
        return decide(user, resource, action, self.roles, self.ledger, self.policy, self._now())

    def can_perform(self, user_id: str, resource: str, action: str) -> bool:
        """
        May the user perform action on resource right now?

        Evaluated fresh on every call: super admin, then role permissions,
        then an active non-expired delegation.
        """
        return self.decide(user_id, resource, action).allowed

    def can_perform_any(self, user_id: str, checks: list[tuple[str, str]]) -> bool:
        """
        May the user perform at least one of the (resource, action) pairs?

        Each pair is decided exactly like can_perform, so super admins and
        active delegations count. An empty list is never allowed.
        """
        return any(self.decide(user_id, resource, action).allowed for resource, action in checks)

    def effective_permissions(self, user_id: str) -> list[Permission]:
        """
        Permissions the user holds through their roles, deduplicated

        Delegated capabilities are not permissions and are not listed;
        see the user's delegation history for those.

        Raises:
            NotFound: Unknown user
        """
        self.refresh()
        return self.roles.permissions_of(self.users.require(user_id))

    def authorize(self, user_id: str, resource: str, action: str) -> Decision:
        """
        Raises:
            Unauthorized: If can_perform is false
        """
        self.refresh()
        user = self.users.require(user_id)
        return authorize(user, resource, action, self.roles, self.ledger, self.policy, self._now())

    def field_visibility(self, access_level: AccessLevel | str) -> FieldVisibility:
        return field_visibility(access_level)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def scope_set(self, user_id: str) -> ScopeSet:
        self.refresh()
        return self.resolver.scope_set(user_id)

    def get_subordinates(self, user_id: str) -> list[User]:
        """Users inside the user's scope (every other user for a global scope)"""
        self.refresh()
        return self.resolver.get_subordinates(user_id)

    def get_manager_chain(self, user_id: str) -> list[User]:
        """
        Raises:
            NotFound: Unknown user
            CorruptHierarchy: The reporting chain loops or dangles
        """
        self.refresh()
        return self.resolver.get_manager_chain(user_id)

    def get_managed_entities(self, user_id: str) -> ManagedEntities:
        self.refresh()
        return self.resolver.get_managed_entities(user_id, self._now())

    def can_manage_user(self, actor_id: str, target_id: str) -> bool:
        self.refresh()
        return self.resolver.can_manage_user(actor_id, target_id)

    def get_organizational_chart(self, root_user_id: str | None = None) -> TreeNode:
        """
        The organizational chart, pruned to a user's scope when root_user_id is given

        Raises:
            NotFound: Unknown root user
            CorruptHierarchy: The organization tree is corrupt
        """
        self.refresh()
        scope = self.resolver.scope_set(root_user_id) if root_user_id else None
        with self._alerting():
            return get_organizational_chart(self.structure, scope)

    def get_reporting_line(self, user_id: str) -> ReportingLine:
        self.refresh()
        return self.resolver.get_reporting_line(user_id)

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    @track_operation("delegate")
    def delegate(
        self,
        delegator_id: str,
        delegatee_id: str,
        authority: DelegatedAuthority | dict[str, bool],
        *,
        reason: str | None = None,
        end_date: datetime | None = None,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Delegation:
        """
        Delegate authority from delegator to delegatee

        Args:
            delegator_id: Who lends the authority
            delegatee_id: Who receives it
            authority: Capability flags (at least one true)
            reason: Optional justification
            end_date: When the grant lapses (None = until revoked)
            actor_id: Acting user (defaults to the delegator)
            source_address: Caller address for the audit record

        Returns:
            The new delegation

        Raises:
            Unauthorized: Actor is neither the delegator nor permitted ("Delegation", "create")
            SelfDelegation, NotFound, InsufficientRank, EmptyDelegatedAuthority,
            InvalidDelegationWindow, ActiveDelegationExists
            StreamVersionConflict: A concurrent grant to the same delegatee won
        """
        actor_id = actor_id or delegator_id
        with self._operation(
            "delegate", actor_id=actor_id, delegator_id=delegator_id, delegatee_id=delegatee_id
        ):
            if actor_id != delegator_id:
                self._authorize(actor_id, "Delegation", "create")

            command = DelegateAuthority(
                delegator_id=delegator_id,
                delegatee_id=delegatee_id,
                authority=authority,
                reason=reason,
                end_date=end_date,
            )
            stream_id = delegation_stream(delegatee_id)
            command_id = self._new_command_id()
            try:
                events = self.delegation_handlers.handle_delegate(
                    command,
                    command_id,
                    actor_id,
                    self.users,
                    self.ledger,
                    self._version(stream_id),
                )
            except (InvariantViolation, NotFound):
                delegations_total.labels(transition="rejected").inc()
                raise

            after = events[-1].payload["delegation"]
            changes = [
                self._transition_change(actor_id, source_address, "expire", e)
                for e in events
                if e.event_type == "DelegationExpired"
            ]
            changes.append(
                self._change(actor_id, source_address, "delegate", "Delegation", after["delegation_id"], None, after)
            )
            self._commit(command_id, events, changes)
            if len(changes) > 1:
                delegations_total.labels(transition="expired").inc(len(changes) - 1)

            delegations_total.labels(transition="granted").inc()
            delegation = self.ledger.get(after["delegation_id"])
            if delegation is None:
                raise NotFound("Delegation", after["delegation_id"])
            return delegation

    @track_operation("revoke")
    def revoke(
        self,
        delegatee_id: str,
        *,
        actor_id: str | None = None,
        source_address: str | None = None,
    ) -> Delegation | None:
        """
        Revoke the delegatee's active delegation

        Idempotent: returns None and writes nothing when no delegation is active.

        Raises:
            Unauthorized: Actor is neither the delegator nor permitted ("Delegation", "delete")
        """
        with self._operation("revoke", actor_id=actor_id, delegatee_id=delegatee_id):
            active = self.ledger.active_for(delegatee_id, self._now())
            if active is None:
                return None
            if actor_id is not None and actor_id != active.delegator_id:
                self._authorize(actor_id, "Delegation", "delete")

            stream_id = delegation_stream(delegatee_id)
            command_id = self._new_command_id()
            events = self.delegation_handlers.handle_revoke(
                RevokeDelegation(delegatee_id=delegatee_id),
                command_id,
                actor_id,
                self.ledger,
                self._version(stream_id),
            )
            self._commit(
                command_id,
                events,
                [self._transition_change(actor_id, source_address, "revoke", e) for e in events],
            )
            delegations_total.labels(transition="revoked").inc()
            return self.ledger.get(active.delegation_id)

    def _transition_change(
        self, actor_id: str | None, source_address: str | None, action: str, event: Event
    ) -> RecordChange:
        """Audit change for a status transition, before and after the event applies"""
        current = self.ledger.get(event.payload["delegation_id"])
        preview = DelegationLedger()
        if current is not None:
            preview.delegations[current.delegation_id] = current
        preview.apply_event(event)
        return self._change(
            actor_id,
            source_address,
            action,
            "Delegation",
            event.payload["delegation_id"],
            _snapshot(current),
            _snapshot(preview.get(event.payload["delegation_id"])),
        )

    def history(self, user_id: str) -> DelegationHistory:
        """Delegations the user granted (delegated_by) and received (delegated_to), newest first"""
        self.refresh()
        return self.ledger.history(user_id, self._now())

    def delegated_authority(self, user_id: str) -> DelegatedAuthority | None:
        """The authority the user currently holds through delegation, if any"""
        self.refresh()
        delegation = self.ledger.active_for(user_id, self._now())
        return delegation.authority if delegation else None

    @track_operation("sweep_expired_delegations")
    def sweep_expired_delegations(self, *, actor_id: str | None = None) -> list[Delegation]:
        """
        Record `expired` for lapsed delegations still stored as active

        Optional bookkeeping: decisions already treat them as expired.

        Returns:
            The delegations marked expired
        """
        with self._operation("sweep_expired_delegations", actor_id=actor_id):
            self._authorize(actor_id, "Delegation", "update")

            command_id = self._new_command_id()
            writes = self.delegation_handlers.handle_sweep_expired(
                command_id, self.ledger, dict(self._stream_versions)
            )
            events = [e for stream_events in writes.values() for e in stream_events]
            if not events:
                return []

            self._commit(
                command_id,
                events,
                [self._transition_change(actor_id, None, "expire", e) for e in events],
            )

            delegations_total.labels(transition="expired").inc(len(events))
            return [
                d for e in events if (d := self.ledger.get(e.payload["delegation_id"])) is not None
            ]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @track_operation("record_change")
    def record_change(
        self,
        actor_id: str | None,
        action: str,
        resource: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        source_address: str | None = None,
        resource_id: str | None = None,
    ) -> AuditRecord:
        """
        Append an audit record for a change made outside the engine

        The record is stored even when nothing changed.
        """
        with self._operation("record_change", actor_id=actor_id, resource=resource, action=action):
            command_id = self._new_command_id()
            self._commit(
                command_id,
                [],
                [self._change(actor_id, source_address, action, resource, resource_id, before, after)],
            )
            return self.audit_trail.for_command(command_id)[-1]

    def list_audit(
        self,
        resource: str | None = None,
        actor_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditRecord]:
        """Audit records, newest first"""
        self.refresh()
        return self.audit_trail.list_records(resource=resource, actor_id=actor_id, limit=limit)

    def render_audit(self, audit_id: str) -> AuditView:
        """Per-field before/after view of one record (never mutates the stored snapshots)"""
        self.refresh()
        return render(self.audit_trail.get(audit_id))

    def verify_audit_chain(self) -> int:
        """
        Returns:
            Number of records verified

        Raises:
            AuditChainBroken: If any record was tampered with
        """
        self.refresh()
        return self.audit_trail.verify_chain()
