"""
Structure Handlers - Command -> Event transformation for the tree

Handlers:
1. Read current state (from projections)
2. Validate invariants
3. Emit events for the directory stream

Fun fact: Handlers should be "almost boring" - all the interesting
logic is in invariants (testable) and projections (rebuildable).
"""

from org_authority.authority.visibility import field_visibility
from org_authority.directory.events import UserUpdated
from org_authority.directory.invariants import normalize_placement
from org_authority.directory.models import User
from org_authority.directory.projections import UserDirectory
from org_authority.kernel.errors import NotFound
from org_authority.kernel.events import DIRECTORY_STREAM, Event, StreamEvents
from org_authority.kernel.ids import IdFactory
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import Clock
from org_authority.structure import invariants
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
from org_authority.structure.events import (
    DepartmentCreated,
    DepartmentDeleted,
    DepartmentUpdated,
    OrganizationCreated,
    OrganizationDeleted,
    OrganizationUpdated,
    SectorCreated,
    SectorDeleted,
    SectorUpdated,
    TeamCreated,
    TeamDeleted,
    TeamUpdated,
)
from org_authority.structure.models import Department, Organization, Sector, Team
from org_authority.structure.projections import StructureRegistry


class StructureCommandHandlers:
    """
    Command handlers for the structure module

    Every handler receives the directory stream version its decision is
    based on; the emitted events continue from it.
    """

    def __init__(self, clock: Clock, policy: AuthorityPolicy, id_factory: IdFactory) -> None:
        """
        Args:
            clock: For timestamps (injectable for testing)
            policy: Depth bound and other tunables
            id_factory: Entity and event id generation
        """
        self.clock = clock
        self.policy = policy
        self.id_factory = id_factory

    def _stream(self, command_id: str, actor_id: str | None, version: int) -> StreamEvents:
        return StreamEvents(
            stream_id=DIRECTORY_STREAM,
            stream_type="directory",
            version=version,
            occurred_at=self.clock.now(),
            command_id=command_id,
            actor_id=actor_id,
            id_factory=self.id_factory,
        )

    # Organizations

    def handle_create_organization(
        self,
        command: CreateOrganization,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        """
        Handle CreateOrganization command

        Raises:
            InvalidParent: If parent_id names no organization
            HierarchyTooDeep: If the new organization would be too deep
            CorruptHierarchy: If the parent chain is broken
        """
        if command.parent_id is not None:
            invariants.validate_new_parent(registry, command.parent_id, self.policy)

        stream = self._stream(command_id, actor_id, version)
        organization = Organization(
            organization_id=self.id_factory.generate("org"),
            name=command.name,
            organization_type=command.organization_type,
            parent_id=command.parent_id,
            created_at=stream.occurred_at,
        )
        stream.emit("OrganizationCreated", OrganizationCreated(organization=organization))
        return stream.events

    def handle_update_organization(
        self,
        command: UpdateOrganization,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        """
        Handle UpdateOrganization command

        Validates:
        - A move never lands under the organization itself or a descendant
        - The moved subtree respects the depth bound
        - Organizations owning sectors stay head offices

        Raises:
            NotFound, InvalidParent, HierarchyTooDeep, InvalidOwnerType
        """
        organization = registry.require_organization(command.organization_id)
        updates: dict = {}

        if command.name is not None:
            updates["name"] = command.name

        if command.organization_type is not None:
            invariants.validate_type_change(registry, organization, command.organization_type)
            updates["organization_type"] = command.organization_type

        if command.detach:
            updates["parent_id"] = None
        elif command.parent_id is not None and command.parent_id != organization.parent_id:
            invariants.validate_move(
                registry, organization.organization_id, command.parent_id, self.policy
            )
            updates["parent_id"] = command.parent_id

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "OrganizationUpdated",
            OrganizationUpdated(organization=organization.model_copy(update=updates)),
        )
        return stream.events

    def handle_delete_organization(
        self,
        command: DeleteOrganization,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown organization
            HasDependents: Child organizations, sectors, departments, teams or users remain
        """
        registry.require_organization(command.organization_id)
        invariants.ensure_no_dependents(
            "Organization",
            command.organization_id,
            invariants.organization_dependents(registry, users.all(), command.organization_id),
        )

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "OrganizationDeleted",
            OrganizationDeleted(
                organization_id=command.organization_id, deleted_at=stream.occurred_at
            ),
        )
        return stream.events

    # Sectors

    def handle_create_sector(
        self,
        command: CreateSector,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown organization
            InvalidOwnerType: Organization is not a head office
        """
        organization = registry.require_organization(command.organization_id)
        invariants.validate_sector_owner(organization)

        stream = self._stream(command_id, actor_id, version)
        sector = Sector(
            sector_id=self.id_factory.generate("sec"),
            name=command.name,
            organization_id=organization.organization_id,
            created_at=stream.occurred_at,
        )
        stream.emit("SectorCreated", SectorCreated(sector=sector))
        return stream.events

    def handle_rename_sector(
        self,
        command: RenameSector,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        sector = registry.require_sector(command.sector_id)
        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "SectorUpdated", SectorUpdated(sector=sector.model_copy(update={"name": command.name}))
        )
        return stream.events

    def handle_delete_sector(
        self,
        command: DeleteSector,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        registry.require_sector(command.sector_id)
        invariants.ensure_no_dependents(
            "Sector",
            command.sector_id,
            invariants.sector_dependents(registry, users.all(), command.sector_id),
        )

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "SectorDeleted", SectorDeleted(sector_id=command.sector_id, deleted_at=stream.occurred_at)
        )
        return stream.events

    # Departments

    def handle_create_department(
        self,
        command: CreateDepartment,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown organization or sector
            OwnerMismatch: The sector belongs to another organization
        """
        registry.require_organization(command.organization_id)
        sector = registry.require_sector(command.sector_id) if command.sector_id else None
        invariants.validate_department_owner(command.organization_id, sector)

        stream = self._stream(command_id, actor_id, version)
        department = Department(
            department_id=self.id_factory.generate("dept"),
            name=command.name,
            organization_id=command.organization_id,
            sector_id=command.sector_id,
            created_at=stream.occurred_at,
        )
        stream.emit("DepartmentCreated", DepartmentCreated(department=department))
        return stream.events

    def handle_update_department(
        self,
        command: UpdateDepartment,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        """
        Rename a department or move it to another sector of its organization

        Raises:
            NotFound: Unknown department or sector
            OwnerMismatch: The new sector belongs to another organization
        """
        department = registry.require_department(command.department_id)
        updates: dict = {}

        if command.name is not None:
            updates["name"] = command.name

        if command.clear_sector:
            updates["sector_id"] = None
        elif command.sector_id is not None:
            sector = registry.require_sector(command.sector_id)
            invariants.validate_department_owner(department.organization_id, sector)
            updates["sector_id"] = sector.sector_id

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "DepartmentUpdated",
            DepartmentUpdated(department=department.model_copy(update=updates)),
        )
        return stream.events

    def handle_delete_department(
        self,
        command: DeleteDepartment,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown department
            HasDependents: Teams, placed users or managers still reference it
        """
        department = registry.require_department(command.department_id)
        invariants.ensure_no_dependents(
            "Department",
            department.department_id,
            invariants.department_dependents(registry, users.all(), department),
        )

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "DepartmentDeleted",
            DepartmentDeleted(department_id=department.department_id, deleted_at=stream.occurred_at),
        )
        return stream.events

    # Teams

    def handle_create_team(
        self,
        command: CreateTeam,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Create a team; a leader joins as member in the same event

        A leader already in another team is moved out of it, and a leader
        whose level shows the team field is placed in the new team.

        Raises:
            NotFound: Unknown department or leader
        """
        department = registry.require_department(command.department_id)
        stream = self._stream(command_id, actor_id, version)

        team = Team(
            team_id=self.id_factory.generate("team"),
            name=command.name,
            department_id=department.department_id,
            organization_id=department.organization_id,
            created_at=stream.occurred_at,
        )
        leader: User | None = None
        previous: Team | None = None
        if command.team_leader_id is not None:
            leader = users.require(command.team_leader_id)
            previous = registry.team_of_member(leader.user_id)
            team = team.with_member(leader.user_id).model_copy(update={"team_leader_id": leader.user_id})

        stream.emit("TeamCreated", TeamCreated(team=team))
        if leader is not None:
            if previous is not None:
                stream.emit("TeamUpdated", TeamUpdated(team=previous.without_member(leader.user_id)))
            self._mirror_placement(leader, team, registry, stream)
        return stream.events

    def handle_rename_team(
        self,
        command: RenameTeam,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        team = registry.require_team(command.team_id)
        stream = self._stream(command_id, actor_id, version)
        stream.emit("TeamUpdated", TeamUpdated(team=team.model_copy(update={"name": command.name})))
        return stream.events

    def _mirror_placement(
        self,
        user: User,
        team: Team | None,
        registry: StructureRegistry,
        stream: StreamEvents,
    ) -> None:
        """
        Keep the user's placed team equal to the team they are a member of

        Levels that cannot see the team field never carry one; their
        membership is the only record.
        """
        team_id = team.team_id if team is not None else None
        if user.team_id == team_id or not field_visibility(user.access_level).team:
            return

        updates: dict[str, object] = {"team_id": None}
        if team is not None:
            # The team may not be in the registry yet (created in this command)
            placement = normalize_placement(registry, user.access_level, department_id=team.department_id)
            updates = {**placement.model_dump(), "team_id": team.team_id}
        stream.emit("UserUpdated", UserUpdated(user=user.model_copy(update=updates)))

    def _join(
        self,
        team: Team,
        user: User,
        registry: StructureRegistry,
        stream: StreamEvents,
        as_leader: bool,
    ) -> None:
        # Target team first: callers read the audited "after" from the first event
        joined = team.with_member(user.user_id)
        if as_leader:
            joined = joined.model_copy(update={"team_leader_id": user.user_id})
        stream.emit("TeamUpdated", TeamUpdated(team=joined))

        previous = registry.team_of_member(user.user_id)
        if previous is not None and previous.team_id != team.team_id:
            stream.emit("TeamUpdated", TeamUpdated(team=previous.without_member(user.user_id)))

        self._mirror_placement(user, team, registry, stream)

    def handle_add_team_member(
        self,
        command: AddTeamMember,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Add a member, moving them out of their previous team

        Raises:
            NotFound: Unknown team or user
        """
        team = registry.require_team(command.team_id)
        user = users.require(command.user_id)

        stream = self._stream(command_id, actor_id, version)
        self._join(team, user, registry, stream, as_leader=False)
        return stream.events

    def handle_remove_team_member(
        self,
        command: RemoveTeamMember,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Remove a member; removing the leader clears the leader in the same event

        A user placed in the team loses that placement too.

        Raises:
            NotFound: Unknown team, or the user is not a member
        """
        team = registry.require_team(command.team_id)
        if command.user_id not in team.members:
            raise NotFound("Team member", command.user_id)

        stream = self._stream(command_id, actor_id, version)
        stream.emit("TeamUpdated", TeamUpdated(team=team.without_member(command.user_id)))
        user = users.get(command.user_id)
        if user is not None and user.team_id == team.team_id:
            self._mirror_placement(user, None, registry, stream)
        return stream.events

    def handle_assign_team_leader(
        self,
        command: AssignTeamLeader,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown team or user
        """
        team = registry.require_team(command.team_id)
        user = users.require(command.user_id)

        stream = self._stream(command_id, actor_id, version)
        self._join(team, user, registry, stream, as_leader=True)
        return stream.events

    def handle_delete_team(
        self,
        command: DeleteTeam,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown team
            HasDependents: Users are placed in or manage the team
        """
        registry.require_team(command.team_id)
        invariants.ensure_no_dependents(
            "Team", command.team_id, invariants.team_dependents(users.all(), command.team_id)
        )

        stream = self._stream(command_id, actor_id, version)
        stream.emit("TeamDeleted", TeamDeleted(team_id=command.team_id, deleted_at=stream.occurred_at))
        return stream.events
