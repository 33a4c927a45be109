"""
Directory Handlers - Command -> Event transformation for users and roles

All directory writes land on the same stream as the structure, so a
placement can never race the deletion of the department it points at.
"""

from org_authority.authority.visibility import field_visibility
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory import invariants
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
from org_authority.directory.events import (
    PermissionCreated,
    PermissionDeleted,
    RoleCreated,
    RoleDeleted,
    RoleUpdated,
    UserDeleted,
    UserRegistered,
    UserUpdated,
)
from org_authority.directory.models import Permission, Role, User
from org_authority.directory.projections import RoleRegistry, UserDirectory
from org_authority.kernel.errors import HasDependents
from org_authority.kernel.events import DIRECTORY_STREAM, Event, StreamEvents
from org_authority.kernel.ids import IdFactory
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import Clock
from org_authority.structure.events import TeamUpdated
from org_authority.structure.projections import StructureRegistry


class DirectoryCommandHandlers:
    """Command handlers for users, roles and permissions"""

    def __init__(self, clock: Clock, policy: AuthorityPolicy, id_factory: IdFactory) -> None:
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

    def _updated(
        self, user: User, command_id: str, actor_id: str | None, version: int, **updates
    ) -> list[Event]:
        stream = self._stream(command_id, actor_id, version)
        stream.emit("UserUpdated", UserUpdated(user=user.model_copy(update=updates)))
        return stream.events

    def _sync_membership(self, user: User, registry: StructureRegistry, stream: StreamEvents) -> None:
        """
        Make team membership follow the user's placed team

        Only levels that see the team field are placed in teams; for the
        others membership is managed through the team operations alone.
        """
        if not field_visibility(user.access_level).team:
            return

        previous = registry.team_of_member(user.user_id)
        if previous is not None and previous.team_id != user.team_id:
            stream.emit("TeamUpdated", TeamUpdated(team=previous.without_member(user.user_id)))
        if user.team_id is not None:
            team = registry.require_team(user.team_id)
            if user.user_id not in team.members:
                stream.emit("TeamUpdated", TeamUpdated(team=team.with_member(user.user_id)))

    # Users

    def handle_register_user(
        self,
        command: RegisterUser,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        version: int,
    ) -> list[Event]:
        """
        Handle RegisterUser command

        Raises:
            InvalidPlacement: Placement field hidden for the access level
            NotFound: Unknown organization/sector/department/team
            OwnerMismatch: Inconsistent placement ids
        """
        placement = invariants.normalize_placement(
            registry,
            command.access_level,
            organization_id=command.organization_id,
            sector_id=command.sector_id,
            department_id=command.department_id,
            team_id=command.team_id,
        )

        stream = self._stream(command_id, actor_id, version)
        user = User(
            user_id=self.id_factory.generate("usr"),
            full_name=command.full_name,
            email=command.email,
            access_level=command.access_level,
            status=command.status,
            created_at=stream.occurred_at,
            **placement.model_dump(),
        )
        stream.emit("UserRegistered", UserRegistered(user=user))
        self._sync_membership(user, registry, stream)
        return stream.events

    def handle_update_user(
        self,
        command: UpdateUser,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Update profile fields, access level or status

        A new access level re-validates the existing placement against the
        visibility table for that level. A team member moving to a level
        that sees the team field is placed in their team.

        Raises:
            NotFound: Unknown user
            InvalidPlacement: Current placement does not fit the new level
        """
        user = users.require(command.user_id)
        updates = command.model_dump(exclude={"user_id"}, exclude_none=True)

        if command.access_level is not None and command.access_level != user.access_level:
            invariants.normalize_placement(
                registry,
                command.access_level,
                organization_id=user.organization_id,
                sector_id=user.sector_id,
                department_id=user.department_id,
                team_id=user.team_id,
            )
            member_of = registry.team_of_member(user.user_id)
            if (
                member_of is not None
                and user.team_id != member_of.team_id
                and field_visibility(command.access_level).team
            ):
                placement = invariants.normalize_placement(
                    registry, command.access_level, team_id=member_of.team_id
                )
                updates.update(placement.model_dump())

        return self._updated(user, command_id, actor_id, version, **updates)

    def handle_place_user(
        self,
        command: PlaceUser,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Move a user; placing them in a team makes them its member

        Raises:
            NotFound, InvalidPlacement, OwnerMismatch
        """
        user = users.require(command.user_id)
        placement = invariants.normalize_placement(
            registry,
            user.access_level,
            organization_id=command.organization_id,
            sector_id=command.sector_id,
            department_id=command.department_id,
            team_id=command.team_id,
        )

        stream = self._stream(command_id, actor_id, version)
        placed = user.model_copy(update=placement.model_dump())
        stream.emit("UserUpdated", UserUpdated(user=placed))
        self._sync_membership(placed, registry, stream)
        return stream.events

    def handle_set_reports_to(
        self,
        command: SetReportsTo,
        command_id: str,
        actor_id: str | None,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        """
        Set or clear a user's manager

        Raises:
            NotFound: Unknown user or manager
            ReportingCycle: The link would close a loop
            InsufficientRank: Manager does not outrank the user
        """
        user = users.require(command.user_id)
        if command.manager_id is not None:
            manager = users.require(command.manager_id)
            invariants.validate_reports_to(users, user, manager, self.policy)

        return self._updated(
            user, command_id, actor_id, version, reports_to_id=command.manager_id
        )

    def handle_assign_managed_entities(
        self,
        command: AssignManagedEntities,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        user = users.require(command.user_id)
        invariants.validate_managed_entities(registry, command.department_ids, command.team_ids)
        return self._updated(
            user,
            command_id,
            actor_id,
            version,
            managed_department_ids=sorted(set(command.department_ids)),
            managed_team_ids=sorted(set(command.team_ids)),
        )

    def handle_assign_role(
        self,
        command: AssignRole,
        command_id: str,
        actor_id: str | None,
        users: UserDirectory,
        roles: RoleRegistry,
        version: int,
    ) -> list[Event]:
        user = users.require(command.user_id)
        roles.require_role(command.role_id)
        return self._updated(
            user,
            command_id,
            actor_id,
            version,
            role_ids=sorted(set(user.role_ids) | {command.role_id}),
        )

    def handle_unassign_role(
        self,
        command: UnassignRole,
        command_id: str,
        actor_id: str | None,
        users: UserDirectory,
        version: int,
    ) -> list[Event]:
        user = users.require(command.user_id)
        return self._updated(
            user,
            command_id,
            actor_id,
            version,
            role_ids=[r for r in user.role_ids if r != command.role_id],
        )

    def handle_delete_user(
        self,
        command: DeleteUser,
        command_id: str,
        actor_id: str | None,
        registry: StructureRegistry,
        users: UserDirectory,
        ledger: DelegationLedger,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown user
            HasDependents: Users still report to them, they are in a team,
                or they are party to an active delegation
        """
        users.require(command.user_id)
        dependents = invariants.user_dependents(users, registry, ledger, command.user_id, self.clock.now())
        if dependents:
            raise HasDependents("User", command.user_id, dependents)

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "UserDeleted", UserDeleted(user_id=command.user_id, deleted_at=stream.occurred_at)
        )
        return stream.events

    # Roles

    def handle_create_role(
        self,
        command: CreateRole,
        command_id: str,
        actor_id: str | None,
        roles: RoleRegistry,
        version: int,
    ) -> list[Event]:
        for permission_id in command.permission_ids:
            roles.require_permission(permission_id)

        stream = self._stream(command_id, actor_id, version)
        role = Role(
            role_id=self.id_factory.generate("role"),
            name=command.name,
            description=command.description,
            permission_ids=sorted(set(command.permission_ids)),
            created_at=stream.occurred_at,
        )
        stream.emit("RoleCreated", RoleCreated(role=role))
        return stream.events

    def handle_update_role(
        self,
        command: UpdateRole,
        command_id: str,
        actor_id: str | None,
        roles: RoleRegistry,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            NotFound: Unknown role or permission
        """
        role = roles.require_role(command.role_id)
        updates = command.model_dump(exclude={"role_id", "permission_ids"}, exclude_none=True)
        if command.permission_ids is not None:
            for permission_id in command.permission_ids:
                roles.require_permission(permission_id)
            updates["permission_ids"] = sorted(set(command.permission_ids))

        stream = self._stream(command_id, actor_id, version)
        stream.emit("RoleUpdated", RoleUpdated(role=role.model_copy(update=updates)))
        return stream.events

    def handle_delete_role(
        self,
        command: DeleteRole,
        command_id: str,
        actor_id: str | None,
        users: UserDirectory,
        roles: RoleRegistry,
        version: int,
    ) -> list[Event]:
        roles.require_role(command.role_id)
        invariants.ensure_role_unused(users, command.role_id)

        stream = self._stream(command_id, actor_id, version)
        stream.emit("RoleDeleted", RoleDeleted(role_id=command.role_id, deleted_at=stream.occurred_at))
        return stream.events

    # Permissions

    def handle_create_permission(
        self,
        command: CreatePermission,
        command_id: str,
        actor_id: str | None,
        roles: RoleRegistry,
        version: int,
    ) -> list[Event]:
        """
        Raises:
            DuplicatePermission: (resource, action) already in the catalogue
        """
        invariants.validate_unique_permission(roles, command.resource, command.action.value)

        stream = self._stream(command_id, actor_id, version)
        permission = Permission(
            permission_id=self.id_factory.generate("perm"),
            resource=command.resource,
            action=command.action,
            description=command.description,
            created_at=stream.occurred_at,
        )
        stream.emit("PermissionCreated", PermissionCreated(permission=permission))
        return stream.events

    def handle_delete_permission(
        self,
        command: DeletePermission,
        command_id: str,
        actor_id: str | None,
        roles: RoleRegistry,
        version: int,
    ) -> list[Event]:
        roles.require_permission(command.permission_id)
        invariants.ensure_permission_unused(roles, command.permission_id)

        stream = self._stream(command_id, actor_id, version)
        stream.emit(
            "PermissionDeleted",
            PermissionDeleted(permission_id=command.permission_id, deleted_at=stream.occurred_at),
        )
        return stream.events
