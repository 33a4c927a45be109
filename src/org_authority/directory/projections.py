"""
Directory Projections - Users, roles and permissions as read models
"""

from typing import Any

from org_authority.directory.models import Permission, Role, User
from org_authority.kernel.errors import CorruptHierarchy, NotFound
from org_authority.kernel.events import Event


class UserDirectory:
    """
    Projection: all users by id

    The manager chain walks this arena by id; nothing holds references
    between user objects.
    """

    def __init__(self) -> None:
        self.users: dict[str, User] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        if event.event_type in ("UserRegistered", "UserUpdated"):
            user = User.model_validate(event.payload["user"])
            self.users[user.user_id] = user
        elif event.event_type == "UserDeleted":
            self.users.pop(event.payload["user_id"], None)

    def get(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    def require(self, user_id: str) -> User:
        """Get user by ID or raise NotFound"""
        user = self.users.get(user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    def all(self) -> list[User]:
        """All users sorted by id"""
        return [self.users[k] for k in sorted(self.users)]

    def reporting_chain_ids(self, user_id: str) -> list[str]:
        """
        Walk reports_to links upward from user_id (the user not included)

        Iterative with a visited set over the id-indexed arena.

        Raises:
            NotFound: If user_id is unknown
            CorruptHierarchy: On a revisit or a dangling manager reference
        """
        user = self.require(user_id)
        chain: list[str] = []
        visited = {user_id}
        current = user.reports_to_id

        while current is not None:
            if current in visited:
                raise CorruptHierarchy("reporting", [user_id, *chain, current], reason="cycle")
            manager = self.users.get(current)
            if manager is None:
                raise CorruptHierarchy(
                    "reporting", [user_id, *chain, current], reason="dangling manager"
                )
            visited.add(current)
            chain.append(current)
            current = manager.reports_to_id

        return chain

    def direct_reports(self, manager_id: str) -> list[User]:
        return [u for u in self.all() if u.reports_to_id == manager_id]

    def holders_of_role(self, role_id: str) -> list[User]:
        return [u for u in self.all() if role_id in u.role_ids]

    def to_dict(self) -> dict[str, Any]:
        return {"users": {k: v.model_dump(mode="json") for k, v in self.users.items()}}


class RoleRegistry:
    """
    Projection: roles and the permission catalogue

    Resolves a user's role ids into the concrete (resource, action) grants
    the authority model checks against.
    """

    def __init__(self) -> None:
        self.roles: dict[str, Role] = {}
        self.permissions: dict[str, Permission] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload
        if event.event_type in ("RoleCreated", "RoleUpdated"):
            role = Role.model_validate(payload["role"])
            self.roles[role.role_id] = role
        elif event.event_type == "RoleDeleted":
            self.roles.pop(payload["role_id"], None)
        elif event.event_type == "PermissionCreated":
            permission = Permission.model_validate(payload["permission"])
            self.permissions[permission.permission_id] = permission
        elif event.event_type == "PermissionDeleted":
            self.permissions.pop(payload["permission_id"], None)

    def get_role(self, role_id: str) -> Role | None:
        return self.roles.get(role_id)

    def require_role(self, role_id: str) -> Role:
        role = self.roles.get(role_id)
        if role is None:
            raise NotFound("Role", role_id)
        return role

    def require_permission(self, permission_id: str) -> Permission:
        permission = self.permissions.get(permission_id)
        if permission is None:
            raise NotFound("Permission", permission_id)
        return permission

    def find_permission(self, resource: str, action: str) -> Permission | None:
        """Look up the catalogue entry for (resource, action), case-insensitively"""
        for permission in self.permissions.values():
            if permission.matches(resource, action):
                return permission
        return None

    def roles_of(self, user: User) -> list[Role]:
        """Roles the user holds that still exist"""
        return [self.roles[r] for r in user.role_ids if r in self.roles]

    def permissions_of(self, user: User) -> list[Permission]:
        """Every permission granted to the user through their roles (deduplicated)"""
        seen: dict[str, Permission] = {}
        for role in self.roles_of(user):
            for permission_id in role.permission_ids:
                permission = self.permissions.get(permission_id)
                if permission is not None:
                    seen[permission_id] = permission
        return [seen[k] for k in sorted(seen)]

    def roles_granting(self, permission_id: str) -> list[Role]:
        return sorted(
            (r for r in self.roles.values() if permission_id in r.permission_ids),
            key=lambda r: r.role_id,
        )

    def list_roles(self) -> list[Role]:
        return [self.roles[k] for k in sorted(self.roles)]

    def list_permissions(self) -> list[Permission]:
        return sorted(self.permissions.values(), key=lambda p: (p.resource.lower(), p.action.value))
