"""
Directory Commands - Intentions to change users, roles and permissions
"""

from pydantic import BaseModel, Field

from org_authority.directory.models import AccessLevel, Action, UserStatus


# User Commands


class RegisterUser(BaseModel):
    """
    Register a user, optionally placed in the tree

    The most specific placement given implies its ancestors: a team implies
    its department, a department its sector (if any) and organization.
    """

    full_name: str = Field(..., min_length=1, max_length=200)
    email: str | None = None
    access_level: AccessLevel = AccessLevel.PUBLIC
    organization_id: str | None = None
    sector_id: str | None = None
    department_id: str | None = None
    team_id: str | None = None
    status: UserStatus = UserStatus.PENDING


class UpdateUser(BaseModel):
    """Change profile, access level or status (None leaves a field unchanged)"""

    user_id: str
    full_name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = None
    access_level: AccessLevel | None = None
    status: UserStatus | None = None


class PlaceUser(BaseModel):
    """Replace a user's placement in the tree (all four fields at once)"""

    user_id: str
    organization_id: str | None = None
    sector_id: str | None = None
    department_id: str | None = None
    team_id: str | None = None


class SetReportsTo(BaseModel):
    """Set or clear (manager_id=None) a user's direct manager"""

    user_id: str
    manager_id: str | None = None


class AssignManagedEntities(BaseModel):
    """Replace the departments and teams explicitly assigned to a user"""

    user_id: str
    department_ids: list[str] = Field(default_factory=list)
    team_ids: list[str] = Field(default_factory=list)


class AssignRole(BaseModel):
    user_id: str
    role_id: str


class UnassignRole(BaseModel):
    user_id: str
    role_id: str


class DeleteUser(BaseModel):
    user_id: str


# Role Commands


class CreateRole(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    permission_ids: list[str] = Field(default_factory=list)


class UpdateRole(BaseModel):
    """Rename a role or replace its permission set (None leaves a field unchanged)"""

    role_id: str
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    permission_ids: list[str] | None = None


class DeleteRole(BaseModel):
    role_id: str


# Permission Commands


class CreatePermission(BaseModel):
    resource: str = Field(..., min_length=1, max_length=100)
    action: Action
    description: str | None = None


class DeletePermission(BaseModel):
    permission_id: str
