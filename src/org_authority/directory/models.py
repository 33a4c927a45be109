"""
Directory Domain Models - Users, roles and permissions

Users are placed in the organizational tree; roles bundle permissions;
permissions are (resource, action) pairs. Delegated authority is not on
this page on purpose - it is read from the delegation ledger.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class AccessLevel(str, Enum):
    """
    Fixed access levels, highest first

    The rank and scope kind of each level live in authority.access_levels;
    the enum only names them.
    """

    SUPER_ADMIN = "super_admin"
    MANAGER = "manager"
    DEPUTY = "deputy"
    BRANCH_ADMIN = "branch_admin"
    DIRECTORATE = "directorate"
    SECTOR_LEAD = "sector_lead"
    TEAM_LEADER = "team_leader"
    EXPERT = "expert"
    PUBLIC = "public"


class UserOrganizationType(str, Enum):
    """Where a user sits: the head office, or anywhere else (branch)"""

    HEAD_OFFICE = "head_office"
    BRANCH = "branch"


class UserStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(BaseModel):
    """
    A person in the directory

    Attributes:
        user_id: Unique identifier
        full_name: Display name
        email: Contact address (optional, never logged)
        access_level: Fixed access level
        organization_type: Derived from the organization the user is placed in
        organization_id/sector_id/department_id/team_id: Placement in the tree
        reports_to_id: Direct manager
        managed_department_ids: Departments explicitly assigned to the user
        managed_team_ids: Teams explicitly assigned to the user
        role_ids: Roles held
        status: Account status
    """

    user_id: str
    full_name: str
    email: str | None = None
    access_level: AccessLevel
    organization_type: UserOrganizationType = UserOrganizationType.BRANCH
    organization_id: str | None = None
    sector_id: str | None = None
    department_id: str | None = None
    team_id: str | None = None
    reports_to_id: str | None = None
    managed_department_ids: list[str] = Field(default_factory=list)
    managed_team_ids: list[str] = Field(default_factory=list)
    role_ids: list[str] = Field(default_factory=list)
    status: UserStatus = UserStatus.PENDING
    created_at: datetime

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "usr-1",
                    "full_name": "Abebe Kebede",
                    "email": "abebe@example.et",
                    "access_level": "directorate",
                    "organization_type": "head_office",
                    "organization_id": "org-1",
                    "sector_id": "sec-1",
                    "department_id": "dept-1",
                    "status": "active",
                    "created_at": "2025-01-15T10:00:00Z",
                }
            ]
        }
    }


class Action(str, Enum):
    """Actions a permission can grant"""

    CREATE = "create"
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"


class Permission(BaseModel):
    """
    A grantable (resource, action) pair

    Resources are free-form names ("User", "Team", "Report"); comparison is
    case-insensitive everywhere.
    """

    permission_id: str
    resource: str
    action: Action
    description: str | None = None
    created_at: datetime

    def matches(self, resource: str, action: str) -> bool:
        return self.resource.lower() == resource.lower() and self.action.value == action.lower()


class Role(BaseModel):
    """A named bundle of permissions"""

    role_id: str
    name: str
    description: str | None = None
    permission_ids: list[str] = Field(default_factory=list)
    created_at: datetime
