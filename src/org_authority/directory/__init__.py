"""
Directory Module - Users, roles and permissions
"""

from org_authority.directory.models import (
    AccessLevel,
    Action,
    Permission,
    Role,
    User,
    UserOrganizationType,
    UserStatus,
)

__all__ = [
    "AccessLevel",
    "Action",
    "Permission",
    "Role",
    "User",
    "UserOrganizationType",
    "UserStatus",
]
