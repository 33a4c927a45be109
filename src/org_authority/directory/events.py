"""
Directory Events - Facts about users, roles and permissions

Like structure events, created/updated events carry the whole record.
"""

from datetime import datetime

from pydantic import BaseModel

from org_authority.directory.models import Permission, Role, User


# User Events


class UserRegistered(BaseModel):
    user: User


class UserUpdated(BaseModel):
    """Profile, placement, reporting line, managed entities or roles changed"""

    user: User


class UserDeleted(BaseModel):
    user_id: str
    deleted_at: datetime


# Role Events


class RoleCreated(BaseModel):
    role: Role


class RoleUpdated(BaseModel):
    role: Role


class RoleDeleted(BaseModel):
    role_id: str
    deleted_at: datetime


# Permission Events


class PermissionCreated(BaseModel):
    permission: Permission


class PermissionDeleted(BaseModel):
    permission_id: str
    deleted_at: datetime
