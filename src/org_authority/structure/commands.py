"""
Structure Commands - Intentions to change the organizational tree

Commands can fail (invariant violations); the events they produce cannot.
Optional fields on update commands mean "leave unchanged".
"""

from pydantic import BaseModel, Field

from org_authority.structure.models import OrganizationType


# Organization Commands


class CreateOrganization(BaseModel):
    """Create an organization, optionally under a parent organization"""

    name: str = Field(..., min_length=1, max_length=200)
    organization_type: OrganizationType
    parent_id: str | None = None


class UpdateOrganization(BaseModel):
    """
    Rename, retype or move an organization

    Moving sets parent_id; detaching to a root requires detach=True since
    parent_id=None means "unchanged".
    """

    organization_id: str
    name: str | None = Field(default=None, min_length=1, max_length=200)
    organization_type: OrganizationType | None = None
    parent_id: str | None = None
    detach: bool = False


class DeleteOrganization(BaseModel):
    organization_id: str


# Sector Commands


class CreateSector(BaseModel):
    """Create a sector under a head-office organization"""

    name: str = Field(..., min_length=1, max_length=200)
    organization_id: str


class RenameSector(BaseModel):
    sector_id: str
    name: str = Field(..., min_length=1, max_length=200)


class DeleteSector(BaseModel):
    sector_id: str


# Department Commands


class CreateDepartment(BaseModel):
    """Create a department owned by an organization, optionally in one of its sectors"""

    name: str = Field(..., min_length=1, max_length=200)
    organization_id: str
    sector_id: str | None = None


class UpdateDepartment(BaseModel):
    """Rename a department or move it between sectors of the same organization"""

    department_id: str
    name: str | None = Field(default=None, min_length=1, max_length=200)
    sector_id: str | None = None
    clear_sector: bool = False


class DeleteDepartment(BaseModel):
    department_id: str


# Team Commands


class CreateTeam(BaseModel):
    """Create a team; the leader, if given, becomes a member in the same event"""

    name: str = Field(..., min_length=1, max_length=200)
    department_id: str
    team_leader_id: str | None = None


class RenameTeam(BaseModel):
    team_id: str
    name: str = Field(..., min_length=1, max_length=200)


class AddTeamMember(BaseModel):
    """Add a user to a team, moving them out of any other team"""

    team_id: str
    user_id: str


class RemoveTeamMember(BaseModel):
    team_id: str
    user_id: str


class AssignTeamLeader(BaseModel):
    """Make a user the team leader (adding them as a member if needed)"""

    team_id: str
    user_id: str


class DeleteTeam(BaseModel):
    team_id: str
