"""
Structure Domain Models - The four-level organizational tree

Organization -> Sector -> Department -> Team. Organizations additionally nest
under each other (head office -> branch -> subcity -> woreda) through
parent_id.

Fun fact: only head offices have sectors. A branch's departments hang
directly off the branch, which is why department.sector_id is optional.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class OrganizationType(str, Enum):
    """Kind of organization, from the national head office down to a woreda office"""

    HEAD_OFFICE = "head_office"
    BRANCH = "branch"
    SUBCITY = "subcity"
    WOREDA = "woreda"


class Organization(BaseModel):
    """
    A node in the organization tree

    Attributes:
        organization_id: Unique identifier
        name: Human-readable name
        organization_type: head_office, branch, subcity or woreda
        parent_id: Parent organization (None for a root)
        created_at: When the organization was created
    """

    organization_id: str
    name: str
    organization_type: OrganizationType
    parent_id: str | None = None
    created_at: datetime

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "organization_id": "org-1",
                    "name": "Head Office",
                    "organization_type": "head_office",
                    "parent_id": None,
                    "created_at": "2025-01-15T10:00:00Z",
                }
            ]
        }
    }


class Sector(BaseModel):
    """A sector of a head-office organization"""

    sector_id: str
    name: str
    organization_id: str
    created_at: datetime


class Department(BaseModel):
    """
    A department, owned by an organization and optionally grouped in a sector

    When sector_id is set, organization_id always equals the sector's
    organization.
    """

    department_id: str
    name: str
    organization_id: str
    sector_id: str | None = None
    created_at: datetime


class Team(BaseModel):
    """
    A team inside a department

    The organization is derived from the department. The team leader, when
    set, is always one of the members.
    """

    team_id: str
    name: str
    department_id: str
    organization_id: str
    team_leader_id: str | None = None
    members: list[str] = Field(default_factory=list)
    created_at: datetime

    def with_member(self, user_id: str) -> "Team":
        """Copy of the team with user_id added (members stay sorted)"""
        return self.model_copy(update={"members": sorted(set(self.members) | {user_id})})

    def without_member(self, user_id: str) -> "Team":
        """Copy of the team with user_id removed; clears the leader if it was them"""
        leader = None if self.team_leader_id == user_id else self.team_leader_id
        return self.model_copy(
            update={
                "members": [m for m in self.members if m != user_id],
                "team_leader_id": leader,
            }
        )
