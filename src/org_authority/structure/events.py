"""
Structure Events - Facts about the organizational tree

Created/updated events carry the full record after the change, so
projections replace rather than patch and audit snapshots come straight
from the payload.
"""

from datetime import datetime

from pydantic import BaseModel

from org_authority.structure.models import Department, Organization, Sector, Team


# Organization Events


class OrganizationCreated(BaseModel):
    organization: Organization


class OrganizationUpdated(BaseModel):
    """An organization was renamed, retyped or moved"""

    organization: Organization


class OrganizationDeleted(BaseModel):
    organization_id: str
    deleted_at: datetime


# Sector Events


class SectorCreated(BaseModel):
    sector: Sector


class SectorUpdated(BaseModel):
    sector: Sector


class SectorDeleted(BaseModel):
    sector_id: str
    deleted_at: datetime


# Department Events


class DepartmentCreated(BaseModel):
    department: Department


class DepartmentUpdated(BaseModel):
    department: Department


class DepartmentDeleted(BaseModel):
    department_id: str
    deleted_at: datetime


# Team Events


class TeamCreated(BaseModel):
    """A team was created (with its leader already among the members)"""

    team: Team


class TeamUpdated(BaseModel):
    """Team renamed, or its membership/leader changed"""

    team: Team


class TeamDeleted(BaseModel):
    team_id: str
    deleted_at: datetime
