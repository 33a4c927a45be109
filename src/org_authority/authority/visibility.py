"""
Field Visibility - which placement fields apply to which access level

The same table drives two things: which fields a user form shows, and
which placement fields a user of that level may have filled in.
"""

from pydantic import BaseModel

from org_authority.directory.models import AccessLevel


class FieldVisibility(BaseModel):
    organization: bool
    sector: bool
    department: bool
    team: bool

    model_config = {"frozen": True}

    def hidden_fields(self) -> list[str]:
        return [name for name, shown in self.model_dump().items() if not shown]


_ORGANIZATION_ONLY = FieldVisibility(organization=True, sector=False, department=False, team=False)
_THROUGH_DEPARTMENT = FieldVisibility(organization=True, sector=True, department=True, team=False)
_ALL_FIELDS = FieldVisibility(organization=True, sector=True, department=True, team=True)

VISIBILITY_TABLE: dict[AccessLevel, FieldVisibility] = {
    AccessLevel.SUPER_ADMIN: _ORGANIZATION_ONLY,
    AccessLevel.MANAGER: _ORGANIZATION_ONLY,
    AccessLevel.DEPUTY: _ORGANIZATION_ONLY,
    AccessLevel.BRANCH_ADMIN: _ORGANIZATION_ONLY,
    AccessLevel.SECTOR_LEAD: _THROUGH_DEPARTMENT,
    AccessLevel.DIRECTORATE: _THROUGH_DEPARTMENT,
    AccessLevel.TEAM_LEADER: _ALL_FIELDS,
    AccessLevel.EXPERT: _ALL_FIELDS,
    AccessLevel.PUBLIC: _ALL_FIELDS,
}


def field_visibility(access_level: AccessLevel | str) -> FieldVisibility:
    """
    Visibility of the organization/sector/department/team fields

    Args:
        access_level: Level name or enum value

    Raises:
        ValueError: If the level is unknown
    """
    return VISIBILITY_TABLE[AccessLevel(access_level)]
