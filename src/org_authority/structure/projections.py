"""
Structure Projections - The organizational tree as a read model

Rebuilt from the directory stream; disposable and rebuildable like every
projection in the engine.
"""

from typing import Any

from org_authority.kernel.errors import NotFound
from org_authority.kernel.events import Event
from org_authority.structure.models import Department, Organization, Sector, Team


class StructureRegistry:
    """
    Projection: organizations, sectors, departments and teams by id

    Child lookups scan the registries; the tree is small enough that an
    index would cost more in bookkeeping than it saves.
    """

    def __init__(self) -> None:
        self.organizations: dict[str, Organization] = {}
        self.sectors: dict[str, Sector] = {}
        self.departments: dict[str, Department] = {}
        self.teams: dict[str, Team] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload
        if event.event_type in ("OrganizationCreated", "OrganizationUpdated"):
            organization = Organization.model_validate(payload["organization"])
            self.organizations[organization.organization_id] = organization
        elif event.event_type == "OrganizationDeleted":
            self.organizations.pop(payload["organization_id"], None)

        elif event.event_type in ("SectorCreated", "SectorUpdated"):
            sector = Sector.model_validate(payload["sector"])
            self.sectors[sector.sector_id] = sector
        elif event.event_type == "SectorDeleted":
            self.sectors.pop(payload["sector_id"], None)

        elif event.event_type in ("DepartmentCreated", "DepartmentUpdated"):
            department = Department.model_validate(payload["department"])
            self.departments[department.department_id] = department
        elif event.event_type == "DepartmentDeleted":
            self.departments.pop(payload["department_id"], None)

        elif event.event_type in ("TeamCreated", "TeamUpdated"):
            team = Team.model_validate(payload["team"])
            self.teams[team.team_id] = team
        elif event.event_type == "TeamDeleted":
            self.teams.pop(payload["team_id"], None)

    # Lookups

    def get_organization(self, organization_id: str) -> Organization | None:
        return self.organizations.get(organization_id)

    def get_sector(self, sector_id: str) -> Sector | None:
        return self.sectors.get(sector_id)

    def get_department(self, department_id: str) -> Department | None:
        return self.departments.get(department_id)

    def get_team(self, team_id: str) -> Team | None:
        return self.teams.get(team_id)

    def require_organization(self, organization_id: str) -> Organization:
        """Get organization by ID or raise NotFound"""
        organization = self.organizations.get(organization_id)
        if organization is None:
            raise NotFound("Organization", organization_id)
        return organization

    def require_sector(self, sector_id: str) -> Sector:
        sector = self.sectors.get(sector_id)
        if sector is None:
            raise NotFound("Sector", sector_id)
        return sector

    def require_department(self, department_id: str) -> Department:
        department = self.departments.get(department_id)
        if department is None:
            raise NotFound("Department", department_id)
        return department

    def require_team(self, team_id: str) -> Team:
        team = self.teams.get(team_id)
        if team is None:
            raise NotFound("Team", team_id)
        return team

    # Children (always sorted by id so callers get stable output)

    def child_organizations(self, organization_id: str) -> list[Organization]:
        return sorted(
            (o for o in self.organizations.values() if o.parent_id == organization_id),
            key=lambda o: o.organization_id,
        )

    def root_organizations(self) -> list[Organization]:
        return sorted(
            (o for o in self.organizations.values() if o.parent_id is None),
            key=lambda o: o.organization_id,
        )

    def sectors_of(self, organization_id: str) -> list[Sector]:
        return sorted(
            (s for s in self.sectors.values() if s.organization_id == organization_id),
            key=lambda s: s.sector_id,
        )

    def departments_of_organization(self, organization_id: str) -> list[Department]:
        """Every department the organization owns, with or without a sector"""
        return sorted(
            (d for d in self.departments.values() if d.organization_id == organization_id),
            key=lambda d: d.department_id,
        )

    def departments_of_sector(self, sector_id: str) -> list[Department]:
        return sorted(
            (d for d in self.departments.values() if d.sector_id == sector_id),
            key=lambda d: d.department_id,
        )

    def teams_of_department(self, department_id: str) -> list[Team]:
        return sorted(
            (t for t in self.teams.values() if t.department_id == department_id),
            key=lambda t: t.team_id,
        )

    def teams_of_organization(self, organization_id: str) -> list[Team]:
        return sorted(
            (t for t in self.teams.values() if t.organization_id == organization_id),
            key=lambda t: t.team_id,
        )

    def team_of_member(self, user_id: str) -> Team | None:
        """The team a user belongs to (a user belongs to at most one team)"""
        for team in self.teams.values():
            if user_id in team.members:
                return team
        return None

    def teams_led_by(self, user_id: str) -> list[Team]:
        return sorted(
            (t for t in self.teams.values() if t.team_leader_id == user_id),
            key=lambda t: t.team_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict (JSON-safe) for inspection and export"""
        return {
            "organizations": {k: v.model_dump(mode="json") for k, v in self.organizations.items()},
            "sectors": {k: v.model_dump(mode="json") for k, v in self.sectors.items()},
            "departments": {k: v.model_dump(mode="json") for k, v in self.departments.items()},
            "teams": {k: v.model_dump(mode="json") for k, v in self.teams.items()},
        }
