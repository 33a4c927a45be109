"""
Structure Module - Organizations, sectors, departments and teams

The organizational tree every authority decision is scoped against.
"""

from org_authority.structure.models import Department, Organization, OrganizationType, Sector, Team

__all__ = [
    "Organization",
    "OrganizationType",
    "Sector",
    "Department",
    "Team",
]
