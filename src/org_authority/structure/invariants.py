"""
Structure Invariants - Tree-shape constraints that MUST hold

Pure functions over the StructureRegistry. Each either returns quietly or
raises the domain error naming what would break.

Fun fact: the parent-chain walk is deliberately iterative with a visited
set. A recursive walk would turn corrupt data into a RecursionError instead
of a clear CorruptHierarchy report.
"""

from collections.abc import Iterable

from org_authority.directory.models import User
from org_authority.kernel.errors import (
    CorruptHierarchy,
    HasDependents,
    HierarchyTooDeep,
    InvalidOwnerType,
    InvalidParent,
    OwnerMismatch,
)
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.structure.models import Department, Organization, OrganizationType, Sector
from org_authority.structure.projections import StructureRegistry


# Organization tree


def organization_ancestry(registry: StructureRegistry, organization_id: str) -> list[str]:
    """
    Walk parent links from an organization up to its root

    Args:
        registry: Current structure
        organization_id: Starting organization (must exist)

    Returns:
        [organization_id, parent, grandparent, ..., root]

    Raises:
        CorruptHierarchy: If the walk revisits a node or meets a missing parent
    """
    path: list[str] = []
    visited: set[str] = set()
    current: str | None = organization_id

    while current is not None:
        if current in visited:
            raise CorruptHierarchy("organization", path + [current], reason="cycle")
        organization = registry.get_organization(current)
        if organization is None:
            raise CorruptHierarchy("organization", path + [current], reason="dangling parent")
        visited.add(current)
        path.append(current)
        current = organization.parent_id

    return path


def descendant_organization_ids(registry: StructureRegistry, organization_id: str) -> set[str]:
    """All organizations below organization_id (not including itself)"""
    found: set[str] = set()
    frontier = [organization_id]
    while frontier:
        current = frontier.pop()
        for child in registry.child_organizations(current):
            if child.organization_id not in found and child.organization_id != organization_id:
                found.add(child.organization_id)
                frontier.append(child.organization_id)
    return found


def subtree_height(registry: StructureRegistry, organization_id: str) -> int:
    """Number of levels in the subtree rooted at organization_id (a leaf is 1)"""
    height = 0
    level = [organization_id]
    seen = {organization_id}
    while level:
        height += 1
        next_level = []
        for current in level:
            for child in registry.child_organizations(current):
                if child.organization_id not in seen:
                    seen.add(child.organization_id)
                    next_level.append(child.organization_id)
        level = next_level
    return height


def validate_new_parent(
    registry: StructureRegistry,
    parent_id: str,
    policy: AuthorityPolicy,
    organization_id: str | None = None,
) -> None:
    """
    Check that parent_id can take one more level below it

    Args:
        registry: Current structure
        parent_id: Candidate parent
        policy: Provides max_hierarchy_depth
        organization_id: The organization being placed (None when creating)

    Raises:
        InvalidParent: If the parent does not exist
        HierarchyTooDeep: If the new node would sit deeper than allowed
        CorruptHierarchy: If the parent chain is already broken
    """
    if registry.get_organization(parent_id) is None:
        raise InvalidParent(organization_id, parent_id, "parent organization does not exist")

    depth = len(organization_ancestry(registry, parent_id)) + 1
    if depth > policy.max_hierarchy_depth:
        raise HierarchyTooDeep(depth, policy.max_hierarchy_depth)


def validate_move(
    registry: StructureRegistry,
    organization_id: str,
    new_parent_id: str,
    policy: AuthorityPolicy,
) -> None:
    """
    Check that an organization can move under new_parent_id

    The whole subtree moves along, so the depth bound is checked against the
    deepest descendant rather than the moved node alone.

    Raises:
        InvalidParent: Missing parent, or the parent is the node or one of its descendants
        HierarchyTooDeep: If the moved subtree would exceed the bound
    """
    if registry.get_organization(new_parent_id) is None:
        raise InvalidParent(organization_id, new_parent_id, "parent organization does not exist")
    if new_parent_id == organization_id:
        raise InvalidParent(organization_id, new_parent_id, "an organization cannot be its own parent")
    if new_parent_id in descendant_organization_ids(registry, organization_id):
        raise InvalidParent(
            organization_id, new_parent_id, "parent is a descendant of the organization"
        )

    deepest = len(organization_ancestry(registry, new_parent_id)) + subtree_height(
        registry, organization_id
    )
    if deepest > policy.max_hierarchy_depth:
        raise HierarchyTooDeep(deepest, policy.max_hierarchy_depth)


def validate_type_change(
    registry: StructureRegistry,
    organization: Organization,
    new_type: OrganizationType,
) -> None:
    """Only head offices own sectors, so an organization with sectors stays a head office"""
    if new_type != OrganizationType.HEAD_OFFICE and registry.sectors_of(organization.organization_id):
        raise InvalidOwnerType(organization.organization_id, new_type.value)


# Sectors and departments


def validate_sector_owner(organization: Organization) -> None:
    """
    Raises:
        InvalidOwnerType: If the organization is not a head office
    """
    if organization.organization_type != OrganizationType.HEAD_OFFICE:
        raise InvalidOwnerType(organization.organization_id, organization.organization_type.value)


def validate_department_owner(organization_id: str, sector: Sector | None) -> None:
    """
    A department in a sector must belong to the sector's organization

    Raises:
        OwnerMismatch: If the organizations disagree
    """
    if sector is not None and sector.organization_id != organization_id:
        raise OwnerMismatch("Department", sector.organization_id, organization_id)


# Deletion


def _user_ids(users: Iterable[User]) -> list[str]:
    return sorted(u.user_id for u in users)


def organization_dependents(
    registry: StructureRegistry, users: Iterable[User], organization_id: str
) -> dict[str, list[str]]:
    """Records that still reference an organization, grouped by kind"""
    users = list(users)
    dependents = {
        "organizations": [o.organization_id for o in registry.child_organizations(organization_id)],
        "sectors": [s.sector_id for s in registry.sectors_of(organization_id)],
        "departments": [d.department_id for d in registry.departments_of_organization(organization_id)],
        "teams": [t.team_id for t in registry.teams_of_organization(organization_id)],
        "users": _user_ids(u for u in users if u.organization_id == organization_id),
    }
    return {kind: ids for kind, ids in dependents.items() if ids}


def sector_dependents(
    registry: StructureRegistry, users: Iterable[User], sector_id: str
) -> dict[str, list[str]]:
    dependents = {
        "departments": [d.department_id for d in registry.departments_of_sector(sector_id)],
        "users": _user_ids(u for u in users if u.sector_id == sector_id),
    }
    return {kind: ids for kind, ids in dependents.items() if ids}


def department_dependents(
    registry: StructureRegistry, users: Iterable[User], department: Department
) -> dict[str, list[str]]:
    department_id = department.department_id
    users = list(users)
    dependents = {
        "teams": [t.team_id for t in registry.teams_of_department(department_id)],
        "users": _user_ids(u for u in users if u.department_id == department_id),
        "managers": _user_ids(u for u in users if department_id in u.managed_department_ids),
    }
    return {kind: ids for kind, ids in dependents.items() if ids}


def team_dependents(users: Iterable[User], team_id: str) -> dict[str, list[str]]:
    users = list(users)
    dependents = {
        "users": _user_ids(u for u in users if u.team_id == team_id),
        "managers": _user_ids(u for u in users if team_id in u.managed_team_ids),
    }
    return {kind: ids for kind, ids in dependents.items() if ids}


def ensure_no_dependents(kind: str, entity_id: str, dependents: dict[str, list[str]]) -> None:
    """
    Deletes never cascade: anything still referencing the entity blocks it

    Raises:
        HasDependents: If dependents is non-empty
    """
    if dependents:
        raise HasDependents(kind, entity_id, dependents)
