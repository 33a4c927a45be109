"""
Organizational Chart - the tree materialized for display

Root -> Organizations -> {Sectors, direct Departments, child Organizations}
     -> Departments -> Teams

A department that belongs to a sector appears only under that sector. With
a scope, the chart is pruned to the nodes inside it plus the ancestors
needed to reach them.
"""

from typing import Literal

from pydantic import BaseModel, Field

from org_authority.hierarchy.scope import ScopeSet
from org_authority.kernel.errors import CorruptHierarchy
from org_authority.structure.models import Department, Organization, Sector
from org_authority.structure.projections import StructureRegistry

NodeType = Literal["root", "organization", "sector", "department", "team"]


class TreeNode(BaseModel):
    node_type: NodeType
    node_id: str
    name: str
    children: list["TreeNode"] = Field(default_factory=list)

    def find(self, node_id: str) -> "TreeNode | None":
        """Depth-first lookup of a node by id"""
        stack = [self]
        while stack:
            node = stack.pop()
            if node.node_id == node_id:
                return node
            stack.extend(node.children)
        return None

    def count(self) -> int:
        return 1 + sum(child.count() for child in self.children)


class ChartBuilder:
    """Builds a TreeNode tree from the registry, optionally pruned to a scope"""

    def __init__(self, registry: StructureRegistry, scope: ScopeSet | None = None) -> None:
        self.registry = registry
        self.scope = scope
        self._visited: set[str] = set()

    def _keep(self, kind: str, entity_id: str, children: list[TreeNode]) -> bool:
        if self.scope is None or children:
            return True
        return self.scope.covers(kind, entity_id)

    def _department(self, department: Department) -> TreeNode | None:
        teams = [
            TreeNode(node_type="team", node_id=t.team_id, name=t.name)
            for t in self.registry.teams_of_department(department.department_id)
            if self._keep("team", t.team_id, [])
        ]
        if not self._keep("department", department.department_id, teams):
            return None
        return TreeNode(
            node_type="department",
            node_id=department.department_id,
            name=department.name,
            children=teams,
        )

    def _sector(self, sector: Sector) -> TreeNode | None:
        departments = [
            node
            for d in self.registry.departments_of_sector(sector.sector_id)
            if (node := self._department(d)) is not None
        ]
        if not self._keep("sector", sector.sector_id, departments):
            return None
        return TreeNode(
            node_type="sector", node_id=sector.sector_id, name=sector.name, children=departments
        )

    def _organization(self, organization: Organization) -> TreeNode | None:
        if organization.organization_id in self._visited:
            raise CorruptHierarchy(
                "organization", sorted(self._visited) + [organization.organization_id]
            )
        self._visited.add(organization.organization_id)

        children: list[TreeNode] = []
        for sector in self.registry.sectors_of(organization.organization_id):
            node = self._sector(sector)
            if node is not None:
                children.append(node)
        for department in self.registry.departments_of_organization(organization.organization_id):
            if department.sector_id is None:
                node = self._department(department)
                if node is not None:
                    children.append(node)
        for child in self.registry.child_organizations(organization.organization_id):
            node = self._organization(child)
            if node is not None:
                children.append(node)

        if not self._keep("organization", organization.organization_id, children):
            return None
        return TreeNode(
            node_type="organization",
            node_id=organization.organization_id,
            name=organization.name,
            children=children,
        )

    def build(self) -> TreeNode:
        roots = [
            node
            for organization in self.registry.root_organizations()
            if (node := self._organization(organization)) is not None
        ]

        # Every organization hangs off a root; one that does not sits on a loop or a dangling parent
        stranded = sorted(set(self.registry.organizations) - self._visited)
        if stranded:
            raise CorruptHierarchy("organization", *self._parent_walk(stranded[0]))
        return TreeNode(node_type="root", node_id="root", name="Root", children=roots)

    def _parent_walk(self, organization_id: str) -> tuple[list[str], str]:
        path = [organization_id]
        parent_id = self.registry.organizations[organization_id].parent_id
        while parent_id is not None:
            if parent_id in path:
                return path + [parent_id], "cycle"
            if parent_id not in self.registry.organizations:
                return path + [parent_id], "dangling"
            path.append(parent_id)
            parent_id = self.registry.organizations[parent_id].parent_id
        return path, "unreachable"


def get_organizational_chart(
    registry: StructureRegistry, scope: ScopeSet | None = None
) -> TreeNode:
    """
    Materialize the organizational chart

    Args:
        registry: Current structure
        scope: Prune to this scope (None for the full tree)

    Returns:
        Root node whose children are the root organizations

    Raises:
        CorruptHierarchy: If an organization is reached twice, or its
            parent chain never reaches a root
    """
    return ChartBuilder(registry, scope).build()
