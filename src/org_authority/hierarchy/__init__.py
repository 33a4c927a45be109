"""
Hierarchy Module - scopes, subordinates, manager chains and the org chart
"""

from org_authority.hierarchy.chart import TreeNode, get_organizational_chart
from org_authority.hierarchy.resolver import HierarchyResolver, ManagedEntities, ReportingLine
from org_authority.hierarchy.scope import ScopeSet

__all__ = [
    "HierarchyResolver",
    "ManagedEntities",
    "ReportingLine",
    "ScopeSet",
    "TreeNode",
    "get_organizational_chart",
]
