"""
Authority Module - access levels, field visibility and permission decisions
"""

from org_authority.authority.access_levels import (
    LevelComparison,
    ScopeKind,
    compare_levels,
    rank_of,
)
from org_authority.authority.visibility import FieldVisibility, field_visibility

__all__ = [
    "LevelComparison",
    "ScopeKind",
    "compare_levels",
    "rank_of",
    "FieldVisibility",
    "field_visibility",
]
