"""
Access Levels - rank plus scope kind

An access level is not a point on one line. It has a rank (how senior) and
a scope kind (what it administers). Two levels with the same rank but a
different scope kind cannot be ordered: a branch administrator and a
directorate are peers of different shape, and compare_levels says so
instead of inventing a tie-break.

Fun fact: a manager's scope depends on where they sit. The same level is
global at the head office and organization-wide at a branch.
"""

from enum import Enum

from org_authority.directory.models import AccessLevel, User, UserOrganizationType


class ScopeKind(str, Enum):
    """What part of the tree an access level administers"""

    GLOBAL = "global"
    ORGANIZATION = "organization"
    MANAGED_DEPARTMENTS = "managed_departments"
    SECTOR = "sector"
    MANAGED_TEAMS = "managed_teams"
    SELF = "self"


class LevelComparison(str, Enum):
    HIGHER = "higher"
    LOWER = "lower"
    EQUAL = "equal"
    INCOMPARABLE = "incomparable"


LEVEL_RANKS: dict[AccessLevel, int] = {
    AccessLevel.SUPER_ADMIN: 100,
    AccessLevel.MANAGER: 90,
    AccessLevel.DEPUTY: 80,
    AccessLevel.BRANCH_ADMIN: 70,
    AccessLevel.DIRECTORATE: 70,
    AccessLevel.SECTOR_LEAD: 50,
    AccessLevel.TEAM_LEADER: 40,
    AccessLevel.EXPERT: 20,
    AccessLevel.PUBLIC: 20,
}

# Nominal scope kinds used when levels are compared without a user;
# manager resolves per user in user_scope_kind().
LEVEL_SCOPE_KINDS: dict[AccessLevel, ScopeKind] = {
    AccessLevel.SUPER_ADMIN: ScopeKind.GLOBAL,
    AccessLevel.MANAGER: ScopeKind.GLOBAL,
    AccessLevel.DEPUTY: ScopeKind.MANAGED_DEPARTMENTS,
    AccessLevel.BRANCH_ADMIN: ScopeKind.ORGANIZATION,
    AccessLevel.DIRECTORATE: ScopeKind.MANAGED_DEPARTMENTS,
    AccessLevel.SECTOR_LEAD: ScopeKind.SECTOR,
    AccessLevel.TEAM_LEADER: ScopeKind.MANAGED_TEAMS,
    AccessLevel.EXPERT: ScopeKind.SELF,
    AccessLevel.PUBLIC: ScopeKind.SELF,
}


def rank_of(level: AccessLevel | str) -> int:
    return LEVEL_RANKS[AccessLevel(level)]


def user_scope_kind(user: User) -> ScopeKind:
    """Scope kind of a concrete user (resolves the manager split)"""
    if user.access_level == AccessLevel.MANAGER:
        if user.organization_type == UserOrganizationType.HEAD_OFFICE:
            return ScopeKind.GLOBAL
        return ScopeKind.ORGANIZATION
    return LEVEL_SCOPE_KINDS[user.access_level]


def compare_levels(a: AccessLevel | str, b: AccessLevel | str) -> LevelComparison:
    """
    Compare two access levels

    Returns:
        HIGHER/LOWER by rank; EQUAL for the same rank and scope kind;
        INCOMPARABLE for the same rank and different scope kinds
    """
    a, b = AccessLevel(a), AccessLevel(b)
    rank_a, rank_b = LEVEL_RANKS[a], LEVEL_RANKS[b]
    if rank_a > rank_b:
        return LevelComparison.HIGHER
    if rank_a < rank_b:
        return LevelComparison.LOWER
    if LEVEL_SCOPE_KINDS[a] == LEVEL_SCOPE_KINDS[b]:
        return LevelComparison.EQUAL
    return LevelComparison.INCOMPARABLE


def at_least(level: AccessLevel | str, threshold: AccessLevel | str) -> bool:
    """Rank threshold check ("directorate or higher"); scope kind is ignored"""
    return rank_of(level) >= rank_of(threshold)


def strictly_lower(a: AccessLevel | str, b: AccessLevel | str) -> bool:
    """True only when a is definitely below b; incomparable pairs are not lower"""
    return compare_levels(a, b) == LevelComparison.LOWER
