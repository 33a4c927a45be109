"""
Org Authority - Hierarchy-aware access control & delegation engine

Answers "may this person do this, here, right now?" for a multi-level
public-sector organization: organizations, sectors, departments and teams,
users with access levels, roles and permissions, time-bounded delegations
of authority, and a hash-chained audit trail of every change.

Fun fact: a woreda is the third administrative tier in Ethiopia - the
organization tree here goes head office, branch, subcity, woreda.
"""

from org_authority.engine import OrgAuthority

__version__ = "0.1.0"
__all__ = ["OrgAuthority", "__version__"]
