"""
Delegation Module - Time-bounded, revocable grants of authority
"""

from org_authority.delegation.models import (
    DelegatedAuthority,
    Delegation,
    DelegationHistory,
    DelegationStatus,
    DelegationView,
)

__all__ = [
    "DelegatedAuthority",
    "Delegation",
    "DelegationHistory",
    "DelegationStatus",
    "DelegationView",
]
