"""
Delegation Projections - The delegation ledger as a read model
"""

from datetime import datetime
from typing import Any

from org_authority.delegation.models import (
    Delegation,
    DelegationHistory,
    DelegationStatus,
    DelegationView,
)
from org_authority.kernel.events import Event
from org_authority.kernel.time import parse_timestamp


class DelegationLedger:
    """
    Projection: every delegation ever granted, by id

    Records are never removed; revocation and expiry only change status.
    All "is it active" questions take `now` so the answer is computed at
    read time.
    """

    def __init__(self) -> None:
        self.delegations: dict[str, Delegation] = {}

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload
        if event.event_type == "AuthorityDelegated":
            delegation = Delegation.model_validate(payload["delegation"])
            self.delegations[delegation.delegation_id] = delegation

        elif event.event_type == "DelegationRevoked":
            delegation = self.delegations.get(payload["delegation_id"])
            if delegation is not None:
                self.delegations[delegation.delegation_id] = delegation.model_copy(
                    update={
                        "status": DelegationStatus.REVOKED,
                        "revoked_at": parse_timestamp(payload["revoked_at"]),
                        "revoked_by": payload.get("revoked_by"),
                    }
                )

        elif event.event_type == "DelegationExpired":
            delegation = self.delegations.get(payload["delegation_id"])
            if delegation is not None:
                self.delegations[delegation.delegation_id] = delegation.model_copy(
                    update={
                        "status": DelegationStatus.EXPIRED,
                        "expired_at": parse_timestamp(payload["expired_at"]),
                    }
                )

    def get(self, delegation_id: str) -> Delegation | None:
        return self.delegations.get(delegation_id)

    def _newest_first(self, delegations: list[Delegation]) -> list[Delegation]:
        # Ids are time-ordered, so they break start_date ties deterministically
        return sorted(delegations, key=lambda d: (d.start_date, d.delegation_id), reverse=True)

    def received_by(self, user_id: str) -> list[Delegation]:
        return self._newest_first([d for d in self.delegations.values() if d.delegatee_id == user_id])

    def granted_by(self, user_id: str) -> list[Delegation]:
        return self._newest_first([d for d in self.delegations.values() if d.delegator_id == user_id])

    def stored_active_for(self, delegatee_id: str) -> Delegation | None:
        """The record stored as active for a delegatee, lapsed or not"""
        for delegation in self.received_by(delegatee_id):
            if delegation.status == DelegationStatus.ACTIVE:
                return delegation
        return None

    def active_for(self, delegatee_id: str, now: datetime) -> Delegation | None:
        """The delegation the delegatee can act on right now, if any"""
        delegation = self.stored_active_for(delegatee_id)
        if delegation is not None and delegation.is_active(now):
            return delegation
        return None

    def lapsed_active(self, now: datetime) -> list[Delegation]:
        """Records still stored as active whose end date has passed (sweep input)"""
        return sorted(
            (
                d
                for d in self.delegations.values()
                if d.status == DelegationStatus.ACTIVE and d.has_lapsed(now)
            ),
            key=lambda d: d.delegation_id,
        )

    def history(self, user_id: str, now: datetime) -> DelegationHistory:
        """Delegations the user granted and received, newest first, with read-time status"""

        def view(delegation: Delegation) -> DelegationView:
            return DelegationView(
                delegation=delegation, effective_status=delegation.effective_status(now)
            )

        return DelegationHistory(
            delegated_by=[view(d) for d in self.granted_by(user_id)],
            delegated_to=[view(d) for d in self.received_by(user_id)],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "delegations": {k: v.model_dump(mode="json") for k, v in self.delegations.items()}
        }
