"""
Delegation Handlers - Command -> Event transformation for delegations

Each delegatee has its own stream. Two concurrent grants to the same
delegatee both decide against the same stream version, so only one append
can win; the loser gets StreamVersionConflict.
"""

from org_authority.delegation import invariants
from org_authority.delegation.commands import DelegateAuthority, RevokeDelegation
from org_authority.delegation.events import (
    AuthorityDelegated,
    DelegationExpired,
    DelegationRevoked,
)
from org_authority.delegation.models import Delegation
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.projections import UserDirectory
from org_authority.kernel.events import Event, StreamEvents, delegation_stream
from org_authority.kernel.ids import IdFactory
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import Clock, ensure_utc


class DelegationCommandHandlers:
    """Command handlers for the delegation ledger"""

    def __init__(self, clock: Clock, policy: AuthorityPolicy, id_factory: IdFactory) -> None:
        self.clock = clock
        self.policy = policy
        self.id_factory = id_factory

    def _stream(
        self, delegatee_id: str, command_id: str, actor_id: str | None, version: int
    ) -> StreamEvents:
        return StreamEvents(
            stream_id=delegation_stream(delegatee_id),
            stream_type="delegation",
            version=version,
            occurred_at=self.clock.now(),
            command_id=command_id,
            actor_id=actor_id,
            id_factory=self.id_factory,
        )

    def handle_delegate(
        self,
        command: DelegateAuthority,
        command_id: str,
        actor_id: str | None,
        users: UserDirectory,
        ledger: DelegationLedger,
        version: int,
    ) -> list[Event]:
        """
        Handle DelegateAuthority command

        A record still stored as active but already past its end date is
        marked expired in the same append, so the stored ledger never shows
        two active grants for one delegatee.

        Args:
            command: DelegateAuthority command
            command_id: Shared with the audit record
            actor_id: Who issued the command
            users: Current user directory
            ledger: Current delegation ledger
            version: Delegatee stream version the decision is based on

        Returns:
            Events for the delegatee's stream (AuthorityDelegated last)

        Raises:
            SelfDelegation, NotFound, InsufficientRank, EmptyDelegatedAuthority,
            InvalidDelegationWindow, ActiveDelegationExists
        """
        now = self.clock.now()

        invariants.validate_not_self(command.delegator_id, command.delegatee_id)
        delegator = users.require(command.delegator_id)
        delegatee = users.require(command.delegatee_id)
        invariants.validate_delegator_rank(delegator, self.policy)
        invariants.validate_delegatee_rank(delegator, delegatee, self.policy)
        invariants.validate_authority(command.authority)
        invariants.validate_window(command.end_date, now)
        invariants.validate_no_active_delegation(ledger, command.delegatee_id, now)

        stream = self._stream(command.delegatee_id, command_id, actor_id, version)

        lapsed = ledger.stored_active_for(command.delegatee_id)
        if lapsed is not None:
            stream.emit(
                "DelegationExpired",
                DelegationExpired(
                    delegation_id=lapsed.delegation_id,
                    delegatee_id=lapsed.delegatee_id,
                    expired_at=now,
                ),
            )

        delegation = Delegation(
            delegation_id=self.id_factory.generate("dlg"),
            delegator_id=command.delegator_id,
            delegatee_id=command.delegatee_id,
            authority=command.authority,
            reason=command.reason,
            start_date=now,
            end_date=ensure_utc(command.end_date) if command.end_date else None,
        )
        stream.emit("AuthorityDelegated", AuthorityDelegated(delegation=delegation))
        return stream.events

    def handle_revoke(
        self,
        command: RevokeDelegation,
        command_id: str,
        actor_id: str | None,
        ledger: DelegationLedger,
        version: int,
    ) -> list[Event]:
        """
        Revoke the delegatee's active delegation

        Returns:
            One DelegationRevoked event, or no events when nothing is active
        """
        now = self.clock.now()
        active = ledger.active_for(command.delegatee_id, now)
        if active is None:
            return []

        stream = self._stream(command.delegatee_id, command_id, actor_id, version)
        stream.emit(
            "DelegationRevoked",
            DelegationRevoked(
                delegation_id=active.delegation_id,
                delegatee_id=active.delegatee_id,
                revoked_at=now,
                revoked_by=actor_id,
            ),
        )
        return stream.events

    def handle_sweep_expired(
        self,
        command_id: str,
        ledger: DelegationLedger,
        stream_versions: dict[str, int],
    ) -> dict[str, list[Event]]:
        """
        Record `expired` for every lapsed record still stored as active

        Purely a bookkeeping optimization: authority decisions already treat
        these delegations as expired.

        Args:
            command_id: Identifier of this sweep
            ledger: Current delegation ledger
            stream_versions: Known version per stream id (missing = 0)

        Returns:
            Events keyed by delegatee stream id
        """
        now = self.clock.now()
        writes: dict[str, list[Event]] = {}

        for delegation in ledger.lapsed_active(now):
            stream_id = delegation_stream(delegation.delegatee_id)
            stream = self._stream(
                delegation.delegatee_id,
                command_id,
                None,
                stream_versions.get(stream_id, 0) + len(writes.get(stream_id, [])),
            )
            stream.emit(
                "DelegationExpired",
                DelegationExpired(
                    delegation_id=delegation.delegation_id,
                    delegatee_id=delegation.delegatee_id,
                    expired_at=now,
                ),
            )
            writes.setdefault(stream_id, []).extend(stream.events)

        return writes
