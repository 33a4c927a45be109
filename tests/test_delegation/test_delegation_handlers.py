"""
Tests for delegation invariants, handlers and the ledger projection

Handlers run against hand-built directories and ledgers so each rule can be
isolated from permission checks and the event store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from org_authority.delegation.commands import DelegateAuthority, RevokeDelegation
from org_authority.delegation.handlers import DelegationCommandHandlers
from org_authority.delegation.models import DelegatedAuthority, Delegation, DelegationStatus
from org_authority.delegation.projections import DelegationLedger
from org_authority.directory.models import User
from org_authority.directory.projections import UserDirectory
from org_authority.kernel.errors import (
    ActiveDelegationExists,
    EmptyDelegatedAuthority,
    InsufficientRank,
    InvalidDelegationWindow,
    NotFound,
    SelfDelegation,
)
from org_authority.kernel.events import Event
from org_authority.kernel.ids import SequentialIdFactory
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import FrozenClock

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
TEAMS = DelegatedAuthority(can_manage_teams=True)


def user(user_id: str, level: str) -> User:
    return User(user_id=user_id, full_name=user_id, access_level=level, created_at=NOW)


@pytest.fixture
def users() -> UserDirectory:
    directory = UserDirectory()
    for u in (
        user("usr-director", "directorate"),
        user("usr-branch", "branch_admin"),
        user("usr-sector", "sector_lead"),
        user("usr-lead", "team_leader"),
        user("usr-expert", "expert"),
    ):
        directory.users[u.user_id] = u
    return directory


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def handlers(clock: FrozenClock) -> DelegationCommandHandlers:
    return DelegationCommandHandlers(clock, AuthorityPolicy(), SequentialIdFactory())


def grant(
    handlers: DelegationCommandHandlers,
    users: UserDirectory,
    ledger: DelegationLedger,
    delegator: str = "usr-director",
    delegatee: str = "usr-lead",
    authority: DelegatedAuthority = TEAMS,
    end_date: datetime | None = None,
    version: int = 0,
) -> list[Event]:
    events = handlers.handle_delegate(
        DelegateAuthority(
            delegator_id=delegator, delegatee_id=delegatee, authority=authority, end_date=end_date
        ),
        "cmd-1",
        delegator,
        users,
        ledger,
        version,
    )
    for event in events:
        ledger.apply_event(event)
    return events


class TestDelegateRules:
    def test_grant_records_the_window(
        self, handlers: DelegationCommandHandlers, users: UserDirectory, clock: FrozenClock
    ) -> None:
        ledger = DelegationLedger()
        events = grant(handlers, users, ledger, end_date=NOW + timedelta(days=3))

        assert [e.event_type for e in events] == ["AuthorityDelegated"]
        assert events[0].stream_id == "delegations:usr-lead"
        delegation = ledger.active_for("usr-lead", clock.now())
        assert delegation.start_date == NOW
        assert delegation.end_date == NOW + timedelta(days=3)
        assert delegation.authority.capabilities() == ["can_manage_teams"]

    def test_self_delegation(self, handlers: DelegationCommandHandlers, users: UserDirectory) -> None:
        with pytest.raises(SelfDelegation):
            grant(handlers, users, DelegationLedger(), delegatee="usr-director")

    def test_unknown_delegatee(self, handlers: DelegationCommandHandlers, users: UserDirectory) -> None:
        with pytest.raises(NotFound):
            grant(handlers, users, DelegationLedger(), delegatee="usr-404")

    def test_delegator_must_be_directorate_or_higher(
        self, handlers: DelegationCommandHandlers, users: UserDirectory
    ) -> None:
        with pytest.raises(InsufficientRank) as exc_info:
            grant(handlers, users, DelegationLedger(), delegator="usr-sector")
        assert exc_info.value.user_id == "usr-sector"

    def test_branch_admin_qualifies_by_rank(
        self, handlers: DelegationCommandHandlers, users: UserDirectory
    ) -> None:
        grant(handlers, users, DelegationLedger(), delegator="usr-branch", delegatee="usr-expert")

    def test_delegatee_must_rank_strictly_lower(
        self, handlers: DelegationCommandHandlers, users: UserDirectory
    ) -> None:
        # Equal rank, different scope kind: incomparable, so not lower
        with pytest.raises(InsufficientRank):
            grant(handlers, users, DelegationLedger(), delegator="usr-branch", delegatee="usr-director")

    def test_lower_rank_rule_can_be_relaxed(self, clock: FrozenClock, users: UserDirectory) -> None:
        relaxed = DelegationCommandHandlers(
            clock, AuthorityPolicy(delegation_requires_lower_rank=False), SequentialIdFactory()
        )
        grant(relaxed, users, DelegationLedger(), delegator="usr-branch", delegatee="usr-director")

    def test_empty_authority(self, handlers: DelegationCommandHandlers, users: UserDirectory) -> None:
        with pytest.raises(EmptyDelegatedAuthority):
            grant(handlers, users, DelegationLedger(), authority=DelegatedAuthority())

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(days=-1)])
    def test_end_date_must_be_in_the_future(
        self, handlers: DelegationCommandHandlers, users: UserDirectory, offset: timedelta
    ) -> None:
        with pytest.raises(InvalidDelegationWindow):
            grant(handlers, users, DelegationLedger(), end_date=NOW + offset)

    def test_naive_end_date_is_utc(self, handlers: DelegationCommandHandlers, users: UserDirectory) -> None:
        ledger = DelegationLedger()
        events = grant(handlers, users, ledger, end_date=datetime(2025, 2, 1, 12, 0))

        assert events[0].payload["delegation"]["end_date"].startswith("2025-02-01T12:00:00")

    def test_one_active_delegation_per_delegatee(
        self, handlers: DelegationCommandHandlers, users: UserDirectory
    ) -> None:
        ledger = DelegationLedger()
        grant(handlers, users, ledger)

        with pytest.raises(ActiveDelegationExists):
            grant(handlers, users, ledger, delegator="usr-branch", version=1)

    def test_lapsed_record_is_expired_in_the_same_append(
        self,
        handlers: DelegationCommandHandlers,
        users: UserDirectory,
        clock: FrozenClock,
    ) -> None:
        ledger = DelegationLedger()
        first = grant(handlers, users, ledger, end_date=NOW + timedelta(hours=1))
        clock.advance(hours=2)

        events = grant(handlers, users, ledger, version=1)

        assert [e.event_type for e in events] == ["DelegationExpired", "AuthorityDelegated"]
        assert [e.version for e in events] == [2, 3]
        old = ledger.get(first[0].payload["delegation"]["delegation_id"])
        assert old.status == DelegationStatus.EXPIRED
        assert ledger.active_for("usr-lead", clock.now()).delegation_id != old.delegation_id


class TestRevokeAndSweep:
    def test_revoke_marks_the_active_record(
        self, handlers: DelegationCommandHandlers, users: UserDirectory, clock: FrozenClock
    ) -> None:
        ledger = DelegationLedger()
        grant(handlers, users, ledger)

        events = handlers.handle_revoke(
            RevokeDelegation(delegatee_id="usr-lead"), "cmd-2", "usr-director", ledger, 1
        )
        for event in events:
            ledger.apply_event(event)

        revoked = ledger.received_by("usr-lead")[0]
        assert revoked.status == DelegationStatus.REVOKED
        assert revoked.revoked_by == "usr-director"
        assert revoked.revoked_at == NOW
        assert ledger.active_for("usr-lead", clock.now()) is None

    def test_revoke_without_active_delegation_emits_nothing(
        self, handlers: DelegationCommandHandlers
    ) -> None:
        assert (
            handlers.handle_revoke(
                RevokeDelegation(delegatee_id="usr-lead"), "cmd-2", None, DelegationLedger(), 0
            )
            == []
        )

    def test_sweep_expires_only_lapsed_records(
        self, handlers: DelegationCommandHandlers, users: UserDirectory, clock: FrozenClock
    ) -> None:
        ledger = DelegationLedger()
        grant(handlers, users, ledger, delegatee="usr-lead", end_date=NOW + timedelta(days=1))
        grant(handlers, users, ledger, delegatee="usr-expert", end_date=NOW + timedelta(days=10))
        clock.advance(days=2)

        writes = handlers.handle_sweep_expired("cmd-3", ledger, {"delegations:usr-lead": 1})

        assert list(writes) == ["delegations:usr-lead"]
        assert writes["delegations:usr-lead"][0].version == 2
        assert writes["delegations:usr-lead"][0].actor_id is None


class TestLedger:
    def _delegation(self, delegation_id: str, start: datetime, **fields) -> Delegation:
        return Delegation(
            delegation_id=delegation_id,
            delegator_id="usr-director",
            delegatee_id="usr-lead",
            authority=TEAMS,
            start_date=start,
            **fields,
        )

    def test_history_is_newest_first(self) -> None:
        ledger = DelegationLedger()
        for delegation in (
            self._delegation("dlg-1", NOW, status=DelegationStatus.REVOKED),
            self._delegation("dlg-3", NOW + timedelta(days=2)),
            self._delegation("dlg-2", NOW + timedelta(days=1), status=DelegationStatus.REVOKED),
        ):
            ledger.delegations[delegation.delegation_id] = delegation

        history = ledger.history("usr-lead", NOW + timedelta(days=3))

        assert [v.delegation.delegation_id for v in history.delegated_to] == ["dlg-3", "dlg-2", "dlg-1"]
        assert history.delegated_by == []
        assert [v.delegation.delegation_id for v in ledger.history("usr-director", NOW).delegated_by] == [
            "dlg-3",
            "dlg-2",
            "dlg-1",
        ]

    def test_effective_status_is_computed_at_read_time(self) -> None:
        delegation = self._delegation("dlg-1", NOW, end_date=NOW + timedelta(days=1))

        assert delegation.effective_status(NOW) == DelegationStatus.ACTIVE
        assert delegation.effective_status(NOW + timedelta(days=1)) == DelegationStatus.EXPIRED
        assert delegation.status == DelegationStatus.ACTIVE
        assert not delegation.is_active(NOW + timedelta(days=1))

    def test_open_ended_delegation_never_lapses(self) -> None:
        delegation = self._delegation("dlg-1", NOW)

        assert delegation.is_active(NOW + timedelta(days=3650))
