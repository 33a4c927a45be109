"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Iterator

import pytest

from org_authority.engine import OrgAuthority
from org_authority.kernel.event_store import SQLiteEventStore
from org_authority.kernel.ids import SequentialIdFactory
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.time import FrozenClock


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "authority.db"


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def clock() -> FrozenClock:
    """
    Provide a controllable clock for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC. Delegation expiry is tested by
    moving this clock, never by sleeping.
    """
    return FrozenClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> AuthorityPolicy:
    """Provide default authority policy for tests"""
    return AuthorityPolicy()


@pytest.fixture
def ids() -> SequentialIdFactory:
    """Predictable ids: org-1, usr-1, dlg-1, ..."""
    return SequentialIdFactory()


@pytest.fixture
def engine(temp_db: Path, clock: FrozenClock, policy: AuthorityPolicy, ids: SequentialIdFactory) -> OrgAuthority:
    """Provide a fresh engine on a temporary database"""
    return OrgAuthority(temp_db, policy=policy, clock=clock, id_factory=ids)


@pytest.fixture
def tree(engine: OrgAuthority) -> SimpleNamespace:
    """
    A small seeded organization, built by the system actor

    Head Office (head_office)
        Operations (sector)
            Finance (department) -> Payments (team, led by lead)
        Human Resources (department) -> Recruitment (team)
    Addis Branch (branch)
        Branch Services (department)

    Users: admin (super_admin), director (directorate of Finance),
    lead (team_leader of Payments), analyst (expert in Payments),
    branch_admin (Addis Branch), clerk (public in Branch Services).
    """
    hq = engine.create_organization("Head Office", "head_office")
    branch = engine.create_organization("Addis Branch", "branch", hq.organization_id)
    operations = engine.create_sector("Operations", hq.organization_id)
    finance = engine.create_department("Finance", hq.organization_id, operations.sector_id)
    hr = engine.create_department("Human Resources", hq.organization_id)
    branch_services = engine.create_department("Branch Services", branch.organization_id)

    admin = engine.register_user(
        "Almaz Tesfaye", "super_admin", organization_id=hq.organization_id, status="active"
    )
    director = engine.register_user(
        "Abebe Kebede",
        "directorate",
        organization_id=hq.organization_id,
        department_id=finance.department_id,
        status="active",
    )
    lead = engine.register_user(
        "Hana Girma", "team_leader", department_id=finance.department_id, status="active"
    )
    analyst = engine.register_user(
        "Dawit Alemu", "expert", department_id=finance.department_id, status="active"
    )
    branch_admin = engine.register_user(
        "Selam Bekele", "branch_admin", organization_id=branch.organization_id, status="active"
    )
    clerk = engine.register_user(
        "Yonas Tadesse", "public", department_id=branch_services.department_id
    )

    payments = engine.create_team("Payments", finance.department_id, lead.user_id)
    recruitment = engine.create_team("Recruitment", hr.department_id)
    engine.add_team_member(payments.team_id, analyst.user_id)

    return SimpleNamespace(
        hq=hq,
        branch=branch,
        operations=operations,
        finance=finance,
        hr=hr,
        branch_services=branch_services,
        payments=engine.get_team(payments.team_id),
        recruitment=recruitment,
        admin=admin,
        director=director,
        lead=engine.get_user(lead.user_id),
        analyst=engine.get_user(analyst.user_id),
        branch_admin=branch_admin,
        clerk=clerk,
    )
