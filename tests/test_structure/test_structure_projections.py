"""
Tests for the structure registry projection

The registry must rebuild to the same state from the same events, and it
must ignore events that belong to other projections.
"""

from datetime import datetime, timezone

import pytest

from org_authority.kernel.errors import NotFound
from org_authority.kernel.events import Event
from org_authority.structure.projections import StructureRegistry

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def event(version: int, event_type: str, **payload) -> Event:
    return Event(
        event_id=f"evt-{version}",
        stream_id="directory",
        stream_type="directory",
        event_type=event_type,
        occurred_at=NOW,
        actor_id=None,
        command_id=f"cmd-{version}",
        payload=payload,
        version=version,
    )


def org(org_id: str, parent_id: str | None = None, kind: str = "branch") -> dict:
    return {
        "organization_id": org_id,
        "name": org_id,
        "organization_type": kind,
        "parent_id": parent_id,
        "created_at": NOW.isoformat(),
    }


@pytest.fixture
def history() -> list[Event]:
    return [
        event(1, "OrganizationCreated", organization=org("org-1", kind="head_office")),
        event(2, "OrganizationCreated", organization=org("org-3", "org-1")),
        event(3, "OrganizationCreated", organization=org("org-2", "org-1")),
        event(
            4,
            "SectorCreated",
            sector={"sector_id": "sec-1", "name": "Ops", "organization_id": "org-1", "created_at": NOW.isoformat()},
        ),
        event(
            5,
            "DepartmentCreated",
            department={
                "department_id": "dept-1",
                "name": "Finance",
                "organization_id": "org-1",
                "sector_id": "sec-1",
                "created_at": NOW.isoformat(),
            },
        ),
        event(
            6,
            "TeamCreated",
            team={
                "team_id": "team-1",
                "name": "Payments",
                "department_id": "dept-1",
                "organization_id": "org-1",
                "team_leader_id": "usr-1",
                "members": ["usr-1", "usr-2"],
                "created_at": NOW.isoformat(),
            },
        ),
    ]


def build(events: list[Event]) -> StructureRegistry:
    registry = StructureRegistry()
    for e in events:
        registry.apply_event(e)
    return registry


def test_rebuild_is_deterministic(history: list[Event]) -> None:
    assert build(history).to_dict() == build(history).to_dict()


def test_children_are_sorted_by_id(history: list[Event]) -> None:
    registry = build(history)

    assert [o.organization_id for o in registry.child_organizations("org-1")] == ["org-2", "org-3"]
    assert [o.organization_id for o in registry.root_organizations()] == ["org-1"]


def test_lookups_through_the_tree(history: list[Event]) -> None:
    registry = build(history)

    assert [s.sector_id for s in registry.sectors_of("org-1")] == ["sec-1"]
    assert [d.department_id for d in registry.departments_of_sector("sec-1")] == ["dept-1"]
    assert [d.department_id for d in registry.departments_of_organization("org-1")] == ["dept-1"]
    assert [t.team_id for t in registry.teams_of_department("dept-1")] == ["team-1"]
    assert [t.team_id for t in registry.teams_of_organization("org-1")] == ["team-1"]
    assert registry.team_of_member("usr-2").team_id == "team-1"
    assert registry.team_of_member("usr-9") is None
    assert [t.team_id for t in registry.teams_led_by("usr-1")] == ["team-1"]


def test_updates_replace_the_whole_record(history: list[Event]) -> None:
    renamed = org("org-3", "org-2")
    renamed["name"] = "Bole"

    registry = build(history + [event(7, "OrganizationUpdated", organization=renamed)])

    organization = registry.require_organization("org-3")
    assert organization.name == "Bole"
    assert organization.parent_id == "org-2"


def test_deletes_remove_records(history: list[Event]) -> None:
    registry = build(
        history
        + [
            event(7, "TeamDeleted", team_id="team-1", deleted_at=NOW.isoformat()),
            event(8, "DepartmentDeleted", department_id="dept-1", deleted_at=NOW.isoformat()),
            event(9, "SectorDeleted", sector_id="sec-1", deleted_at=NOW.isoformat()),
            event(10, "OrganizationDeleted", organization_id="org-3", deleted_at=NOW.isoformat()),
        ]
    )

    assert registry.get_team("team-1") is None
    assert registry.get_department("dept-1") is None
    assert registry.get_sector("sec-1") is None
    assert registry.get_organization("org-3") is None
    with pytest.raises(NotFound) as exc_info:
        registry.require_team("team-1")
    assert exc_info.value.kind == "Team"


def test_unrelated_events_are_ignored(history: list[Event]) -> None:
    before = build(history).to_dict()

    after = build(history + [event(7, "UserDeleted", user_id="usr-1", deleted_at=NOW.isoformat())])

    assert after.to_dict() == before
