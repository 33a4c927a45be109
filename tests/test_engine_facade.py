"""
Tests for the OrgAuthority façade

Every mutation runs: refresh, permission check, scope check, handler,
atomic append with its audit record. These tests exercise the checks with
real actors; the domain rules have their own suites.
"""

from pathlib import Path
from types import SimpleNamespace

import pytest

from org_authority import OrgAuthority
from org_authority.kernel.errors import InvalidOwnerType, NotFound, StreamVersionConflict, Unauthorized
from org_authority.kernel.events import DIRECTORY_STREAM
from org_authority.kernel.metrics import operations_total
from org_authority.kernel.time import FrozenClock
from org_authority.structure.commands import DeleteDepartment


def grant(engine: OrgAuthority, user_id: str, *pairs: tuple[str, str]) -> None:
    """Give a user a fresh role holding the (resource, action) pairs"""
    permission_ids = []
    for resource, action in pairs:
        existing = engine.roles.find_permission(resource, action)
        permission = existing or engine.create_permission(resource, action)
        permission_ids.append(permission.permission_id)
    role = engine.create_role(f"Role for {user_id} #{len(engine.list_roles()) + 1}", permission_ids=permission_ids)
    engine.assign_role(user_id, role.role_id)


class TestActors:
    def test_system_actor_bypasses_checks(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        team = engine.create_team("Treasury", tree.finance.department_id)

        assert engine.list_audit(limit=1)[0].actor_user_id is None
        assert team.department_id == tree.finance.department_id

    def test_unknown_actor_is_unauthorized(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        with pytest.raises(Unauthorized) as exc_info:
            engine.create_sector("Shadow", tree.hq.organization_id, actor_id="usr-404")
        assert exc_info.value.reason == "unknown actor"

    def test_permission_is_checked_before_anything_else(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        # The missing department would be NotFound for an authorized actor
        with pytest.raises(Unauthorized):
            engine.create_team("Ghost", "dept-404", actor_id=tree.analyst.user_id)


class TestScopeChecks:
    def test_directorate_acts_inside_own_department_only(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        grant(engine, tree.director.user_id, ("Team", "create"))

        team = engine.create_team("Treasury", tree.finance.department_id, actor_id=tree.director.user_id)
        assert team.department_id == tree.finance.department_id

        with pytest.raises(Unauthorized):
            engine.create_team("Payroll", tree.hr.department_id, actor_id=tree.director.user_id)

    def test_missing_target_is_not_found_for_authorized_actor(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        grant(engine, tree.director.user_id, ("Team", "create"))

        with pytest.raises(NotFound):
            engine.create_team("Ghost", "dept-404", actor_id=tree.director.user_id)

    def test_delegated_scope_lets_delegatee_act(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        engine.delegate(tree.director.user_id, tree.lead.user_id, {"can_manage_teams": True})

        team = engine.create_team("Treasury", tree.finance.department_id, actor_id=tree.lead.user_id)
        engine.rename_team(team.team_id, "Treasury Ops", actor_id=tree.lead.user_id)

        with pytest.raises(Unauthorized):
            engine.create_team("Payroll", tree.hr.department_id, actor_id=tree.lead.user_id)

    def test_delegation_expiry_withdraws_scope(
        self, engine: OrgAuthority, tree: SimpleNamespace, clock: FrozenClock
    ) -> None:
        from datetime import timedelta

        engine.delegate(
            tree.director.user_id,
            tree.lead.user_id,
            {"can_manage_teams": True},
            end_date=clock.now() + timedelta(hours=8),
        )
        clock.advance(hours=8)

        with pytest.raises(Unauthorized):
            engine.create_team("Late", tree.finance.department_id, actor_id=tree.lead.user_id)

    def test_user_updates_need_a_manageable_target(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        grant(engine, tree.director.user_id, ("User", "update"))

        engine.update_user(tree.analyst.user_id, status="active", actor_id=tree.director.user_id)
        with pytest.raises(Unauthorized):
            engine.update_user(tree.clerk.user_id, status="active", actor_id=tree.director.user_id)

    def test_registration_is_scoped_by_placement(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        grant(engine, tree.branch_admin.user_id, ("User", "create"))

        teller = engine.register_user(
            "Kalkidan Mulugeta",
            "expert",
            department_id=tree.branch_services.department_id,
            actor_id=tree.branch_admin.user_id,
        )
        assert teller.organization_id == tree.branch.organization_id

        with pytest.raises(Unauthorized):
            engine.register_user(
                "Outsider",
                "expert",
                department_id=tree.finance.department_id,
                actor_id=tree.branch_admin.user_id,
            )

    def test_child_organization_needs_parent_in_scope(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        grant(engine, tree.branch_admin.user_id, ("Organization", "create"))

        subcity = engine.create_organization(
            "Bole Subcity", "subcity", tree.branch.organization_id, actor_id=tree.branch_admin.user_id
        )
        assert subcity.parent_id == tree.branch.organization_id

        with pytest.raises(Unauthorized):
            engine.create_organization(
                "Rogue Branch", "branch", tree.hq.organization_id, actor_id=tree.branch_admin.user_id
            )

    def test_role_assignment_needs_user_update(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        role = engine.create_role("Auditor")

        with pytest.raises(Unauthorized):
            engine.assign_role(tree.analyst.user_id, role.role_id, actor_id=tree.lead.user_id)

        grant(engine, tree.lead.user_id, ("User", "update"))
        user = engine.assign_role(tree.analyst.user_id, role.role_id, actor_id=tree.lead.user_id)
        assert role.role_id in user.role_ids


class TestStructureThroughEngine:
    def test_update_organization_is_audited(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        renamed = engine.update_organization(tree.branch.organization_id, name="Bole Branch")

        assert renamed.name == "Bole Branch"
        record = engine.list_audit(limit=1)[0]
        assert record.resource == "Organization"
        assert engine.render_audit(record.audit_id).changed_fields == ["name"]

    def test_sector_rules(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        with pytest.raises(InvalidOwnerType):
            engine.create_sector("Retail", tree.branch.organization_id)

        sector = engine.rename_sector(tree.operations.sector_id, "Core Operations")
        assert sector.name == "Core Operations"

    def test_department_moves_into_sector(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        moved = engine.update_department(tree.hr.department_id, sector_id=tree.operations.sector_id)

        assert moved.sector_id == tree.operations.sector_id
        assert engine.scope_set(tree.director.user_id).department_ids == {tree.finance.department_id}

    def test_empty_entities_can_be_deleted(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        engine.delete_team(tree.recruitment.team_id)
        engine.delete_department(tree.hr.department_id)

        with pytest.raises(NotFound):
            engine.get_department(tree.hr.department_id)
        assert [o.organization_id for o in engine.list_organizations()] == [
            tree.hq.organization_id,
            tree.branch.organization_id,
        ]

    def test_team_membership_operations(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        team = engine.assign_team_leader(tree.recruitment.team_id, tree.analyst.user_id)

        assert team.team_leader_id == tree.analyst.user_id
        assert tree.analyst.user_id not in engine.get_team(tree.payments.team_id).members
        assert engine.get_user(tree.analyst.user_id).team_id == tree.recruitment.team_id

        team = engine.remove_team_member(tree.recruitment.team_id, tree.analyst.user_id)
        assert team.members == []
        assert team.team_leader_id is None
        assert engine.get_user(tree.analyst.user_id).team_id is None

    def test_team_change_audits_every_entity_touched(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        engine.add_team_member(tree.recruitment.team_id, tree.analyst.user_id)

        touched = [(r.resource, r.resource_id) for r in reversed(engine.list_audit(limit=3))]
        assert touched == [
            ("Team", tree.recruitment.team_id),
            ("Team", tree.payments.team_id),
            ("User", tree.analyst.user_id),
        ]
        assert engine.list_audit(limit=1)[0].after["team_id"] == tree.recruitment.team_id


class TestPermissionQueries:
    def test_effective_permissions_merge_roles(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        grant(engine, tree.lead.user_id, ("Team", "create"), ("User", "view"))
        grant(engine, tree.lead.user_id, ("User", "view"), ("Report", "view"))

        held = engine.effective_permissions(tree.lead.user_id)

        assert sorted((p.resource, p.action.value) for p in held) == [
            ("Report", "view"),
            ("Team", "create"),
            ("User", "view"),
        ]
        assert engine.effective_permissions(tree.analyst.user_id) == []
        with pytest.raises(NotFound):
            engine.effective_permissions("usr-404")

    def test_delegation_is_not_listed_as_a_permission(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        engine.delegate(tree.director.user_id, tree.analyst.user_id, {"can_manage_teams": True})

        assert engine.effective_permissions(tree.analyst.user_id) == []
        assert engine.can_perform(tree.analyst.user_id, "Team", "create")

    def test_can_perform_any(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        grant(engine, tree.lead.user_id, ("User", "view"))

        assert engine.can_perform_any(tree.lead.user_id, [("Team", "delete"), ("user", "view")])
        assert not engine.can_perform_any(tree.lead.user_id, [("Team", "delete"), ("Role", "create")])
        assert not engine.can_perform_any(tree.lead.user_id, [])
        assert engine.can_perform_any(tree.admin.user_id, [("Anything", "delete")])

    def test_can_perform_any_counts_delegations(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        engine.delegate(tree.director.user_id, tree.analyst.user_id, {"can_manage_teams": True})

        assert engine.can_perform_any(tree.analyst.user_id, [("Role", "create"), ("Team", "update")])


def test_second_engine_sees_writes_from_the_first(
    engine: OrgAuthority, tree: SimpleNamespace, temp_db: Path, clock: FrozenClock
) -> None:
    other = OrgAuthority(temp_db, clock=clock)

    engine.create_organization("Adama Branch", "branch", tree.hq.organization_id)

    assert len(other.list_organizations()) == 3
    other.create_organization("Hawassa Branch", "branch", tree.hq.organization_id)
    assert len(engine.list_organizations()) == 4
    assert engine.verify_audit_chain() == other.verify_audit_chain()


def test_operations_are_counted(engine: OrgAuthority, tree: SimpleNamespace) -> None:
    failures = operations_total.labels(operation="create_team", status="failure")
    before = failures._value.get()

    with pytest.raises(Unauthorized):
        engine.create_team("Shadow", tree.finance.department_id, actor_id=tree.analyst.user_id)

    assert failures._value.get() == before + 1


def test_department_delete_races_team_creation(engine: OrgAuthority, tree: SimpleNamespace) -> None:
    engine.delete_team(tree.recruitment.team_id)
    version = engine.event_store.get_stream_version(DIRECTORY_STREAM)
    stale = engine.structure_handlers.handle_delete_department(
        DeleteDepartment(department_id=tree.hr.department_id),
        "cmd-race",
        None,
        engine.structure,
        engine.users,
        version,
    )

    team = engine.create_team("Onboarding", tree.hr.department_id)

    with pytest.raises(StreamVersionConflict):
        engine.event_store.append(DIRECTORY_STREAM, version, stale)
    assert engine.get_department(tree.hr.department_id).name == "Human Resources"
    assert engine.get_team(team.team_id).department_id == tree.hr.department_id
