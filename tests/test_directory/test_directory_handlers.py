"""
Tests for directory operations: users, roles and permissions

Driven through the engine as the system actor, so only the directory
invariants are under test here; permission and scope checks have their own
tests.
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from org_authority.directory.models import AccessLevel, UserOrganizationType, UserStatus
from org_authority.engine import OrgAuthority
from org_authority.kernel.errors import HasDependents, InvalidPlacement, NotFound, ReportingCycle
from org_authority.kernel.time import FrozenClock


class TestUsers:
    def test_register_fills_in_placement(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        user = engine.register_user(
            "Meron Haile", "expert", email="meron@example.et", team_id=tree.payments.team_id
        )

        assert user.team_id == tree.payments.team_id
        assert user.department_id == tree.finance.department_id
        assert user.organization_id == tree.hq.organization_id
        assert user.organization_type == UserOrganizationType.HEAD_OFFICE
        assert user.status == UserStatus.PENDING

    def test_new_access_level_revalidates_placement(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        with pytest.raises(InvalidPlacement):
            engine.update_user(tree.analyst.user_id, access_level="branch_admin")

        promoted = engine.update_user(tree.analyst.user_id, access_level="team_leader", status="active")
        assert promoted.access_level == AccessLevel.TEAM_LEADER
        assert promoted.department_id == tree.finance.department_id

    def test_update_leaves_unset_fields_alone(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        updated = engine.update_user(tree.clerk.user_id, status="active")

        assert updated.status == UserStatus.ACTIVE
        assert updated.full_name == tree.clerk.full_name
        assert updated.department_id == tree.branch_services.department_id

    def test_place_user_replaces_all_fields(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        moved = engine.place_user(tree.clerk.user_id, department_id=tree.hr.department_id)

        assert moved.department_id == tree.hr.department_id
        assert moved.organization_id == tree.hq.organization_id
        assert moved.organization_type == UserOrganizationType.HEAD_OFFICE
        assert moved.sector_id is None

    def test_reports_to_cycle_is_rejected(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        engine.set_reports_to(tree.analyst.user_id, tree.lead.user_id)
        engine.set_reports_to(tree.lead.user_id, tree.director.user_id)

        with pytest.raises(ReportingCycle):
            engine.set_reports_to(tree.lead.user_id, tree.lead.user_id)

        cleared = engine.set_reports_to(tree.analyst.user_id, None)
        assert cleared.reports_to_id is None

    def test_managed_entities_must_exist(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        with pytest.raises(NotFound):
            engine.assign_managed_entities(tree.director.user_id, department_ids=["dept-404"])

        user = engine.assign_managed_entities(
            tree.director.user_id,
            department_ids=[tree.hr.department_id, tree.finance.department_id, tree.hr.department_id],
        )
        assert user.managed_department_ids == sorted(
            [tree.finance.department_id, tree.hr.department_id]
        )

    def test_delete_blocked_by_reports_and_membership(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        engine.set_reports_to(tree.analyst.user_id, tree.lead.user_id)

        with pytest.raises(HasDependents) as exc_info:
            engine.delete_user(tree.lead.user_id)
        assert exc_info.value.dependents == {
            "reports": [tree.analyst.user_id],
            "teams": [tree.payments.team_id],
        }

        engine.delete_user(tree.clerk.user_id)
        with pytest.raises(NotFound):
            engine.get_user(tree.clerk.user_id)

    def test_delegator_with_delegation_in_force_cannot_be_deleted(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        delegation = engine.delegate(tree.director.user_id, tree.analyst.user_id, {"can_manage_teams": True})

        with pytest.raises(HasDependents) as exc_info:
            engine.delete_user(tree.director.user_id)
        assert exc_info.value.dependents == {"delegations": [delegation.delegation_id]}
        assert engine.can_perform(tree.analyst.user_id, "Team", "create")

        engine.revoke(tree.analyst.user_id)
        engine.delete_user(tree.director.user_id)
        assert not engine.can_perform(tree.analyst.user_id, "Team", "create")

    def test_delegatee_with_delegation_in_force_cannot_be_deleted(
        self, engine: OrgAuthority, tree: SimpleNamespace, clock: FrozenClock
    ) -> None:
        engine.remove_team_member(tree.payments.team_id, tree.analyst.user_id)
        delegation = engine.delegate(
            tree.director.user_id,
            tree.analyst.user_id,
            {"can_manage_teams": True},
            end_date=clock.now() + timedelta(days=1),
        )

        with pytest.raises(HasDependents) as exc_info:
            engine.delete_user(tree.analyst.user_id)
        assert exc_info.value.dependents == {"delegations": [delegation.delegation_id]}

        # Lapsed but not yet swept: no longer in force
        clock.advance(days=1)
        engine.delete_user(tree.analyst.user_id)
        granted = engine.history(tree.director.user_id).delegated_by
        assert [v.delegation.delegation_id for v in granted] == [delegation.delegation_id]


class TestTeamPlacement:
    """A user's placed team and the member list of that team always agree"""

    def test_registering_in_a_team_adds_the_member(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        user = engine.register_user("Meron Haile", "expert", team_id=tree.payments.team_id)

        assert user.user_id in engine.get_team(tree.payments.team_id).members
        record = engine.list_audit(limit=1)[0]
        assert (record.resource, record.resource_id) == ("Team", tree.payments.team_id)

    def test_adding_to_another_team_moves_placement_too(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        user = engine.register_user("Meron Haile", "expert", team_id=tree.payments.team_id)

        engine.add_team_member(tree.recruitment.team_id, user.user_id)

        moved = engine.get_user(user.user_id)
        assert moved.team_id == tree.recruitment.team_id
        assert moved.department_id == tree.hr.department_id
        assert moved.sector_id is None
        assert user.user_id in engine.get_team(tree.recruitment.team_id).members
        assert user.user_id not in engine.get_team(tree.payments.team_id).members

    def test_placing_in_another_team_moves_membership_too(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        engine.place_user(tree.analyst.user_id, team_id=tree.recruitment.team_id)

        assert engine.get_user(tree.analyst.user_id).team_id == tree.recruitment.team_id
        assert engine.get_team(tree.recruitment.team_id).members == [tree.analyst.user_id]
        assert engine.get_team(tree.payments.team_id).members == [tree.lead.user_id]

    def test_removing_a_member_clears_the_placement(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        engine.remove_team_member(tree.payments.team_id, tree.analyst.user_id)

        analyst = engine.get_user(tree.analyst.user_id)
        assert analyst.team_id is None
        assert analyst.department_id == tree.finance.department_id
        assert engine.get_team(tree.payments.team_id).members == [tree.lead.user_id]

    def test_seeded_members_are_placed(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        for user_id in engine.get_team(tree.payments.team_id).members:
            assert engine.get_user(user_id).team_id == tree.payments.team_id


class TestRolesAndPermissions:
    def test_role_lifecycle(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        view = engine.create_permission("Report", "view", "Read reports")
        create = engine.create_permission("Report", "create")
        role = engine.create_role("Reporter", permission_ids=[view.permission_id])

        role = engine.grant_permission(role.role_id, create.permission_id)
        assert role.permission_ids == sorted([view.permission_id, create.permission_id])

        role = engine.revoke_permission(role.role_id, view.permission_id)
        assert role.permission_ids == [create.permission_id]

        renamed = engine.update_role(role.role_id, name="Report Author")
        assert renamed.name == "Report Author"
        assert renamed.permission_ids == [create.permission_id]

    def test_role_with_unknown_permission_is_rejected(self, engine: OrgAuthority) -> None:
        with pytest.raises(NotFound):
            engine.create_role("Broken", permission_ids=["perm-404"])

    def test_assigned_role_cannot_be_deleted(self, engine: OrgAuthority, tree: SimpleNamespace) -> None:
        role = engine.create_role("Clerk")
        engine.assign_role(tree.clerk.user_id, role.role_id)

        with pytest.raises(HasDependents):
            engine.delete_role(role.role_id)

        engine.unassign_role(tree.clerk.user_id, role.role_id)
        engine.delete_role(role.role_id)
        assert engine.list_roles() == []

    def test_granted_permission_cannot_be_deleted(self, engine: OrgAuthority) -> None:
        permission = engine.create_permission("Team", "view")
        role = engine.create_role("Viewer", permission_ids=[permission.permission_id])

        with pytest.raises(HasDependents) as exc_info:
            engine.delete_permission(permission.permission_id)
        assert exc_info.value.dependents == {"roles": [role.role_id]}

        engine.revoke_permission(role.role_id, permission.permission_id)
        engine.delete_permission(permission.permission_id)
        assert engine.list_permissions() == []

    def test_assigning_a_role_twice_keeps_one_copy(
        self, engine: OrgAuthority, tree: SimpleNamespace
    ) -> None:
        role = engine.create_role("Clerk")

        engine.assign_role(tree.clerk.user_id, role.role_id)
        user = engine.assign_role(tree.clerk.user_id, role.role_id)

        assert user.role_ids == [role.role_id]
