"""
Org Authority CLI

Command-line interface for the hierarchy-aware access control engine.
Provides commands for the organizational tree, users, roles, delegations
and the audit trail.

Usage:
    orgauth init --db authority.db
    orgauth org create --name "Head Office" --type head_office
    orgauth department create --name Finance --org <id>
    orgauth user register --name "Abebe Kebede" --level directorate --org <id>
    orgauth can --user <id> --resource Team --action create
    orgauth delegate grant --from <id> --to <id> --teams --days 14
    orgauth audit verify
"""

import json
import time
from collections.abc import Callable
from datetime import timedelta
from functools import wraps
from pathlib import Path
from typing import Any, Optional, TypeVar

import typer
from typing_extensions import Annotated

from org_authority.delegation.models import DelegatedAuthority
from org_authority.engine import OrgAuthority
from org_authority.hierarchy.chart import TreeNode
from org_authority.kernel.errors import OrgAuthorityError
from org_authority.kernel.logging import configure_logging, get_logger, is_production
from org_authority.kernel.metrics import start_metrics_server

# Logs go to stderr, so stdout stays clean for JSON output
configure_logging(json_output=is_production(), log_level="WARNING")

logger = get_logger(__name__)

app = typer.Typer(
    name="orgauth",
    help="Org Authority - hierarchy-aware access control & delegation",
    add_completion=False,
)

# Sub-apps
org_app = typer.Typer(help="Organization commands")
sector_app = typer.Typer(help="Sector commands")
department_app = typer.Typer(help="Department commands")
team_app = typer.Typer(help="Team commands")
user_app = typer.Typer(help="User directory commands")
role_app = typer.Typer(help="Role commands")
permission_app = typer.Typer(help="Permission catalogue commands")
delegate_app = typer.Typer(help="Delegation commands")
audit_app = typer.Typer(help="Audit trail commands")

app.add_typer(org_app, name="org")
app.add_typer(sector_app, name="sector")
app.add_typer(department_app, name="department")
app.add_typer(team_app, name="team")
app.add_typer(user_app, name="user")
app.add_typer(role_app, name="role")
app.add_typer(permission_app, name="permission")
app.add_typer(delegate_app, name="delegate")
app.add_typer(audit_app, name="audit")

# Global state
DEFAULT_DB = Path(".orgauth.db")

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", envvar="ORG_AUTHORITY_DB", help="Database path"),
]
ActorOption = Annotated[
    Optional[str],
    typer.Option("--actor", help="Acting user ID (omit to act as the system)"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]

F = TypeVar("F", bound=Callable[..., Any])


def get_engine(db_path: Optional[Path] = None) -> OrgAuthority:
    """Get engine instance for an existing database"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'orgauth init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return OrgAuthority(str(db))


def reports_errors(func: F) -> F:
    """Turn domain errors into a one-line message and exit code 1"""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except OrgAuthorityError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from e

    return wrapper  # type: ignore[return-value]


def echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, indent=2, default=str))


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(envvar="ORG_AUTHORITY_DB", help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    OrgAuthority(str(db))
    typer.echo(f"✓ Initialized database: {db}")


# Organization commands


@org_app.command("create")
@reports_errors
def org_create(
    name: Annotated[str, typer.Option("--name", help="Organization name")],
    organization_type: Annotated[
        str,
        typer.Option("--type", help="Organization type (head_office, branch, subcity, woreda)"),
    ],
    parent: Annotated[
        Optional[str],
        typer.Option("--parent", help="Parent organization ID"),
    ] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Create an organization"""
    engine = get_engine(db)

    organization = engine.create_organization(name, organization_type, parent, actor_id=actor)

    typer.echo(f"✓ Created organization: {organization.organization_id}")
    typer.echo(f"  Name: {organization.name}")
    typer.echo(f"  Type: {organization.organization_type.value}")
    if organization.parent_id:
        typer.echo(f"  Parent: {organization.parent_id}")


@org_app.command("delete")
@reports_errors
def org_delete(
    organization_id: Annotated[str, typer.Option("--id", help="Organization ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delete an organization with no dependents"""
    engine = get_engine(db)
    engine.delete_organization(organization_id, actor_id=actor)
    typer.echo(f"✓ Deleted organization: {organization_id}")


@org_app.command("list")
def org_list(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List all organizations"""
    engine = get_engine(db)
    organizations = engine.list_organizations()

    if json_output:
        echo_json([o.model_dump(mode="json") for o in organizations])
        return

    if not organizations:
        typer.echo("No organizations")
        return

    typer.echo(f"Organizations ({len(organizations)}):")
    for organization in organizations:
        parent = f" (parent {organization.parent_id})" if organization.parent_id else ""
        typer.echo(
            f"  {organization.organization_id}: {organization.name} "
            f"[{organization.organization_type.value}]{parent}"
        )


# Sector commands


@sector_app.command("create")
@reports_errors
def sector_create(
    name: Annotated[str, typer.Option("--name", help="Sector name")],
    organization_id: Annotated[str, typer.Option("--org", help="Owning head-office organization ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Create a sector"""
    engine = get_engine(db)
    sector = engine.create_sector(name, organization_id, actor_id=actor)
    typer.echo(f"✓ Created sector: {sector.sector_id}")
    typer.echo(f"  Name: {sector.name}")
    typer.echo(f"  Organization: {sector.organization_id}")


@sector_app.command("delete")
@reports_errors
def sector_delete(
    sector_id: Annotated[str, typer.Option("--id", help="Sector ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delete a sector with no dependents"""
    engine = get_engine(db)
    engine.delete_sector(sector_id, actor_id=actor)
    typer.echo(f"✓ Deleted sector: {sector_id}")


# Department commands


@department_app.command("create")
@reports_errors
def department_create(
    name: Annotated[str, typer.Option("--name", help="Department name")],
    organization_id: Annotated[str, typer.Option("--org", help="Owning organization ID")],
    sector_id: Annotated[
        Optional[str],
        typer.Option("--sector", help="Sector ID (same organization)"),
    ] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Create a department"""
    engine = get_engine(db)
    department = engine.create_department(name, organization_id, sector_id, actor_id=actor)
    typer.echo(f"✓ Created department: {department.department_id}")
    typer.echo(f"  Name: {department.name}")
    typer.echo(f"  Organization: {department.organization_id}")
    if department.sector_id:
        typer.echo(f"  Sector: {department.sector_id}")


@department_app.command("delete")
@reports_errors
def department_delete(
    department_id: Annotated[str, typer.Option("--id", help="Department ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delete a department with no dependents"""
    engine = get_engine(db)
    engine.delete_department(department_id, actor_id=actor)
    typer.echo(f"✓ Deleted department: {department_id}")


# Team commands


@team_app.command("create")
@reports_errors
def team_create(
    name: Annotated[str, typer.Option("--name", help="Team name")],
    department_id: Annotated[str, typer.Option("--department", help="Department ID")],
    leader: Annotated[
        Optional[str],
        typer.Option("--leader", help="Team leader user ID"),
    ] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Create a team"""
    engine = get_engine(db)
    team = engine.create_team(name, department_id, leader, actor_id=actor)
    typer.echo(f"✓ Created team: {team.team_id}")
    typer.echo(f"  Name: {team.name}")
    typer.echo(f"  Department: {team.department_id}")
    if team.team_leader_id:
        typer.echo(f"  Leader: {team.team_leader_id}")


@team_app.command("add-member")
@reports_errors
def team_add_member(
    team_id: Annotated[str, typer.Option("--id", help="Team ID")],
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Add a member to a team"""
    engine = get_engine(db)
    team = engine.add_team_member(team_id, user_id, actor_id=actor)
    typer.echo(f"✓ Added {user_id} to team {team.team_id} ({len(team.members)} members)")


@team_app.command("delete")
@reports_errors
def team_delete(
    team_id: Annotated[str, typer.Option("--id", help="Team ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delete a team with no dependents"""
    engine = get_engine(db)
    engine.delete_team(team_id, actor_id=actor)
    typer.echo(f"✓ Deleted team: {team_id}")


# User commands


@user_app.command("register")
@reports_errors
def user_register(
    full_name: Annotated[str, typer.Option("--name", help="Full name")],
    level: Annotated[str, typer.Option("--level", help="Access level")] = "public",
    email: Annotated[Optional[str], typer.Option("--email", help="Email address")] = None,
    organization_id: Annotated[Optional[str], typer.Option("--org", help="Organization ID")] = None,
    sector_id: Annotated[Optional[str], typer.Option("--sector", help="Sector ID")] = None,
    department_id: Annotated[
        Optional[str], typer.Option("--department", help="Department ID")
    ] = None,
    team_id: Annotated[Optional[str], typer.Option("--team", help="Team ID")] = None,
    status: Annotated[str, typer.Option("--status", help="pending, active or suspended")] = "pending",
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Register a user"""
    engine = get_engine(db)
    user = engine.register_user(
        full_name,
        level,
        email=email,
        organization_id=organization_id,
        sector_id=sector_id,
        department_id=department_id,
        team_id=team_id,
        status=status,
        actor_id=actor,
    )
    typer.echo(f"✓ Registered user: {user.user_id}")
    typer.echo(f"  Access level: {user.access_level.value}")
    typer.echo(f"  Status: {user.status.value}")


@user_app.command("place")
@reports_errors
def user_place(
    user_id: Annotated[str, typer.Option("--id", help="User ID")],
    organization_id: Annotated[Optional[str], typer.Option("--org", help="Organization ID")] = None,
    sector_id: Annotated[Optional[str], typer.Option("--sector", help="Sector ID")] = None,
    department_id: Annotated[
        Optional[str], typer.Option("--department", help="Department ID")
    ] = None,
    team_id: Annotated[Optional[str], typer.Option("--team", help="Team ID")] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Replace a user's placement in the tree"""
    engine = get_engine(db)
    user = engine.place_user(
        user_id, organization_id, sector_id, department_id, team_id, actor_id=actor
    )
    typer.echo(f"✓ Placed user: {user.user_id}")
    for label, value in (
        ("Organization", user.organization_id),
        ("Sector", user.sector_id),
        ("Department", user.department_id),
        ("Team", user.team_id),
    ):
        if value:
            typer.echo(f"  {label}: {value}")


@user_app.command("reports-to")
@reports_errors
def user_reports_to(
    user_id: Annotated[str, typer.Option("--id", help="User ID")],
    manager_id: Annotated[
        Optional[str],
        typer.Option("--manager", help="Manager user ID (omit to clear)"),
    ] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Set or clear a user's direct manager"""
    engine = get_engine(db)
    user = engine.set_reports_to(user_id, manager_id, actor_id=actor)
    typer.echo(f"✓ {user.user_id} reports to {user.reports_to_id or 'nobody'}")


@user_app.command("list")
def user_list(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List all users"""
    engine = get_engine(db)
    users = engine.list_users()

    if json_output:
        echo_json([u.model_dump(mode="json") for u in users])
        return

    if not users:
        typer.echo("No users")
        return

    typer.echo(f"Users ({len(users)}):")
    for user in users:
        typer.echo(f"  {user.user_id}: {user.access_level.value} [{user.status.value}]")


@user_app.command("permissions")
@reports_errors
def user_permissions(
    user_id: Annotated[str, typer.Option("--id", help="User ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List the permissions a user holds through their roles"""
    engine = get_engine(db)
    permissions = engine.effective_permissions(user_id)

    if json_output:
        echo_json([p.model_dump(mode="json") for p in permissions])
        return

    typer.echo(f"Permissions of {user_id} ({len(permissions)}):")
    for permission in permissions:
        typer.echo(f"  {permission.permission_id}: {permission.action.value} {permission.resource}")


# Role & permission commands


@permission_app.command("create")
@reports_errors
def permission_create(
    resource: Annotated[str, typer.Option("--resource", help="Resource name, e.g. User")],
    action: Annotated[str, typer.Option("--action", help="create, view, update or delete")],
    description: Annotated[
        Optional[str], typer.Option("--description", help="Description")
    ] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Create a permission"""
    engine = get_engine(db)
    permission = engine.create_permission(resource, action, description, actor_id=actor)
    typer.echo(f"✓ Created permission: {permission.permission_id}")
    typer.echo(f"  {permission.action.value} {permission.resource}")


@permission_app.command("delete")
@reports_errors
def permission_delete(
    permission_id: Annotated[str, typer.Option("--id", help="Permission ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delete a permission no role grants"""
    engine = get_engine(db)
    engine.delete_permission(permission_id, actor_id=actor)
    typer.echo(f"✓ Deleted permission: {permission_id}")


@permission_app.command("list")
def permission_list(db: DbOption = None) -> None:
    """List the permission catalogue"""
    engine = get_engine(db)
    permissions = engine.list_permissions()

    if not permissions:
        typer.echo("No permissions")
        return

    typer.echo(f"Permissions ({len(permissions)}):")
    for permission in permissions:
        typer.echo(f"  {permission.permission_id}: {permission.action.value} {permission.resource}")


@role_app.command("create")
@reports_errors
def role_create(
    name: Annotated[str, typer.Option("--name", help="Role name")],
    permissions: Annotated[
        str,
        typer.Option("--permissions", help="Permission IDs (comma-separated)"),
    ] = "",
    description: Annotated[
        Optional[str], typer.Option("--description", help="Description")
    ] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Create a role"""
    engine = get_engine(db)
    permission_ids = [p.strip() for p in permissions.split(",") if p.strip()]
    role = engine.create_role(name, description, permission_ids, actor_id=actor)
    typer.echo(f"✓ Created role: {role.role_id}")
    typer.echo(f"  Name: {role.name}")
    typer.echo(f"  Permissions: {len(role.permission_ids)}")


@role_app.command("grant")
@reports_errors
def role_grant(
    role_id: Annotated[str, typer.Option("--id", help="Role ID")],
    permission_id: Annotated[str, typer.Option("--permission", help="Permission ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Add a permission to a role"""
    engine = get_engine(db)
    role = engine.grant_permission(role_id, permission_id, actor_id=actor)
    typer.echo(f"✓ Role {role.role_id} now grants {len(role.permission_ids)} permissions")


@role_app.command("assign")
@reports_errors
def role_assign(
    role_id: Annotated[str, typer.Option("--id", help="Role ID")],
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Assign a role to a user"""
    engine = get_engine(db)
    engine.assign_role(user_id, role_id, actor_id=actor)
    typer.echo(f"✓ Assigned role {role_id} to {user_id}")


@role_app.command("delete")
@reports_errors
def role_delete(
    role_id: Annotated[str, typer.Option("--id", help="Role ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delete a role no user holds"""
    engine = get_engine(db)
    engine.delete_role(role_id, actor_id=actor)
    typer.echo(f"✓ Deleted role: {role_id}")


@role_app.command("list")
def role_list(db: DbOption = None) -> None:
    """List roles"""
    engine = get_engine(db)
    roles = engine.list_roles()

    if not roles:
        typer.echo("No roles")
        return

    typer.echo(f"Roles ({len(roles)}):")
    for role in roles:
        typer.echo(f"  {role.role_id}: {role.name} ({len(role.permission_ids)} permissions)")


# Authority & hierarchy commands


@app.command()
@reports_errors
def can(
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    resource: Annotated[str, typer.Option("--resource", help="Resource name")],
    action: Annotated[str, typer.Option("--action", help="Action name")],
    db: DbOption = None,
) -> None:
    """Check whether a user may perform an action (exit code 2 when denied)"""
    engine = get_engine(db)
    decision = engine.decide(user_id, resource, action)

    if decision.allowed:
        via = f" via {decision.path.value}"
        if decision.delegation_id:
            via += f" ({decision.delegation_id})"
        typer.echo(f"✓ allowed{via}")
    else:
        typer.echo("✗ denied")
        raise typer.Exit(2)


@app.command("can-any")
@reports_errors
def can_any(
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    checks: Annotated[
        str,
        typer.Option("--checks", help="Resource:action pairs (comma-separated), e.g. Team:create,User:update"),
    ],
    db: DbOption = None,
) -> None:
    """Check whether a user may perform any of several actions (exit code 2 when denied)"""
    pairs = []
    for check in (c.strip() for c in checks.split(",") if c.strip()):
        resource, sep, action = check.partition(":")
        if not sep or not resource or not action:
            raise typer.BadParameter(f"expected Resource:action, got {check!r}", param_hint="--checks")
        pairs.append((resource, action))

    engine = get_engine(db)
    if engine.can_perform_any(user_id, pairs):
        typer.echo("✓ allowed")
    else:
        typer.echo("✗ denied")
        raise typer.Exit(2)


@app.command()
@reports_errors
def subordinates(
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List the users inside a user's scope"""
    engine = get_engine(db)
    users = engine.get_subordinates(user_id)

    if json_output:
        echo_json([u.model_dump(mode="json") for u in users])
        return

    typer.echo(f"Subordinates of {user_id}: {len(users)}")
    for user in users:
        typer.echo(f"  {user.user_id}: {user.access_level.value}")


@app.command()
@reports_errors
def chain(
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    db: DbOption = None,
) -> None:
    """Show a user's manager chain, nearest first"""
    engine = get_engine(db)
    managers = engine.get_manager_chain(user_id)

    if not managers:
        typer.echo(f"{user_id} reports to nobody")
        return

    typer.echo(f"Manager chain of {user_id}:")
    for depth, manager in enumerate(managers, start=1):
        typer.echo(f"  {depth}. {manager.user_id} ({manager.access_level.value})")


def _print_tree(node: TreeNode, depth: int = 0) -> None:
    typer.echo(f"{'  ' * depth}{node.name} [{node.node_type}] {node.node_id}")
    for child in node.children:
        _print_tree(child, depth + 1)


@app.command()
@reports_errors
def chart(
    user_id: Annotated[
        Optional[str],
        typer.Option("--user", help="Prune the chart to this user's scope"),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Print the organizational chart"""
    engine = get_engine(db)
    root = engine.get_organizational_chart(user_id)

    if json_output:
        echo_json(root.model_dump(mode="json"))
        return

    for child in root.children:
        _print_tree(child)
    if not root.children:
        typer.echo("Empty chart")


# Delegation commands


@delegate_app.command("grant")
@reports_errors
def delegate_grant(
    delegator: Annotated[str, typer.Option("--from", help="Delegator user ID")],
    delegatee: Annotated[str, typer.Option("--to", help="Delegatee user ID")],
    teams: Annotated[bool, typer.Option("--teams", help="Lend can_manage_teams")] = False,
    departments: Annotated[
        bool, typer.Option("--departments", help="Lend can_manage_departments")
    ] = False,
    reports: Annotated[bool, typer.Option("--reports", help="Lend can_approve_reports")] = False,
    days: Annotated[
        Optional[int],
        typer.Option("--days", help="Days until the grant lapses (omit for until revoked)"),
    ] = None,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Justification")] = None,
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Delegate authority to another user"""
    engine = get_engine(db)
    end_date = engine.clock.now() + timedelta(days=days) if days is not None else None

    delegation = engine.delegate(
        delegator,
        delegatee,
        DelegatedAuthority(
            can_manage_teams=teams,
            can_manage_departments=departments,
            can_approve_reports=reports,
        ),
        reason=reason,
        end_date=end_date,
        actor_id=actor,
    )

    typer.echo(f"✓ Created delegation: {delegation.delegation_id}")
    typer.echo(f"  From: {delegation.delegator_id}")
    typer.echo(f"  To: {delegation.delegatee_id}")
    typer.echo(f"  Authority: {', '.join(delegation.authority.capabilities())}")
    typer.echo(f"  Ends: {delegation.end_date or 'when revoked'}")


@delegate_app.command("revoke")
@reports_errors
def delegate_revoke(
    delegatee: Annotated[str, typer.Option("--to", help="Delegatee user ID")],
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Revoke a user's active delegation"""
    engine = get_engine(db)
    delegation = engine.revoke(delegatee, actor_id=actor)

    if delegation is None:
        typer.echo(f"No active delegation for {delegatee}")
        return
    typer.echo(f"✓ Revoked delegation: {delegation.delegation_id}")


@delegate_app.command("history")
def delegate_history(
    user_id: Annotated[str, typer.Option("--user", help="User ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show delegations a user granted and received"""
    engine = get_engine(db)
    history = engine.history(user_id)

    if json_output:
        echo_json(history.model_dump(mode="json"))
        return

    for title, views in (
        ("Delegated by", history.delegated_by),
        ("Delegated to", history.delegated_to),
    ):
        typer.echo(f"{title} {user_id}: {len(views)}")
        for view in views:
            d = view.delegation
            typer.echo(
                f"  {d.delegation_id}: {d.delegator_id} -> {d.delegatee_id} "
                f"[{view.effective_status.value}]"
            )


@delegate_app.command("sweep")
@reports_errors
def delegate_sweep(
    actor: ActorOption = None,
    db: DbOption = None,
) -> None:
    """Record expiry for lapsed delegations"""
    engine = get_engine(db)
    expired = engine.sweep_expired_delegations(actor_id=actor)
    typer.echo(f"✓ Marked {len(expired)} delegations expired")


# Audit commands


@audit_app.command("list")
def audit_list(
    resource: Annotated[Optional[str], typer.Option("--resource", help="Filter by resource")] = None,
    actor_id: Annotated[Optional[str], typer.Option("--actor", help="Filter by actor")] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum records")] = 20,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List audit records, newest first"""
    engine = get_engine(db)
    records = engine.list_audit(resource=resource, actor_id=actor_id, limit=limit)

    if json_output:
        echo_json([r.model_dump(mode="json") for r in records])
        return

    if not records:
        typer.echo("No audit records")
        return

    for record in records:
        typer.echo(
            f"  #{record.sequence} {record.timestamp.isoformat()} "
            f"{record.actor_user_id or 'system'} {record.action} "
            f"{record.resource} {record.resource_id or ''}".rstrip()
        )


@audit_app.command("show")
@reports_errors
def audit_show(
    audit_id: Annotated[str, typer.Option("--id", help="Audit record ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show one audit record with its field changes"""
    engine = get_engine(db)
    view = engine.render_audit(audit_id)

    if json_output:
        echo_json(view.model_dump(mode="json"))
        return

    record = view.record
    typer.echo(f"\nAudit record: {record.audit_id} (#{record.sequence})")
    typer.echo(f"  Actor: {record.actor_user_id or 'system'}")
    typer.echo(f"  Action: {record.action} {record.resource} {record.resource_id or ''}")
    typer.echo(f"  At: {record.timestamp.isoformat()}")
    if view.changes:
        typer.echo("  Changes:")
        for change in view.changes:
            typer.echo(f"    {change.field}: {change.before!r} -> {change.after!r}")


@audit_app.command("verify")
@reports_errors
def audit_verify(db: DbOption = None) -> None:
    """Verify the audit hash chain"""
    engine = get_engine(db)
    count = engine.verify_audit_chain()
    typer.echo(f"✓ Audit chain intact ({count} records)")


# Operations


@app.command()
def metrics(
    port: Annotated[int, typer.Option("--port", help="Port to listen on")] = 9090,
) -> None:
    """Serve Prometheus metrics at /metrics until interrupted"""
    logger.warning("Starting Prometheus metrics server", port=port)
    start_metrics_server(port=port)
    typer.echo(f"Serving metrics on http://0.0.0.0:{port}/metrics")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.warning("Shutting down metrics server")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
