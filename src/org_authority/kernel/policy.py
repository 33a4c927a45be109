"""
Authority Policy - Tunable parameters of the authority model

The AuthorityPolicy holds the knobs an installation may adjust without
touching code: how deep the organization tree may grow, who may delegate,
and which delegated capability unlocks which (resource, action) pairs.

Fun fact: the capability mapping is the only place where delegation meets
the permission catalogue - everything else about a delegation is just time
bookkeeping.
"""

from pydantic import BaseModel, Field, field_validator


def _default_capabilities() -> dict[str, dict[str, list[str]]]:
    return {
        "can_manage_teams": {"team": ["create", "update", "delete"]},
        "can_manage_departments": {"department": ["create", "update", "delete"]},
        "can_approve_reports": {"report": ["approve"]},
    }


class AuthorityPolicy(BaseModel):
    """
    Validated configuration for the engine

    The defaults reproduce the behaviour the organization has always run
    with; tests override individual fields to exercise edge cases.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    max_hierarchy_depth: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Maximum depth of the organization parent chain (root is depth 1)",
    )

    min_delegator_level: str = Field(
        default="directorate",
        description="Lowest access level whose rank may delegate authority",
    )

    delegation_requires_lower_rank: bool = Field(
        default=True,
        description="Delegatee must rank strictly below the delegator",
    )

    reports_to_requires_higher_rank: bool = Field(
        default=True,
        description="A manager must rank strictly above the user reporting to them",
    )

    super_admin_role_name: str = Field(
        default="Super Admin",
        min_length=1,
        description="Role name that short-circuits every permission check (case-insensitive)",
    )

    delegation_capabilities: dict[str, dict[str, list[str]]] = Field(
        default_factory=_default_capabilities,
        description="Capability flag -> resource -> actions it unlocks",
    )

    model_config = {"frozen": True}

    @field_validator("min_delegator_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        # Local import keeps the kernel importable before the domain packages
        from org_authority.directory.models import AccessLevel

        return AccessLevel(value.lower()).value

    @field_validator("delegation_capabilities")
    @classmethod
    def _normalize_capabilities(
        cls, value: dict[str, dict[str, list[str]]]
    ) -> dict[str, dict[str, list[str]]]:
        return {
            capability: {
                resource.lower(): sorted({action.lower() for action in actions})
                for resource, actions in grants.items()
            }
            for capability, grants in value.items()
        }

    def capability_grants(self, capability: str, resource: str, action: str) -> bool:
        """True if the capability flag unlocks (resource, action), case-insensitively"""
        grants = self.delegation_capabilities.get(capability, {})
        return action.lower() in grants.get(resource.lower(), [])
