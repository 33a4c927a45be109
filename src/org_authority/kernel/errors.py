"""
Custom exceptions for org-authority

Well-defined error hierarchy enables precise error handling at the caller:
the HTTP layer maps every recoverable error to a 4xx response, while
CorruptHierarchy and AuditChainBroken signal data corruption.
"""


class OrgAuthorityError(Exception):
    """Base exception for all org-authority errors"""

    pass


class EventStoreError(OrgAuthorityError):
    """Base class for event store errors"""

    pass


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates a concurrent write to the same stream - the caller should
    reload and decide whether to retry. The core never retries on its own.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class NotFound(OrgAuthorityError):
    """Raised when a referenced entity does not exist"""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class Unauthorized(OrgAuthorityError):
    """Raised when an actor may not perform an action on a resource"""

    def __init__(self, actor_id: str | None, resource: str, action: str, reason: str = "") -> None:
        self.actor_id = actor_id
        self.resource = resource
        self.action = action
        self.reason = reason
        message = f"User {actor_id} may not {action} {resource}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CorruptHierarchy(OrgAuthorityError):
    """
    Raised when stored hierarchy links form a cycle or dangle

    This is never a user error - it means the stored data is corrupt.
    It is logged as a severity-high operational alert and must not be
    silently truncated or resolved.
    """

    def __init__(self, kind: str, path: list[str], reason: str = "cycle") -> None:
        self.kind = kind
        self.path = path
        self.reason = reason
        super().__init__(
            f"Corrupt {kind} hierarchy ({reason}): {' -> '.join(path)}"
        )


class AuditChainBroken(OrgAuthorityError):
    """Raised when the audit hash chain does not verify"""

    def __init__(self, audit_id: str, sequence: int) -> None:
        self.audit_id = audit_id
        self.sequence = sequence
        super().__init__(
            f"Audit record {audit_id} (sequence {sequence}) does not match its digest chain"
        )


class InvariantViolation(OrgAuthorityError):
    """
    Raised when a domain invariant would be violated

    Invariants are the structural constraints that MUST hold:
    acyclic trees, owner types, one active delegation per delegatee.
    """

    pass


# Structure Store errors


class InvalidParent(InvariantViolation):
    """Raised when a parent link is missing or would create a cycle"""

    def __init__(self, organization_id: str | None, parent_id: str, reason: str) -> None:
        self.organization_id = organization_id
        self.parent_id = parent_id
        self.reason = reason
        super().__init__(f"Invalid parent {parent_id}: {reason}")


class HierarchyTooDeep(InvariantViolation):
    """Raised when an organization would sit deeper than the policy bound"""

    def __init__(self, depth: int, max_depth: int) -> None:
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Organization depth {depth} exceeds maximum {max_depth}"
        )


class InvalidOwnerType(InvariantViolation):
    """Raised when an organization of the wrong type would own a sector"""

    def __init__(self, organization_id: str, organization_type: str, required: str = "head_office") -> None:
        self.organization_id = organization_id
        self.organization_type = organization_type
        self.required = required
        super().__init__(
            f"Organization {organization_id} is {organization_type}, "
            f"only {required} organizations may own sectors"
        )


class OwnerMismatch(InvariantViolation):
    """Raised when implied and declared owners of an entity disagree"""

    def __init__(self, kind: str, expected_owner: str | None, actual_owner: str | None) -> None:
        self.kind = kind
        self.expected_owner = expected_owner
        self.actual_owner = actual_owner
        super().__init__(
            f"{kind} owner mismatch: expected {expected_owner}, got {actual_owner}"
        )


class HasDependents(InvariantViolation):
    """Raised when deleting an entity that other records still reference"""

    def __init__(self, kind: str, entity_id: str, dependents: dict[str, list[str]]) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.dependents = dependents
        summary = ", ".join(f"{len(ids)} {name}" for name, ids in dependents.items())
        super().__init__(
            f"{kind} {entity_id} still has dependents ({summary}) - delete them first"
        )


# Directory errors


class InvalidPlacement(InvariantViolation):
    """Raised when a user's placement does not fit their access level"""

    def __init__(self, access_level: str, field: str) -> None:
        self.access_level = access_level
        self.field = field
        super().__init__(
            f"Access level {access_level} cannot be placed by {field}"
        )


class ReportingCycle(InvariantViolation):
    """Raised when a reports-to link would close a loop"""

    def __init__(self, user_id: str, manager_id: str) -> None:
        self.user_id = user_id
        self.manager_id = manager_id
        super().__init__(
            f"User {user_id} reporting to {manager_id} would create a cycle"
        )


class DuplicatePermission(InvariantViolation):
    """Raised when a (resource, action) pair already exists"""

    def __init__(self, resource: str, action: str) -> None:
        self.resource = resource
        self.action = action
        super().__init__(f"Permission {action} on {resource} already exists")


# Delegation errors


class SelfDelegation(InvariantViolation):
    """Raised when a user tries to delegate to themself"""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} cannot delegate authority to themself")


class InsufficientRank(InvariantViolation):
    """Raised when a user's access level is too low for the operation"""

    def __init__(self, user_id: str, access_level: str, required: str) -> None:
        self.user_id = user_id
        self.access_level = access_level
        self.required = required
        super().__init__(
            f"User {user_id} ({access_level}) lacks required rank: {required}"
        )


class ActiveDelegationExists(InvariantViolation):
    """Raised when the delegatee already holds an active delegation"""

    def __init__(self, delegatee_id: str, delegation_id: str) -> None:
        self.delegatee_id = delegatee_id
        self.delegation_id = delegation_id
        super().__init__(
            f"User {delegatee_id} already holds active delegation {delegation_id} - "
            "revoke it before granting another"
        )


class EmptyDelegatedAuthority(InvariantViolation):
    """Raised when a delegation would grant no capability at all"""

    def __init__(self) -> None:
        super().__init__("Delegated authority must grant at least one capability")


class InvalidDelegationWindow(InvariantViolation):
    """Raised when a delegation's end date is not in the future"""

    def __init__(self, end_date: str, now: str) -> None:
        self.end_date = end_date
        self.now = now
        super().__init__(f"Delegation end date {end_date} is not after {now}")
