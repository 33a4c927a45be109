"""
Test infrastructure components: logging, metrics, retry, policy, ids, time.

These tests verify the production hardening infrastructure works correctly.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from org_authority.kernel.ids import DefaultIdFactory, SequentialIdFactory, generate_id
from org_authority.kernel.logging import (
    LogOperation,
    configure_logging,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from org_authority.kernel.metrics import operations_total, track_operation
from org_authority.kernel.policy import AuthorityPolicy
from org_authority.kernel.retry import retry_on_sqlite_lock
from org_authority.kernel.time import FrozenClock, ensure_utc, parse_timestamp


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        assert get_logger(__name__) is not None

    def test_configure_logging_json(self) -> None:
        configure_logging(json_output=True, log_level="DEBUG")
        assert get_logger(__name__) is not None

    def test_correlation_id(self) -> None:
        cid = get_correlation_id()
        assert cid

        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"

    def test_personal_data_is_redacted(self) -> None:
        redacted = redact_context(
            {"email": "abebe@example.et", "full_name": "Abebe Kebede", "user_id": "usr-1"}
        )

        assert redacted["email"] == "***REDACTED***"
        assert redacted["full_name"] == "***REDACTED***"
        assert redacted["user_id"] == "usr-1"

    def test_log_operation_context_manager(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        with LogOperation(get_logger(__name__), "test_operation", email="x@y.et"):
            pass

    def test_log_operation_with_exception(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        with pytest.raises(ValueError):
            with LogOperation(get_logger(__name__), "failing_operation"):
                raise ValueError("Test error")


class TestMetrics:
    """Test Prometheus metrics helpers."""

    def test_track_operation_counts_success_and_failure(self) -> None:
        @track_operation("metrics_sample")
        def sample(fail: bool) -> str:
            if fail:
                raise RuntimeError("boom")
            return "ok"

        success = operations_total.labels(operation="metrics_sample", status="success")
        failure = operations_total.labels(operation="metrics_sample", status="failure")
        ok_before, failed_before = success._value.get(), failure._value.get()

        assert sample(False) == "ok"
        with pytest.raises(RuntimeError):
            sample(True)

        assert success._value.get() == ok_before + 1
        assert failure._value.get() == failed_before + 1


class TestRetry:
    """Reads retry on SQLite lock errors and give up after max attempts."""

    def test_retries_operational_error_then_succeeds(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "read"

        assert flaky() == "read"
        assert len(attempts) == 3

    def test_reraises_after_max_attempts(self) -> None:
        @retry_on_sqlite_lock(max_attempts=2, min_wait_ms=1, max_wait_ms=2)
        def locked() -> None:
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            locked()

    def test_other_errors_are_not_retried(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def broken() -> None:
            attempts.append(1)
            raise ValueError("not a lock")

        with pytest.raises(ValueError):
            broken()
        assert len(attempts) == 1


class TestPolicy:
    def test_defaults(self) -> None:
        policy = AuthorityPolicy()

        assert policy.max_hierarchy_depth == 16
        assert policy.min_delegator_level == "directorate"
        assert policy.capability_grants("can_manage_teams", "Team", "CREATE")
        assert policy.capability_grants("can_approve_reports", "report", "approve")
        assert not policy.capability_grants("can_approve_reports", "report", "delete")
        assert not policy.capability_grants("can_fly", "team", "create")

    def test_depth_bounds_are_validated(self) -> None:
        with pytest.raises(ValidationError):
            AuthorityPolicy(max_hierarchy_depth=0)
        with pytest.raises(ValidationError):
            AuthorityPolicy(max_hierarchy_depth=1000)

    def test_unknown_delegator_level_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AuthorityPolicy(min_delegator_level="emperor")

    def test_capabilities_are_normalized(self) -> None:
        policy = AuthorityPolicy(
            delegation_capabilities={"can_manage_teams": {"Team": ["Create", "create"]}}
        )
        assert policy.delegation_capabilities == {"can_manage_teams": {"team": ["create"]}}

    def test_policy_is_frozen(self) -> None:
        with pytest.raises(ValidationError):
            AuthorityPolicy().max_hierarchy_depth = 3


class TestIdsAndTime:
    def test_generated_ids_carry_prefix_and_are_unique(self) -> None:
        first, second = generate_id("org"), generate_id("org")
        assert first.startswith("org-")
        assert first != second
        assert DefaultIdFactory().generate("usr").startswith("usr-")

    def test_sequential_ids_count_per_prefix(self) -> None:
        ids = SequentialIdFactory()
        assert [ids.generate("org"), ids.generate("usr"), ids.generate("org")] == [
            "org-1",
            "usr-1",
            "org-2",
        ]

    def test_frozen_clock_moves_only_when_told(self) -> None:
        clock = FrozenClock(datetime(2025, 1, 15, tzinfo=timezone.utc))
        start = clock.now()

        clock.advance(days=2, hours=3)
        assert clock.now() - start == timedelta(days=2, hours=3)

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        naive = datetime(2025, 1, 15, 12, 0)
        assert ensure_utc(naive).tzinfo == timezone.utc
        assert parse_timestamp("2025-01-15T12:00:00") == datetime(
            2025, 1, 15, 12, 0, tzinfo=timezone.utc
        )
        assert parse_timestamp(None) is None
