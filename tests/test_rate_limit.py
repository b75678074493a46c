"""Tests for the database-backed login rate limiter."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models.login_attempt import LoginAttempt
from security.rate_limit import RateLimitConfig, RateLimiter, email_rate_limiter, ip_rate_limiter

IDENT = "b@x.com"


@pytest.fixture()
def limiter(app, clock):
    config = RateLimitConfig(
        max_attempts=5,
        window=timedelta(minutes=15),
        block_duration=timedelta(minutes=30),
    )
    return RateLimiter(config, name="email", clock=clock)


def _fail(limiter, times, ident=IDENT):
    for _ in range(times):
        limiter.record_outcome(ident, False)


class TestCheckAdmission:
    def test_unknown_identifier_is_allowed(self, limiter):
        result = limiter.check_admission(IDENT)
        assert result.allowed
        assert result.remaining_attempts == 4
        assert result.blocked_until is None

    @pytest.mark.parametrize("failures", [1, 2, 3, 4])
    def test_allowed_below_max(self, limiter, failures):
        _fail(limiter, failures)
        result = limiter.check_admission(IDENT)
        assert result.allowed
        assert result.remaining_attempts == 5 - failures

    def test_reset_at_is_end_of_window(self, limiter, clock):
        _fail(limiter, 1)
        result = limiter.check_admission(IDENT)
        assert result.reset_at == clock.now + timedelta(minutes=15)

    def test_max_failures_blocks_next_check(self, limiter, clock):
        _fail(limiter, 5)
        result = limiter.check_admission(IDENT)
        assert not result.allowed
        assert result.remaining_attempts == 0
        assert result.blocked_until == clock.now + timedelta(minutes=30)
        assert result.blocked_until > clock.now

    def test_check_sets_block_as_side_effect(self, limiter, clock, db):
        _fail(limiter, 5)
        assert LoginAttempt.query.filter_by(identifier=IDENT).one().blocked_until is None

        limiter.check_admission(IDENT)

        row = LoginAttempt.query.filter_by(identifier=IDENT).one()
        assert row.blocked_until == clock.now + timedelta(minutes=30)

    def test_active_block_denies_regardless_of_attempts(self, limiter, clock):
        _fail(limiter, 5)
        first = limiter.check_admission(IDENT)
        clock.advance(minutes=5)

        second = limiter.check_admission(IDENT)
        assert not second.allowed
        assert second.blocked_until == first.blocked_until

    def test_expired_window_resets_counter(self, limiter, clock):
        _fail(limiter, 4)
        clock.advance(minutes=16)

        result = limiter.check_admission(IDENT)
        assert result.allowed
        assert result.remaining_attempts == 4
        assert LoginAttempt.query.filter_by(identifier=IDENT).one().attempts == 0

    def test_block_lapses_after_block_duration(self, limiter, clock):
        _fail(limiter, 5)
        assert not limiter.check_admission(IDENT).allowed

        clock.advance(minutes=31)
        result = limiter.check_admission(IDENT)
        assert result.allowed
        assert result.remaining_attempts == 4

    def test_boundary_race_is_not_serialized(self, limiter):
        """Two checks at max-1 both pass; the limiter does not reserve slots."""
        _fail(limiter, 4)
        assert limiter.check_admission(IDENT).allowed
        assert limiter.check_admission(IDENT).allowed

    def test_identifiers_are_independent(self, limiter):
        _fail(limiter, 5)
        assert not limiter.check_admission(IDENT).allowed
        assert limiter.check_admission("c@x.com").allowed

    def test_storage_fault_fails_open(self, limiter, monkeypatch):
        def _boom(identifier):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(limiter, "_get", _boom)
        result = limiter.check_admission(IDENT)
        assert result.allowed
        assert result.remaining_attempts == 5


class TestRecordOutcome:
    def test_first_failure_creates_record(self, limiter, clock):
        limiter.record_outcome(IDENT, False)
        row = LoginAttempt.query.filter_by(identifier=IDENT).one()
        assert row.attempts == 1
        assert row.last_attempt_at == clock.now

    def test_first_success_creates_zero_record(self, limiter):
        limiter.record_outcome(IDENT, True)
        assert LoginAttempt.query.filter_by(identifier=IDENT).one().attempts == 0

    def test_success_resets_attempts_and_clears_block(self, limiter):
        _fail(limiter, 5)
        assert not limiter.check_admission(IDENT).allowed

        limiter.record_outcome(IDENT, True)

        row = LoginAttempt.query.filter_by(identifier=IDENT).one()
        assert row.attempts == 0
        assert row.blocked_until is None
        assert limiter.check_admission(IDENT).allowed

    def test_failure_preserves_block(self, limiter):
        _fail(limiter, 5)
        blocked_until = limiter.check_admission(IDENT).blocked_until

        limiter.record_outcome(IDENT, False)

        row = LoginAttempt.query.filter_by(identifier=IDENT).one()
        assert row.attempts == 6
        assert row.blocked_until == blocked_until

    def test_storage_fault_is_swallowed(self, limiter, monkeypatch):
        def _boom(identifier):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(limiter, "_get", _boom)
        limiter.record_outcome(IDENT, False)  # must not raise


class TestReap:
    def test_reaps_only_idle_stale_records(self, limiter, clock):
        limiter.record_outcome("idle@x.com", True)
        _fail(limiter, 2, ident="failing@x.com")
        clock.advance(minutes=31)
        limiter.record_outcome("recent@x.com", True)

        removed = limiter.reap()

        assert removed == 1
        remaining = {r.identifier for r in LoginAttempt.query.all()}
        assert remaining == {"failing@x.com", "recent@x.com"}

    def test_reap_is_idempotent(self, limiter, clock):
        limiter.record_outcome("idle@x.com", True)
        clock.advance(hours=1)
        assert limiter.reap() == 1
        assert limiter.reap() == 0


class TestConfiguredLimiters:
    def test_instances_read_app_config(self, app):
        ip = ip_rate_limiter()
        email = email_rate_limiter()

        assert ip.config.max_attempts == 10
        assert ip.config.block_duration == timedelta(hours=1)
        assert email.config.max_attempts == 5
        assert email.config.block_duration == timedelta(minutes=30)
        assert ip.config.window == email.config.window == timedelta(minutes=15)
