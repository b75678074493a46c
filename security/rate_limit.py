"""
Per-identifier login throttling backed by the ``login_attempts`` table.

Each limiter keeps a sliding window of failed attempts per identifier
(an IP address or a normalized email) and a temporary block once the
window fills up. Two limiters with different thresholds gate every
credential sign-in; either one denying is enough to reject.

Admission checks fail open: if the database is unavailable the request
is admitted with a full quota rather than locking every user out.

The check is a plain read-decide-write. Two concurrent requests for the
same identifier can both read ``attempts == max - 1`` and both be
admitted; that over-admission at the boundary is accepted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from flask import current_app, request
from sqlalchemy import and_, delete
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.login_attempt import LoginAttempt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window: timedelta
    block_duration: timedelta


@dataclass(frozen=True)
class AdmissionResult:
    allowed: bool
    remaining_attempts: int
    blocked_until: Optional[datetime] = None
    reset_at: Optional[datetime] = None


class RateLimiter:
    def __init__(self, config: RateLimitConfig, name: str = "login",
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.config = config
        self.name = name
        self._now = clock

    def _get(self, identifier: str) -> Optional[LoginAttempt]:
        return LoginAttempt.query.filter_by(identifier=identifier).first()

    def check_admission(self, identifier: str) -> AdmissionResult:
        """
        Decide whether ``identifier`` may make another attempt.

        Not a pure read: an expired window resets the counter and a full
        window without a block sets ``blocked_until``.
        """
        try:
            now = self._now()
            window_start = now - self.config.window

            row = self._get(identifier)
            if row is None:
                return AdmissionResult(True, self.config.max_attempts - 1)

            if row.blocked_until and row.blocked_until > now:
                return AdmissionResult(False, 0, blocked_until=row.blocked_until)

            if row.last_attempt_at and row.last_attempt_at < window_start:
                row.attempts = 0
                row.last_attempt_at = now
                row.blocked_until = None
                db.session.commit()
                return AdmissionResult(True, self.config.max_attempts - 1)

            if row.attempts >= self.config.max_attempts:
                blocked_until = now + self.config.block_duration
                row.blocked_until = blocked_until
                db.session.commit()
                logger.info("%s limiter blocked %s until %s", self.name, identifier, blocked_until)
                return AdmissionResult(False, 0, blocked_until=blocked_until)

            reset_at = row.last_attempt_at + self.config.window if row.last_attempt_at else None
            return AdmissionResult(
                True,
                self.config.max_attempts - row.attempts,
                reset_at=reset_at,
            )
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("%s limiter check failed for %s; failing open", self.name, identifier)
            return AdmissionResult(True, self.config.max_attempts)

    def record_outcome(self, identifier: str, success: bool) -> None:
        """Best-effort counter update after an attempt. Storage faults are logged, not raised."""
        try:
            now = self._now()
            row = self._get(identifier)
            if row is None:
                row = LoginAttempt(
                    identifier=identifier,
                    attempts=0 if success else 1,
                    last_attempt_at=now,
                    blocked_until=None,
                    created_at=now,
                )
                db.session.add(row)
            elif success:
                row.attempts = 0
                row.blocked_until = None
                row.last_attempt_at = now
            else:
                row.attempts += 1
                row.last_attempt_at = now

            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("%s limiter could not record outcome for %s", self.name, identifier)

    def reap(self) -> int:
        """Delete idle records (zero attempts, last seen before 2x window). Returns rows removed."""
        cutoff = self._now() - self.config.window * 2
        try:
            result = db.session.execute(
                delete(LoginAttempt).where(
                    and_(
                        LoginAttempt.attempts == 0,
                        LoginAttempt.last_attempt_at < cutoff,
                    )
                )
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("%s limiter cleanup failed", self.name)
            return 0

        removed = result.rowcount or 0
        logger.info("%s limiter cleanup removed %d records", self.name, removed)
        return removed


def _config_from_app(prefix: str) -> RateLimitConfig:
    cfg = current_app.config
    return RateLimitConfig(
        max_attempts=int(cfg[f"{prefix}_RATE_MAX_ATTEMPTS"]),
        window=timedelta(seconds=int(cfg[f"{prefix}_RATE_WINDOW_SECONDS"])),
        block_duration=timedelta(seconds=int(cfg[f"{prefix}_RATE_BLOCK_SECONDS"])),
    )


def ip_rate_limiter(clock: Callable[[], datetime] = datetime.utcnow) -> RateLimiter:
    return RateLimiter(_config_from_app("IP"), name="ip", clock=clock)


def email_rate_limiter(clock: Callable[[], datetime] = datetime.utcnow) -> RateLimiter:
    return RateLimiter(_config_from_app("EMAIL"), name="email", clock=clock)


def client_ip() -> str:
    """Throttling key for the caller. Forwarded headers are only honoured through ProxyFix."""
    return (request.remote_addr or "unknown").strip()
