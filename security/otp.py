"""
One-time code lifecycle for email verification and password reset.

Per (email, purpose) the states are NoCode -> Issued -> Consumed; Expired
is derived from ``expires_at`` at check time and never stored.

Two rules matter here:

* a code is only committed once the email carrying it was accepted by
  the mail server, so nobody is left holding a code they never received;
* consumption is a conditional ``UPDATE ... WHERE used = false`` so two
  concurrent requests presenting the same code cannot both succeed.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from flask import current_app
from sqlalchemy import and_, delete, or_, update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.verification_token import PURPOSES, VerificationToken
from security.password_policy import normalize_email
from utils import emailer

logger = logging.getLogger(__name__)

CODE_DIGITS = 6

REASON_INVALID_OR_EXPIRED = "invalid_or_expired"
REASON_EXPIRED = "expired"

Sender = Callable[[str, str, str], Tuple[bool, Optional[str]]]


class OtpStorageError(Exception):
    """The code was delivered but could not be stored."""


@dataclass(frozen=True)
class IssueResult:
    ok: bool
    code: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ConsumeResult:
    ok: bool
    reason: Optional[str] = None


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


class OtpManager:
    def __init__(self, ttl: timedelta = timedelta(minutes=10), sender: Optional[Sender] = None,
                 clock: Callable[[], datetime] = datetime.utcnow,
                 retention: timedelta = timedelta(days=1)):
        self.ttl = ttl
        self.retention = retention
        self._sender = sender
        self._now = clock

    def _send(self, to_email: str, subject: str, html: str) -> Tuple[bool, Optional[str]]:
        sender = self._sender or emailer.send_email
        return sender(to_email, subject, html)

    def issue(self, email: str, purpose: str) -> IssueResult:
        """
        Send a fresh code and make it the only live one for (email, purpose).

        On delivery failure the session is rolled back, including anything
        the caller staged but did not commit (e.g. a just-registered user).
        """
        if purpose not in PURPOSES:
            raise ValueError(f"Unknown OTP purpose: {purpose}")

        email = normalize_email(email)
        code = generate_code()
        ttl_minutes = max(int(self.ttl.total_seconds() // 60), 1)
        subject, html = emailer.otp_email(purpose, code, ttl_minutes)

        ok, error = self._send(email, subject, html)
        if not ok:
            db.session.rollback()
            logger.warning("OTP delivery failed for %s (%s): %s", email, purpose, error)
            return IssueResult(False, error=error or "delivery failed")

        now = self._now()
        try:
            db.session.execute(
                update(VerificationToken)
                .where(
                    and_(
                        VerificationToken.email == email,
                        VerificationToken.purpose == purpose,
                        VerificationToken.used.is_(False),
                    )
                )
                .values(used=True)
            )
            db.session.add(VerificationToken(
                email=email,
                token=code,
                purpose=purpose,
                expires_at=now + self.ttl,
                used=False,
                created_at=now,
            ))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Could not store %s code for %s", purpose, email)
            raise OtpStorageError(str(exc)) from exc

        logger.info("Issued %s code for %s", purpose, email)
        return IssueResult(True, code=code)

    def consume(self, email: str, purpose: str, presented_code: str) -> ConsumeResult:
        """
        Burn a matching live code. Exactly one concurrent caller gets ``ok=True``.

        Wrong code and unknown email are indistinguishable to the caller.
        """
        email = normalize_email(email)
        row = (
            VerificationToken.query
            .filter_by(email=email, purpose=purpose, token=presented_code, used=False)
            .order_by(VerificationToken.created_at.desc())
            .first()
        )
        if row is None:
            return ConsumeResult(False, REASON_INVALID_OR_EXPIRED)

        if row.expires_at < self._now():
            return ConsumeResult(False, REASON_EXPIRED)

        result = db.session.execute(
            update(VerificationToken)
            .where(
                and_(
                    VerificationToken.id == row.id,
                    VerificationToken.used.is_(False),
                )
            )
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        if result.rowcount != 1:
            # another request burned it between our read and write
            return ConsumeResult(False, REASON_INVALID_OR_EXPIRED)

        logger.info("Consumed %s code for %s", purpose, email)
        return ConsumeResult(True)

    def reap(self) -> int:
        """Delete used or long-expired codes. Returns rows removed."""
        cutoff = self._now() - self.retention
        try:
            result = db.session.execute(
                delete(VerificationToken).where(
                    or_(
                        and_(VerificationToken.used.is_(True), VerificationToken.created_at < cutoff),
                        VerificationToken.expires_at < cutoff,
                    )
                )
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("OTP cleanup failed")
            return 0

        removed = result.rowcount or 0
        logger.info("OTP cleanup removed %d codes", removed)
        return removed


def otp_manager(clock: Callable[[], datetime] = datetime.utcnow) -> OtpManager:
    cfg = current_app.config
    return OtpManager(
        ttl=timedelta(seconds=int(cfg.get("OTP_TTL_SECONDS", 600))),
        retention=timedelta(seconds=int(cfg.get("OTP_RETENTION_SECONDS", 86400))),
        clock=clock,
    )
