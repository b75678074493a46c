"""
Email verification and password recovery flows built on ``OtpManager``.

The OTP manager only knows about codes; the account side effects
(activating the user, replacing the password hash) live here, always
after the code has been burned.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.user import User
from models.verification_token import PURPOSE_EMAIL_VERIFICATION, PURPOSE_PASSWORD_RESET
from security.otp import OtpManager
from security.password import hash_password
from security.password_policy import normalize_email, validate_password
from security.session import revoke_all_sessions
from utils import audit

logger = logging.getLogger(__name__)

INVALID_OR_EXPIRED = "invalid_or_expired"
DELIVERY_FAILED = "delivery_failed"
STORAGE_FAILED = "storage_failed"
INVALID_PASSWORD = "invalid_password"


@dataclass(frozen=True)
class FlowResult:
    ok: bool
    error: Optional[str] = None
    sent: bool = False
    user_id: Optional[int] = None


def _user(email: str) -> Optional[User]:
    return User.query.filter_by(email=email).first()


def request_email_verification(email: str, otp: OtpManager) -> FlowResult:
    """Send a new verification code to an account that is not active yet."""
    email = normalize_email(email)
    user = _user(email)
    if user is None or user.is_active:
        return FlowResult(True)

    issued = otp.issue(email, PURPOSE_EMAIL_VERIFICATION)
    if not issued.ok:
        return FlowResult(False, DELIVERY_FAILED)
    return FlowResult(True, sent=True, user_id=user.id)


def verify_email(email: str, code: str, otp: OtpManager,
                 clock: Callable[[], datetime] = datetime.utcnow) -> FlowResult:
    email = normalize_email(email)
    user = _user(email)
    if user is None or user.is_active:
        return FlowResult(False, INVALID_OR_EXPIRED)

    consumed = otp.consume(email, PURPOSE_EMAIL_VERIFICATION, code)
    if not consumed.ok:
        logger.info("Email verification rejected for %s: %s", email, consumed.reason)
        return FlowResult(False, INVALID_OR_EXPIRED)

    now = clock()
    user.is_active = True
    user.email_verified_at = now
    user.updated_at = now
    db.session.commit()

    audit.log_email_verification(user.id, email)
    return FlowResult(True, user_id=user.id)


def request_password_reset(email: str, otp: OtpManager) -> FlowResult:
    """
    Send a reset code to an active account. Unknown and unverified emails
    get the same answer as known ones.
    """
    email = normalize_email(email)
    user = _user(email)
    if user is None or not user.is_active:
        return FlowResult(True)

    issued = otp.issue(email, PURPOSE_PASSWORD_RESET)
    if not issued.ok:
        return FlowResult(False, DELIVERY_FAILED)

    audit.log_password_reset(email, "request", user_id=user.id)
    return FlowResult(True, sent=True, user_id=user.id)


def reset_password(email: str, code: str, new_password: str, otp: OtpManager,
                   clock: Callable[[], datetime] = datetime.utcnow) -> FlowResult:
    """
    Burn the reset code, then store the new password.

    A password the policy rejects leaves the code untouched. If storing the
    password fails the code stays burned and the user has to request a new one.
    """
    email = normalize_email(email)
    valid, _ = validate_password(new_password)
    if not valid:
        return FlowResult(False, INVALID_PASSWORD)

    user = _user(email)
    if user is None:
        return FlowResult(False, INVALID_OR_EXPIRED)

    consumed = otp.consume(email, PURPOSE_PASSWORD_RESET, code)
    if not consumed.ok:
        logger.info("Password reset rejected for %s: %s", email, consumed.reason)
        return FlowResult(False, INVALID_OR_EXPIRED)

    try:
        user.password_hash = hash_password(new_password)
        user.updated_at = clock()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Password update after reset failed for %s", email)
        audit.log_password_reset(email, "complete", user_id=user.id, success=False)
        return FlowResult(False, STORAGE_FAILED, user_id=user.id)

    try:
        revoke_all_sessions(user.id)
    except SQLAlchemyError:
        # the new password is already stored; old cookies just live until they expire
        db.session.rollback()
        logger.exception("Could not revoke sessions for user %s after password reset", user.id)

    audit.log_password_reset(email, "complete", user_id=user.id)
    return FlowResult(True, user_id=user.id)
