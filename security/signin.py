"""
End-to-end sign-in decisions.

Composes the two login limiters, the credential verifier and the activity
log. Every rejection the user sees is generic; the precise reason only
lands in the activity log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.user import User
from security import credentials
from security.password_policy import normalize_email
from security.rate_limit import RateLimiter
from utils import audit

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
TOO_MANY_ATTEMPTS = "Too many attempts. Please try again later."
FEDERATED_FAILED = "Could not sign you in with this provider"


@dataclass(frozen=True)
class SignInSuccess:
    user_id: int
    profile: dict
    created: bool = False


@dataclass(frozen=True)
class SignInRejected:
    message: str
    throttled: bool = False
    retry_at: Optional[datetime] = None


SignInResult = Union[SignInSuccess, SignInRejected]


class SignInService:
    def __init__(self, ip_limiter: RateLimiter, email_limiter: RateLimiter,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.ip_limiter = ip_limiter
        self.email_limiter = email_limiter
        self._now = clock

    def attempt_sign_in(self, email: str, password: str, source_ip: str) -> SignInResult:
        email = normalize_email(email)
        source_ip = source_ip or "unknown"

        # independent checks; both must pass
        ip_check = self.ip_limiter.check_admission(source_ip)
        email_check = self.email_limiter.check_admission(email)

        for limit_type, check in (("ip", ip_check), ("email", email_check)):
            if not check.allowed:
                audit.log_rate_limit_exceeded(email, limit_type, ip_address=source_ip)
                return SignInRejected(TOO_MANY_ATTEMPTS, throttled=True, retry_at=check.blocked_until)

        outcome = credentials.verify(email, password)
        succeeded = isinstance(outcome, credentials.Success)

        self.ip_limiter.record_outcome(source_ip, succeeded)
        self.email_limiter.record_outcome(email, succeeded)

        if not succeeded:
            audit.log_failed_login(
                email, outcome.reason,
                user_id=getattr(outcome, "user_id", None),
                ip_address=source_ip,
            )
            return SignInRejected(INVALID_CREDENTIALS)

        user = db.session.get(User, outcome.user_id)
        user.updated_at = self._now()
        db.session.commit()

        audit.log_login(outcome.user_id, email, "email", ip_address=source_ip)
        return SignInSuccess(outcome.user_id, outcome.profile)

    def attempt_federated_sign_in(self, provider: str, provider_account_id: str,
                                  claimed_profile: dict, tokens: Optional[dict] = None,
                                  merge_on_email: bool = True) -> SignInResult:
        email = normalize_email((claimed_profile or {}).get("email"))
        if not email or not provider_account_id:
            logger.warning("%s sign-in without email or account id", provider)
            return SignInRejected(FEDERATED_FAILED)

        try:
            identity = credentials.upsert_federated_identity(
                email, provider, provider_account_id,
                profile=claimed_profile, tokens=tokens,
                merge_on_email=merge_on_email, clock=self._now,
            )
        except credentials.FederatedLinkRefused:
            audit.log_failed_login(email, f"{provider}_link_refused")
            return SignInRejected(FEDERATED_FAILED)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("%s sign-in failed for %s", provider, email)
            return SignInRejected(FEDERATED_FAILED)

        if identity.created:
            audit.log_signup(identity.user_id, email, provider)
        else:
            audit.log_login(identity.user_id, email, provider)
        return SignInSuccess(identity.user_id, identity.profile, created=identity.created)
