"""
Credential verification and federated identity linking.

``verify`` never raises for an expected negative result; it returns one
of the outcome classes below so the caller can audit the precise reason
while showing the user a single generic message.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from models import db
from models.linked_account import LinkedAccount
from models.user import User
from security.password import verify_password
from security.password_policy import normalize_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    user_id: int
    profile: dict
    reason: str = "ok"


@dataclass(frozen=True)
class NotFound:
    reason: str = "user_not_found"


@dataclass(frozen=True)
class NoPasswordSet:
    has_federated_link: bool

    @property
    def reason(self) -> str:
        return "federated_only" if self.has_federated_link else "account_setup_incomplete"


@dataclass(frozen=True)
class AccountNotActive:
    user_id: int
    reason: str = "account_not_active"


@dataclass(frozen=True)
class WrongPassword:
    user_id: int
    reason: str = "invalid_password"


VerifyOutcome = Union[Success, NotFound, NoPasswordSet, AccountNotActive, WrongPassword]


@dataclass(frozen=True)
class FederatedIdentity:
    user_id: int
    created: bool
    profile: dict = field(default_factory=dict)


class FederatedLinkRefused(Exception):
    """Raised when an email collides with a password account and merging is disabled."""


def verify(email: str, password: str) -> VerifyOutcome:
    email = normalize_email(email)

    user = User.query.filter_by(email=email).first()
    if user is None:
        return NotFound()

    if not user.password_hash:
        has_link = (
            LinkedAccount.query.filter_by(user_id=user.id).first() is not None
        )
        return NoPasswordSet(has_federated_link=has_link)

    # activation is checked first only to skip the bcrypt work
    if not user.is_active:
        return AccountNotActive(user_id=user.id)

    if not verify_password(password, user.password_hash):
        return WrongPassword(user_id=user.id)

    return Success(user_id=user.id, profile=user.profile())


def _expiry(tokens: dict) -> Optional[datetime]:
    expires_at = tokens.get("expires_at")
    if expires_at is None:
        return None
    if isinstance(expires_at, datetime):
        return expires_at
    # providers hand back epoch seconds
    return datetime.fromtimestamp(int(expires_at), tz=timezone.utc).replace(tzinfo=None)


def upsert_federated_identity(
    email: str,
    provider: str,
    provider_account_id: str,
    profile: Optional[dict] = None,
    tokens: Optional[dict] = None,
    merge_on_email: bool = True,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> FederatedIdentity:
    """
    Find or create the local user behind a provider identity and store its tokens.

    The email claim is trusted as already verified by the provider. When a
    local account with the same email exists it is reused (and activated);
    this merge is a known account-takeover risk, see DESIGN.md.

    Commits on success. Storage errors propagate to the caller.
    """
    profile = profile or {}
    tokens = tokens or {}
    email = normalize_email(email)
    now = clock()

    link = LinkedAccount.query.filter_by(
        provider=provider, provider_account_id=provider_account_id
    ).first()

    user = User.query.filter_by(email=email).first()
    created = False

    if user is not None:
        if (
            not merge_on_email
            and user.password_hash
            and (link is None or link.user_id != user.id)
        ):
            raise FederatedLinkRefused(email)

        # keep whatever the account already has; fill in blanks from the provider
        user.name = user.name or profile.get("name")
        user.image = user.image or profile.get("image")
        user.is_active = True
        user.email_verified_at = now
        user.updated_at = now
    else:
        user = User(
            email=email,
            password_hash=None,
            name=profile.get("name"),
            image=profile.get("image"),
            is_active=True,
            email_verified_at=now,
            created_at=now,
            updated_at=now,
        )
        db.session.add(user)
        db.session.flush()
        created = True

    if link is None:
        link = LinkedAccount(
            user_id=user.id,
            type=tokens.get("type") or "oauth",
            provider=provider,
            provider_account_id=provider_account_id,
        )
        db.session.add(link)
    elif link.user_id != user.id:
        logger.warning(
            "%s account %s moved from user %s to user %s",
            provider, provider_account_id, link.user_id, user.id,
        )
        link.user_id = user.id

    link.access_token = tokens.get("access_token")
    link.refresh_token = tokens.get("refresh_token")
    link.id_token = tokens.get("id_token")
    link.expires_at = _expiry(tokens)
    link.token_type = tokens.get("token_type")
    link.scope = tokens.get("scope")
    link.session_state = tokens.get("session_state")

    db.session.commit()
    return FederatedIdentity(user_id=user.id, created=created, profile=user.profile())
