"""Tests for credential verification and federated identity linking."""

import pytest

from models.linked_account import LinkedAccount
from models.user import User
from security import credentials
from security.credentials import (
    AccountNotActive,
    FederatedLinkRefused,
    NoPasswordSet,
    NotFound,
    Success,
    WrongPassword,
)


class TestVerify:
    def test_unknown_email(self, app):
        assert isinstance(credentials.verify("nobody@example.com", "Secret123"), NotFound)

    def test_success_returns_profile(self, make_user):
        user = make_user(email="a@x.com", name="Alice")
        outcome = credentials.verify("a@x.com", "Secret123")
        assert isinstance(outcome, Success)
        assert outcome.user_id == user.id
        assert outcome.profile["email"] == "a@x.com"
        assert outcome.profile["name"] == "Alice"

    def test_email_is_normalized(self, make_user):
        make_user(email="a@x.com")
        assert isinstance(credentials.verify("  A@X.COM ", "Secret123"), Success)

    def test_wrong_password(self, make_user):
        make_user(email="a@x.com")
        outcome = credentials.verify("a@x.com", "Wrong1234")
        assert isinstance(outcome, WrongPassword)
        assert outcome.reason == "invalid_password"

    def test_inactive_account_rejected_even_with_right_password(self, make_user):
        make_user(email="a@x.com", active=False)
        outcome = credentials.verify("a@x.com", "Secret123")
        assert isinstance(outcome, AccountNotActive)

    @pytest.mark.parametrize("password", ["", "Secret123", "anything", " "])
    def test_no_password_and_no_link_never_authenticates(self, make_user, password):
        make_user(email="orphan@x.com", password=None)
        outcome = credentials.verify("orphan@x.com", password)
        assert outcome == NoPasswordSet(has_federated_link=False)
        assert outcome.reason == "account_setup_incomplete"

    def test_federated_only_account(self, make_user):
        make_user(email="g@x.com", password=None, federated=True)
        outcome = credentials.verify("g@x.com", "")
        assert outcome == NoPasswordSet(has_federated_link=True)
        assert outcome.reason == "federated_only"


class TestUpsertFederatedIdentity:
    TOKENS = {"access_token": "at-1", "refresh_token": "rt-1", "id_token": "id-1",
              "expires_at": 1893456000, "scope": "openid email profile", "token_type": "Bearer"}

    def test_creates_passwordless_active_user(self, app, clock):
        identity = credentials.upsert_federated_identity(
            "New@X.com", "google", "sub-1",
            profile={"name": "Nina", "image": "https://img/n.png"},
            tokens=self.TOKENS, clock=clock,
        )
        assert identity.created

        user = User.query.filter_by(email="new@x.com").one()
        assert user.id == identity.user_id
        assert user.password_hash is None
        assert user.is_active
        assert user.email_verified_at == clock.now
        assert user.image == "https://img/n.png"

        link = LinkedAccount.query.filter_by(provider="google", provider_account_id="sub-1").one()
        assert link.user_id == user.id
        assert link.access_token == "at-1"
        assert link.expires_at is not None

    def test_reauthentication_updates_tokens_in_place(self, app, clock):
        credentials.upsert_federated_identity("g@x.com", "google", "sub-1", tokens=self.TOKENS, clock=clock)
        second = credentials.upsert_federated_identity(
            "g@x.com", "google", "sub-1",
            tokens={"access_token": "at-2", "refresh_token": "rt-2"}, clock=clock,
        )
        assert not second.created
        links = LinkedAccount.query.filter_by(provider="google", provider_account_id="sub-1").all()
        assert len(links) == 1
        assert links[0].access_token == "at-2"
        assert links[0].refresh_token == "rt-2"

    def test_merges_into_existing_password_account(self, make_user, clock):
        user = make_user(email="a@x.com", active=False, name="Original")
        identity = credentials.upsert_federated_identity(
            "a@x.com", "google", "sub-a",
            profile={"name": "From Google", "image": "https://img/a.png"},
            tokens=self.TOKENS, clock=clock,
        )
        assert identity.user_id == user.id
        assert not identity.created

        merged = User.query.filter_by(email="a@x.com").one()
        assert merged.is_active
        assert merged.email_verified_at == clock.now
        assert merged.name == "Original"
        assert merged.image == "https://img/a.png"
        assert merged.password_hash is not None

    def test_merge_can_be_refused(self, make_user, clock):
        make_user(email="a@x.com")
        with pytest.raises(FederatedLinkRefused):
            credentials.upsert_federated_identity(
                "a@x.com", "google", "sub-a", merge_on_email=False, clock=clock,
            )
        assert LinkedAccount.query.count() == 0

    def test_returning_federated_user_unaffected_by_refusal(self, make_user, clock):
        credentials.upsert_federated_identity("g@x.com", "google", "sub-g", clock=clock)
        identity = credentials.upsert_federated_identity(
            "g@x.com", "google", "sub-g", merge_on_email=False, clock=clock,
        )
        assert not identity.created
