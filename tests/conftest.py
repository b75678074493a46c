"""
Shared test fixtures.

Provides a Flask app wired to:
  • an in-memory SQLite database, created fresh for every test
  • a captured mailbox instead of SMTP
  • a controllable clock for window / expiry scenarios
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db as _db
from models.linked_account import LinkedAccount
from models.user import User
from security.password import hash_password


# ── Helpers ────────────────────────────────────────────────────────────────


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


_CODE = re.compile(r"\b(\d{6})\b")


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def db(app):
    return _db


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def mailbox(monkeypatch):
    """Capture outgoing email; each entry carries the 6-digit code it contained."""
    sent: list[dict] = []

    def _send(to_email, subject, html):
        match = _CODE.search(html)
        sent.append({
            "to": to_email,
            "subject": subject,
            "html": html,
            "code": match.group(1) if match else None,
        })
        return True, None

    monkeypatch.setattr("utils.emailer.send_email", _send)
    return sent


@pytest.fixture()
def broken_mailer(monkeypatch):
    """Every send fails like an unreachable SMTP server."""
    calls: list[str] = []

    def _send(to_email, subject, html):
        calls.append(to_email)
        return False, "Connection refused"

    monkeypatch.setattr("utils.emailer.send_email", _send)
    return calls


@pytest.fixture()
def make_user(db):
    def _make(email="user@example.com", password="Secret123", active=True,
              name=None, federated=False):
        user = User(
            email=email,
            password_hash=hash_password(password) if password else None,
            name=name,
            is_active=active,
            email_verified_at=datetime.utcnow() if active else None,
        )
        db.session.add(user)
        db.session.flush()
        if federated:
            db.session.add(LinkedAccount(
                user_id=user.id,
                provider="google",
                provider_account_id=f"google-{user.id}",
                access_token="at",
            ))
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def login(client):
    """POST /auth/login and return the response; the client keeps the cookie."""
    def _login(email="user@example.com", password="Secret123"):
        return client.post("/auth/login", json={"email": email, "password": password})

    return _login


@pytest.fixture()
def csrf_headers(client):
    """Echo the CSRF cookie set at sign-in back as the request header."""
    def _headers():
        cookie = client.get_cookie("csrf_token")
        return {"X-CSRF-Token": cookie.value if cookie else ""}

    return _headers
