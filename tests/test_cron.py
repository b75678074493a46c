"""Tests for scheduled cleanup of limiter records and one-time codes."""

from datetime import datetime, timedelta

from models.login_attempt import LoginAttempt
from models.verification_token import VerificationToken

AUTH = {"Authorization": "Bearer test-cron-secret"}


def _seed(db):
    old = datetime.utcnow() - timedelta(days=3)
    now = datetime.utcnow()
    db.session.add_all([
        LoginAttempt(identifier="198.51.100.9", attempts=0, last_attempt_at=old, created_at=old),
        LoginAttempt(identifier="idle@x.com", attempts=0, last_attempt_at=old, created_at=old),
        # still counting failures; must survive
        LoginAttempt(identifier="busy@x.com", attempts=3, last_attempt_at=old, created_at=old),
        LoginAttempt(identifier="fresh@x.com", attempts=0, last_attempt_at=now, created_at=now),
        VerificationToken(email="a@x.com", token="123456", purpose="email_verification",
                          expires_at=old + timedelta(minutes=10), used=False, created_at=old),
        VerificationToken(email="b@x.com", token="654321", purpose="password_reset",
                          expires_at=now + timedelta(minutes=10), used=False, created_at=now),
    ])
    db.session.commit()


class TestCleanupEndpoint:
    def test_requires_bearer_secret(self, client):
        assert client.get("/cron/cleanup-rate-limits").status_code == 401
        bad = {"Authorization": "Bearer nope"}
        assert client.post("/cron/cleanup-rate-limits", headers=bad).status_code == 401

    def test_refuses_when_secret_unset(self, app, client):
        app.config["CRON_SECRET"] = None
        assert client.get("/cron/cleanup-rate-limits", headers=AUTH).status_code == 401

    def test_reaps_idle_rows(self, client, db):
        _seed(db)

        resp = client.post("/cron/cleanup-rate-limits", headers=AUTH)
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["success"] is True
        # both limiters share one table, so whichever runs first takes the idle rows
        assert body["removed"]["ip_records"] + body["removed"]["email_records"] == 2
        assert body["removed"]["otp_codes"] == 1

        assert {r.identifier for r in LoginAttempt.query.all()} == {"busy@x.com", "fresh@x.com"}
        assert [t.email for t in VerificationToken.query.all()] == ["b@x.com"]

    def test_cli_command(self, app, db):
        _seed(db)
        result = app.test_cli_runner().invoke(args=["cleanup-auth"])

        assert result.exit_code == 0
        assert "otp_codes: 1 removed" in result.output
