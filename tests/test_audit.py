"""Tests for the activity recorder."""

import json

from sqlalchemy.exc import OperationalError

from models.activity_log import ActivityLog
from utils import audit


class TestLogActivity:
    def test_records_row(self, app, make_user):
        user = make_user(email="a@x.com")

        assert audit.log_login(user.id, "a@x.com", ip_address="203.0.113.7")

        row = ActivityLog.query.one()
        assert row.action == "login"
        assert row.category == "auth"
        assert row.success is True
        assert row.ip_address == "203.0.113.7"
        assert json.loads(row.metadata_json) == {"email": "a@x.com", "method": "email"}

    def test_unknown_action_refused(self, app):
        assert audit.log_activity("teleport", "auth", "nope") is False
        assert audit.log_activity("login", "mystery", "nope") is False
        assert ActivityLog.query.count() == 0

    def test_anonymous_entry(self, app):
        assert audit.log_rate_limit_exceeded("ghost@x.com", "email")

        row = ActivityLog.query.one()
        assert row.user_id is None
        assert row.success is False

    def test_long_ip_is_truncated(self, app):
        audit.log_failed_login("a@x.com", "user_not_found", ip_address="f" * 80)
        assert len(ActivityLog.query.one().ip_address) == 45

    def test_request_peer_and_agent_are_picked_up(self, app):
        with app.test_request_context(
            "/",
            headers={"X-Forwarded-For": "203.0.113.66", "User-Agent": "pytest"},
            environ_base={"REMOTE_ADDR": "198.51.100.4"},
        ):
            audit.log_logout(None)

        row = ActivityLog.query.one()
        assert row.ip_address == "198.51.100.4"
        assert row.user_agent == "pytest"

    def test_storage_error_is_swallowed(self, app, db, monkeypatch):
        def _fail():
            raise OperationalError("INSERT INTO activity_logs", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session, "commit", _fail)

        assert audit.log_logout(1) is False
