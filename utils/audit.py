import json
import logging

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

ACTIONS = {
    "signup",
    "login",
    "logout",
    "password_reset_request",
    "password_reset_complete",
    "email_verification",
    "profile_update",
    "password_change",
    "account_activation",
    "account_deactivation",
    "failed_login",
    "rate_limit_exceeded",
    "google_signup",
    "google_login",
}

CATEGORIES = {"auth", "profile", "security", "verification"}


def _client_info():
    if not has_request_context():
        return None, None
    ip = request.remote_addr or "unknown"
    user_agent = request.headers.get("User-Agent") or "unknown"
    return ip, user_agent


def log_activity(action: str, category: str, description: str, user_id=None,
                 ip_address=None, user_agent=None, metadata=None, success=True) -> bool:
    """
    Append one activity record. Best-effort: a storage failure is logged
    and rolled back, never raised, so the caller's operation carries on.
    """
    if action not in ACTIONS or category not in CATEGORIES:
        logger.error("Refusing to log unknown activity %s/%s", category, action)
        return False

    req_ip, req_agent = _client_info()
    ip = ip_address or req_ip

    row = ActivityLog(
        user_id=user_id,
        action=action,
        category=category,
        description=description,
        ip_address=ip[:45] if ip else None,
        user_agent=user_agent or req_agent,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
        success=success,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to log activity %s for user %s", action, user_id or "anonymous")
        return False

    logger.debug("Activity logged: %s for user %s", action, user_id or "anonymous")
    return True


def log_signup(user_id, email: str, method: str = "email"):
    return log_activity(
        "google_signup" if method == "google" else "signup", "auth",
        f"New user signed up with {method}",
        user_id=user_id, metadata={"email": email, "method": method},
    )


def log_login(user_id, email: str, method: str = "email", ip_address=None):
    return log_activity(
        "google_login" if method == "google" else "login", "auth",
        f"User logged in with {method}",
        user_id=user_id, ip_address=ip_address, metadata={"email": email, "method": method},
    )


def log_failed_login(email: str, reason: str, user_id=None, ip_address=None):
    return log_activity(
        "failed_login", "security", f"Failed login attempt for {email}",
        user_id=user_id, ip_address=ip_address,
        metadata={"email": email, "reason": reason}, success=False,
    )


def log_rate_limit_exceeded(email: str, limit_type: str, ip_address=None):
    return log_activity(
        "rate_limit_exceeded", "security", f"Rate limit exceeded for {email} ({limit_type})",
        ip_address=ip_address, metadata={"email": email, "limitType": limit_type}, success=False,
    )


def log_password_reset(email: str, stage: str, user_id=None, success=True):
    action = "password_reset_request" if stage == "request" else "password_reset_complete"
    verb = "requested" if stage == "request" else "completed"
    return log_activity(
        action, "security", f"Password reset {verb} for {email}",
        user_id=user_id, metadata={"email": email}, success=success,
    )


def log_email_verification(user_id, email: str):
    return log_activity(
        "email_verification", "verification", f"Email verified for {email}",
        user_id=user_id, metadata={"email": email},
    )


def log_profile_update(user_id, changes):
    return log_activity(
        "profile_update", "profile", f"Profile updated: {', '.join(changes)}",
        user_id=user_id, metadata={"changes": list(changes)},
    )


def log_logout(user_id):
    return log_activity("logout", "auth", "User logged out", user_id=user_id)
