import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.session import Session

logger = logging.getLogger(__name__)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> str:
    """
    Creates a server-side session and returns the RAW token (to set as cookie).
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)

    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 7 * 24 * 60 * 60)
    ip = request.remote_addr

    db.session.add(Session(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=datetime.utcnow() + timedelta(seconds=lifetime),
        ip=(ip or "")[:64] or None,
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    ))
    db.session.commit()
    return raw_token


def set_session_cookie(resp, raw_token: str):
    cfg = current_app.config
    resp.set_cookie(
        cfg.get("AUTH_COOKIE_NAME", "authgate_session"),
        raw_token,
        httponly=True,
        secure=cfg.get("SESSION_COOKIE_SECURE", False),
        samesite=cfg.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=cfg.get("SESSION_LIFETIME_SECONDS", 7 * 24 * 60 * 60),
        path="/",
    )
    return resp


def get_session_from_request():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "authgate_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    now = datetime.utcnow()
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if not sess or sess.expires_at <= now:
        return None

    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 24 * 60 * 60)
    last_seen = sess.last_seen_at or sess.created_at
    if (last_seen + timedelta(seconds=idle_seconds)) <= now:
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if not sess:
        return False
    sess.revoked = True
    sess.revoked_at = datetime.utcnow()
    db.session.commit()
    return True


def revoke_all_sessions(user_id: int) -> int:
    """Used after a password reset so stolen cookies stop working."""
    now = datetime.utcnow()
    sessions = Session.query.filter_by(user_id=user_id, revoked=False).all()
    for s in sessions:
        s.revoked = True
        s.revoked_at = now
    db.session.commit()
    if sessions:
        logger.info("Revoked %d sessions for user %s", len(sessions), user_id)
    return len(sessions)
