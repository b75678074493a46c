import hmac
import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from security.otp import otp_manager
from security.rate_limit import email_rate_limiter, ip_rate_limiter

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/cron")


def _authorized() -> bool:
    secret = current_app.config.get("CRON_SECRET")
    header = request.headers.get("Authorization") or ""
    if not secret:
        return False
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def run_cleanup() -> dict:
    """Reap idle limiter records and dead OTP codes. Safe to run at any time."""
    return {
        "ip_records": ip_rate_limiter().reap(),
        "email_records": email_rate_limiter().reap(),
        "otp_codes": otp_manager().reap(),
    }


@cron_bp.route("/cleanup-rate-limits", methods=["GET", "POST"])
def cleanup_rate_limits():
    if not _authorized():
        return jsonify(error="Unauthorized"), 401

    removed = run_cleanup()
    logger.info("Scheduled cleanup completed: %s", removed)
    return jsonify(
        success=True,
        message="Rate limit cleanup completed",
        removed=removed,
        timestamp=datetime.utcnow().isoformat(),
    ), 200
