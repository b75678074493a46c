from flask import Blueprint, jsonify

from .auth import auth_bp
from .oauth import oauth_bp
from .activity import activity_bp
from .cron import cron_bp

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200
