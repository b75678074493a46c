import logging

from authlib.integrations.base_client.errors import OAuthError
from flask import Blueprint, current_app, jsonify, redirect, url_for

from security.csrf import issue_csrf_token
from security.oauth import oauth
from security.rate_limit import email_rate_limiter, ip_rate_limiter
from security.session import create_session, set_session_cookie
from security.signin import SignInService, SignInSuccess

logger = logging.getLogger(__name__)

oauth_bp = Blueprint("oauth", __name__, url_prefix="/auth")

PROVIDER = "google"


def _token_material(token: dict) -> dict:
    return {
        "type": "oidc",
        "access_token": token.get("access_token"),
        "refresh_token": token.get("refresh_token"),
        "id_token": token.get("id_token"),
        "expires_at": token.get("expires_at"),
        "token_type": token.get("token_type"),
        "scope": token.get("scope"),
        "session_state": token.get("session_state"),
    }


@oauth_bp.get("/google")
def login_google():
    if not current_app.config.get("GOOGLE_CLIENT_ID"):
        return jsonify(error="Google sign-in is not configured"), 503

    redirect_uri = (current_app.config.get("GOOGLE_REDIRECT_URI") or "").strip()
    if not redirect_uri:
        redirect_uri = url_for("oauth.google_callback", _external=True)
    return oauth.google.authorize_redirect(redirect_uri)


@oauth_bp.get("/google/callback")
def google_callback():
    try:
        token = oauth.google.authorize_access_token()  # validates state, exchanges code
    except OAuthError as exc:
        logger.warning("Google authorization failed: %s", exc.error)
        return jsonify(error="Google sign-in failed"), 401

    claims = token.get("userinfo") or {}
    if claims.get("email_verified") is False:
        logger.warning("Google account %s has an unverified email", claims.get("sub"))
        return jsonify(error="Google sign-in failed"), 401

    profile = {
        "email": claims.get("email"),
        "name": claims.get("name"),
        "image": claims.get("picture"),
    }

    service = SignInService(ip_rate_limiter(), email_rate_limiter())
    result = service.attempt_federated_sign_in(
        PROVIDER,
        str(claims.get("sub") or ""),
        profile,
        tokens=_token_material(token),
        merge_on_email=current_app.config.get("FEDERATED_MERGE_ON_EMAIL", True),
    )
    if not isinstance(result, SignInSuccess):
        return jsonify(error=result.message), 401

    raw_token = create_session(result.user_id)
    resp = redirect(current_app.config.get("POST_LOGIN_REDIRECT", "/dashboard"))
    set_session_cookie(resp, raw_token)
    return issue_csrf_token(resp)
