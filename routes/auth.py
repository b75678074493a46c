import logging

from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User
from models.verification_token import PURPOSE_EMAIL_VERIFICATION
from security import recovery
from security.otp import otp_manager
from security.password import hash_password
from security.password_policy import (
    is_valid_email,
    is_valid_otp_format,
    normalize_email,
    validate_password,
)
from security.csrf import CSRF_COOKIE, issue_csrf_token
from security.rate_limit import client_ip, email_rate_limiter, ip_rate_limiter
from security.session import create_session, revoke_session, set_session_cookie
from security.signin import SignInService, SignInSuccess
from utils import audit
from utils.auth_context import login_required

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

INVALID_CODE = "Invalid or expired code"
DELIVERY_FAILED = "Failed to send email. Please try again later."
RESET_SENT = "If an account with this email exists, you will receive a password reset code shortly."
VERIFICATION_SENT = "If this account is awaiting verification, a new code has been sent."


def _json():
    return request.get_json(silent=True) or {}


def _field_errors(email=None, password=None, otp=None) -> dict:
    """Field-level validation, run before any core logic."""
    errors = {}
    if email is not None and not is_valid_email(email):
        errors["email"] = ["Invalid email"]
    if password is not None:
        valid, pw_errors = validate_password(password)
        if not valid:
            errors["password"] = pw_errors
    if otp is not None and not is_valid_otp_format(otp):
        errors["otp"] = ["OTP must be 6 digits"]
    return errors


def _invalid_input(errors: dict):
    return jsonify(error="Invalid input", details=errors), 400


@auth_bp.post("/register")
def register():
    data = _json()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""
    name = (data.get("name") or "").strip() or None

    errors = _field_errors(email=email, password=password)
    if name is not None and len(name) > 100:
        errors["name"] = ["Name must be at most 100 characters"]
    if errors:
        return _invalid_input(errors)

    if User.query.filter_by(email=email).first():
        return jsonify(error="Email already registered"), 409

    user = User(email=email, password_hash=hash_password(password), name=name,
                is_active=False, email_verified_at=None)
    db.session.add(user)
    db.session.flush()

    # commits the user together with the code, or rolls both back
    issued = otp_manager().issue(email, PURPOSE_EMAIL_VERIFICATION)
    if not issued.ok:
        logger.warning("Signup aborted for %s: verification email not sent", email)
        return jsonify(error=DELIVERY_FAILED), 503

    audit.log_signup(user.id, email, "email")
    return jsonify(
        message="User created successfully. Please check your email for verification code.",
        email=email,
    ), 201


@auth_bp.post("/login")
def login():
    data = _json()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""

    if not isinstance(password, str) or not isinstance(data.get("email"), str):
        return _invalid_input({"credentials": ["Email and password must be strings"]})
    if not email or not password:
        return _invalid_input({"credentials": ["Email and password are required"]})

    service = SignInService(ip_rate_limiter(), email_rate_limiter())
    result = service.attempt_sign_in(email, password, client_ip())

    if not isinstance(result, SignInSuccess):
        if result.throttled:
            retry_at = result.retry_at.isoformat() if result.retry_at else None
            return jsonify(error=result.message, retry_at=retry_at), 429
        return jsonify(error=result.message), 401

    raw_token = create_session(result.user_id)
    resp = jsonify(message="Login OK", user=result.profile)
    set_session_cookie(resp, raw_token)
    issue_csrf_token(resp)
    return resp, 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "authgate_session")
    revoke_session(request.cookies.get(cookie_name))
    audit.log_logout(g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    resp.delete_cookie(CSRF_COOKIE, path="/")
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(g.user.profile()), 200


@auth_bp.post("/profile")
@login_required
def update_profile():
    data = _json()
    changes = []

    if "name" in data:
        name = data.get("name")
        if name is not None and (not isinstance(name, str) or len(name.strip()) > 100):
            return _invalid_input({"name": ["Name must be a string of at most 100 characters"]})
        g.user.name = name.strip() if name else None
        changes.append("name")

    if "image" in data:
        image = data.get("image")
        if image is not None and not isinstance(image, str):
            return _invalid_input({"image": ["Image must be a URL string"]})
        g.user.image = image or None
        changes.append("image")

    if not changes:
        return jsonify(message="Nothing to update"), 200

    db.session.commit()
    audit.log_profile_update(g.user.id, changes)
    return jsonify(message="Profile updated", user=g.user.profile()), 200


@auth_bp.post("/resend-otp")
def resend_otp():
    email = normalize_email(_json().get("email"))
    errors = _field_errors(email=email)
    if errors:
        return _invalid_input(errors)

    result = recovery.request_email_verification(email, otp_manager())
    if not result.ok:
        return jsonify(error=DELIVERY_FAILED), 503
    return jsonify(message=VERIFICATION_SENT), 200


@auth_bp.post("/verify-otp")
def verify_otp():
    data = _json()
    email = normalize_email(data.get("email"))
    code = data.get("otp")

    errors = _field_errors(email=email, otp=code)
    if errors:
        return _invalid_input(errors)

    result = recovery.verify_email(email, code, otp_manager())
    if not result.ok:
        return jsonify(error=INVALID_CODE), 400
    return jsonify(message="Email verified successfully"), 200


@auth_bp.post("/forgot-password")
def forgot_password():
    email = normalize_email(_json().get("email"))
    errors = _field_errors(email=email)
    if errors:
        return _invalid_input(errors)

    result = recovery.request_password_reset(email, otp_manager())
    if not result.ok:
        return jsonify(error=DELIVERY_FAILED), 503
    return jsonify(message=RESET_SENT), 200


@auth_bp.post("/reset-password")
def reset_password():
    data = _json()
    email = normalize_email(data.get("email"))
    code = data.get("otp")
    new_password = data.get("new_password") or ""

    errors = _field_errors(email=email, otp=code, password=new_password)
    if errors:
        return _invalid_input(errors)

    result = recovery.reset_password(email, code, new_password, otp_manager())
    if result.ok:
        return jsonify(message="Password reset successful. You can now log in with your new password."), 200
    if result.error == recovery.INVALID_PASSWORD:
        return _invalid_input(_field_errors(password=new_password))
    if result.error == recovery.STORAGE_FAILED:
        return jsonify(error="Password update failed. Please request a new code."), 500
    return jsonify(error=INVALID_CODE), 400
