import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)

_SUBJECTS = {
    "email_verification": "Verify Your Email Address",
    "password_reset": "Password Reset Verification Code",
}

_INTROS = {
    "email_verification": "Please use the following verification code to complete your registration:",
    "password_reset": "We received a request to reset your password. Use the code below to proceed:",
}


def otp_email(purpose: str, code: str, ttl_minutes: int) -> tuple[str, str]:
    """Subject + minimal HTML body for a one-time code."""
    subject = _SUBJECTS.get(purpose, "Your verification code")
    intro = _INTROS.get(purpose, "Your verification code:")
    html = (
        f"<p>{intro}</p>"
        f"<h1 style=\"letter-spacing: 5px;\">{code}</h1>"
        f"<p>This code will expire in {ttl_minutes} minutes and can only be used once.</p>"
        "<p>If you didn't request this, please ignore this email.</p>"
    )
    return subject, html


def send_email(to_email: str, subject: str, html: str):
    """Returns (ok, error). Never raises; the caller decides what a failed send means."""
    if current_app.config.get("EMAIL_CONSOLE_ONLY"):
        logger.info("Email to %s suppressed (console mode): %s\n%s", to_email, subject, html)
        return True, None

    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    use_tls = current_app.config.get("SMTP_USE_TLS", True)
    timeout = current_app.config.get("SMTP_TIMEOUT_SECONDS", 10)

    if not host or not from_email:
        logger.error("SMTP is not configured; cannot send '%s' to %s", subject, to_email)
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(host, port, timeout=timeout) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Sending '%s' to %s failed: %s", subject, to_email, exc)
        return False, str(exc)
