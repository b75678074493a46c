from datetime import datetime
from models.db import db

PURPOSE_EMAIL_VERIFICATION = "email_verification"
PURPOSE_PASSWORD_RESET = "password_reset"
PURPOSES = (PURPOSE_EMAIL_VERIFICATION, PURPOSE_PASSWORD_RESET)


class VerificationToken(db.Model):
    __tablename__ = "verification_tokens"
    __table_args__ = (
        db.Index("ix_verification_tokens_lookup", "email", "purpose", "used"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(256), nullable=False)
    token = db.Column(db.String(6), nullable=False)  # 6-digit numeric code
    purpose = db.Column(db.String(50), nullable=False)

    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
