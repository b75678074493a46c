from models.db import db


class LinkedAccount(db.Model):
    __tablename__ = "linked_accounts"
    __table_args__ = (
        db.UniqueConstraint("provider", "provider_account_id", name="uq_linked_accounts_provider_account"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, default="oauth")
    provider = db.Column(db.String(64), nullable=False)  # e.g. google
    provider_account_id = db.Column(db.String(255), nullable=False)

    # opaque provider token material, overwritten on every re-authentication
    access_token = db.Column(db.Text, nullable=True)
    refresh_token = db.Column(db.Text, nullable=True)
    id_token = db.Column(db.Text, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    token_type = db.Column(db.String(64), nullable=True)
    scope = db.Column(db.String(255), nullable=True)
    session_state = db.Column(db.String(255), nullable=True)

    user = db.relationship("User", back_populates="linked_accounts")
