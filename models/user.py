from datetime import datetime
from models.db import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    # always stored lowercased + trimmed
    email = db.Column(db.String(256), unique=True, nullable=False, index=True)

    # NULL for accounts that only ever signed in through a federated provider
    password_hash = db.Column(db.String(255), nullable=True)

    name = db.Column(db.String(100), nullable=True)
    image = db.Column(db.Text, nullable=True)

    # email-verified gate for password sign-in
    is_active = db.Column(db.Boolean, default=False, nullable=False)
    email_verified_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    linked_accounts = db.relationship(
        "LinkedAccount", back_populates="user", cascade="all, delete-orphan", lazy=True
    )

    def profile(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "image": self.image,
            "email_verified_at": self.email_verified_at.isoformat() if self.email_verified_at else None,
        }
