from datetime import datetime
from models.db import db

class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)  # nullable for unauth events
    action = db.Column(db.String(50), nullable=False)  # e.g. login, failed_login
    category = db.Column(db.String(30), nullable=False)  # auth, profile, security, verification
    description = db.Column(db.Text, nullable=False)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)
    success = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
