from datetime import datetime
from models.db import db

ACTIVE_SUBSCRIPTION_STATUSES = ("TRIAL", "ACTIVE")

class OwnerSubscription(db.Model):
    __tablename__ = "owner_subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default="TRIAL")
    # status values: TRIAL, ACTIVE, PAST_DUE, SUSPENDED, CANCELED

    current_period_end = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SUBSCRIPTION_STATUSES
