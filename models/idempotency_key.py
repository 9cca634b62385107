from datetime import datetime
from models.db import db

class IdempotencyKey(db.Model):
    __tablename__ = "idempotency_keys"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), unique=True, nullable=False, index=True)
    scope = db.Column(db.String(40), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="IN_PROGRESS")  # IN_PROGRESS, DONE
    result = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
