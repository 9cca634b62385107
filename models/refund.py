from datetime import datetime
from models.db import db

class Refund(db.Model):
    __tablename__ = "refunds"

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, index=True)
    payment_intent_id = db.Column(db.Integer, db.ForeignKey("payment_intents.id"), nullable=True, index=True)

    refund_amount = db.Column(db.Integer, nullable=False)
    platform_fee_retained = db.Column(db.Integer, nullable=False, default=0)
    original_advance = db.Column(db.Integer, nullable=False)
    tier = db.Column(db.String(40), nullable=False)  # FULL, PARTIAL_50, NONE, late_payment_conflict

    status = db.Column(db.String(20), nullable=False, default="REQUESTED")
    # REQUESTED, APPROVED, PROCESSING, REFUNDED, REJECTED
    reason = db.Column(db.String(255), nullable=True)
    reference_id = db.Column(db.String(128), nullable=True)
    decided_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    approved_at = db.Column(db.DateTime, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
