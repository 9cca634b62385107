from datetime import datetime
from models.db import db

class BookingEvent(db.Model):
    __tablename__ = "booking_events"

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, index=True)

    # created, confirmed, canceled, expired, completed, late_payment_accepted,
    # late_payment_conflict, payment_failed, offline_payment_recorded
    event = db.Column(db.String(40), nullable=False)
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)  # null for webhook/sweep

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
