from datetime import datetime
from models.db import db

class LedgerEntry(db.Model):
    __tablename__ = "owner_ledger_entries"

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(30), nullable=False)  # BOOKING_CREDIT, BOOKING_REVERSAL
    amount = db.Column(db.Integer, nullable=False)  # signed, smallest unit
    running_balance = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    period_month = db.Column(db.String(7), nullable=False, index=True)  # "YYYY-MM"

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        # one credit and at most one reversal per reservation
        db.UniqueConstraint("reservation_id", "entry_type", name="uq_ledger_reservation_entry"),
    )
