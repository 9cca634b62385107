from datetime import datetime
from models.db import db

class PaymentIntent(db.Model):
    __tablename__ = "payment_intents"

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, index=True)

    gateway = db.Column(db.String(20), nullable=False, default="SSLCOMMERZ")
    amount = db.Column(db.Integer, nullable=False)   # smallest unit
    currency = db.Column(db.String(10), nullable=False, default="BDT")

    status = db.Column(db.String(30), nullable=False, default="PENDING")
    # PENDING, SUCCESS, FAILED, EXPIRED, LATE_SUCCESS_CONFLICT
    gateway_tran_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    session_key = db.Column(db.String(255), nullable=True)
    gateway_url = db.Column(db.String(500), nullable=True)

    expires_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    reservation = db.relationship("Reservation", back_populates="payment_intents")


class PaymentTransaction(db.Model):
    """Append-only record of each webhook delivery taken into processing."""
    __tablename__ = "payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    payment_intent_id = db.Column(db.Integer, db.ForeignKey("payment_intents.id"), nullable=False, index=True)

    tran_id = db.Column(db.String(64), nullable=False)
    val_id = db.Column(db.String(128), nullable=True)
    amount = db.Column(db.Integer, nullable=True)  # null when the delivered amount did not parse
    currency = db.Column(db.String(10), nullable=True)

    status = db.Column(db.String(30), nullable=False)
    # SUCCESS, FAILED, CANCELLED, UNATTEMPTED, EXPIRED, AMOUNT_MISMATCH, VALIDATION_FAILED,
    # LATE_SUCCESS_CONFLICT
    gateway_status = db.Column(db.String(30), nullable=True)
    signature_valid = db.Column(db.Boolean, nullable=False, default=False)
    raw_payload = db.Column(db.JSON, nullable=False)

    verified_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("tran_id", "status", name="uq_payment_transaction_status"),
    )
