from datetime import datetime
from models.db import db

# statuses that hold a claim on the conflict group's timeline
OCCUPYING_STATUSES = ("HOLD", "CONFIRMED")

class Reservation(db.Model):
    __tablename__ = "reservations"

    id = db.Column(db.Integer, primary_key=True)
    reservation_number = db.Column(db.String(32), unique=True, nullable=False, index=True)

    player_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    play_area_id = db.Column(db.Integer, db.ForeignKey("play_areas.id"), nullable=False, index=True)
    pricing_profile_id = db.Column(db.Integer, db.ForeignKey("pricing_profiles.id"), nullable=False)
    conflict_group_id = db.Column(db.String(64), nullable=False, index=True)

    # [start_at, end_at) is play time, [start_at, blocked_end_at) is exclusivity
    start_at = db.Column(db.DateTime, nullable=False, index=True)
    end_at = db.Column(db.DateTime, nullable=False)
    blocked_end_at = db.Column(db.DateTime, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), nullable=False, default="HOLD", index=True)
    # status values: HOLD, CONFIRMED, CANCELED, COMPLETED, EXPIRED
    payment_stage = db.Column(db.String(24), nullable=False, default="NOT_PAID")
    # NOT_PAID, ADVANCE_PAID, PARTIAL_OFFLINE, FULL_PAID_OFFLINE

    # smallest currency unit
    total_amount = db.Column(db.Integer, nullable=False)
    advance_amount = db.Column(db.Integer, nullable=False)
    platform_commission = db.Column(db.Integer, nullable=False)
    owner_advance_credit = db.Column(db.Integer, nullable=False)
    offline_amount_collected = db.Column(db.Integer, nullable=False, default=0)
    is_peak_pricing = db.Column(db.Boolean, nullable=False, default=False)

    hold_expires_at = db.Column(db.DateTime, nullable=True)

    contact_name = db.Column(db.String(120), nullable=True)
    contact_phone = db.Column(db.String(30), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    canceled_by = db.Column(db.Integer, nullable=True)
    expired_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    play_area = db.relationship("PlayArea")
    payment_intents = db.relationship(
        "PaymentIntent", back_populates="reservation", order_by="PaymentIntent.id", lazy="select"
    )

    __table_args__ = (
        db.CheckConstraint("blocked_end_at >= end_at AND end_at > start_at", name="ck_reservation_range"),
        db.Index("ix_reservations_group_start", "conflict_group_id", "start_at"),
    )

    @classmethod
    def live(cls):
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def occupying(cls, conflict_group_id: str):
        """Non-deleted HOLD/CONFIRMED rows on one conflict group."""
        return cls.live().filter(
            cls.conflict_group_id == conflict_group_id,
            cls.status.in_(OCCUPYING_STATUSES),
        )

    @property
    def remaining_amount(self) -> int:
        return self.total_amount - self.advance_amount

    @property
    def owner_user_id(self):
        return self.play_area.facility.owner_user_id if self.play_area else None

    def latest_intent(self):
        return self.payment_intents[-1] if self.payment_intents else None
