from datetime import datetime
from models.db import db

class PricingProfile(db.Model):
    __tablename__ = "pricing_profiles"

    id = db.Column(db.Integer, primary_key=True)
    play_area_id = db.Column(db.Integer, db.ForeignKey("play_areas.id"), nullable=False, index=True)

    sport = db.Column(db.String(40), nullable=False, default="FUTSAL")

    # e.g. [60, 90, 120]
    allowed_durations = db.Column(db.JSON, nullable=False, default=list)
    # duration minutes (as string keys) -> amount in smallest unit
    duration_prices = db.Column(db.JSON, nullable=False, default=dict)
    peak_duration_prices = db.Column(db.JSON, nullable=True)

    slot_interval_minutes = db.Column(db.Integer, nullable=False, default=30)
    buffer_minutes = db.Column(db.Integer, nullable=False, default=10)
    min_lead_time_minutes = db.Column(db.Integer, nullable=False, default=60)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    play_area = db.relationship("PlayArea", back_populates="pricing_profiles")
    peak_rules = db.relationship("PeakRule", back_populates="pricing_profile", lazy="select")

    def allows_duration(self, minutes: int) -> bool:
        return int(minutes) in [int(d) for d in (self.allowed_durations or [])]


class PeakRule(db.Model):
    __tablename__ = "peak_rules"

    id = db.Column(db.Integer, primary_key=True)
    pricing_profile_id = db.Column(db.Integer, db.ForeignKey("pricing_profiles.id"), nullable=False, index=True)

    # 0 = Monday ... 6 = Sunday, local time
    day_of_week = db.Column(db.Integer, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # "HH:MM"
    end_time = db.Column(db.String(5), nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    pricing_profile = db.relationship("PricingProfile", back_populates="peak_rules")
