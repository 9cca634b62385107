from datetime import datetime
from models.db import db

class PlayArea(db.Model):
    __tablename__ = "play_areas"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    # play areas sharing one physical surface share this value
    conflict_group_id = db.Column(db.String(64), nullable=False, index=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    facility = db.relationship("Facility", back_populates="play_areas")
    pricing_profiles = db.relationship("PricingProfile", back_populates="play_area", lazy="select")
