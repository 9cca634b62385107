from datetime import datetime
from models.db import db

class Facility(db.Model):
    __tablename__ = "facilities"

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=True)

    # local wall-clock times, "HH:MM"
    opening_time = db.Column(db.String(5), nullable=False, default="06:00")
    closing_time = db.Column(db.String(5), nullable=False, default="23:00")

    is_approved = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    play_areas = db.relationship("PlayArea", back_populates="facility", lazy="select")

    @property
    def is_bookable(self) -> bool:
        return self.is_approved and self.deleted_at is None
