from datetime import datetime
from models.db import db

BLOCK_TYPES = ("MAINTENANCE", "PRIVATE_EVENT", "WEATHER", "OTHER")

class ManualBlock(db.Model):
    __tablename__ = "manual_blocks"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)
    conflict_group_id = db.Column(db.String(64), nullable=False, index=True)

    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)

    block_type = db.Column(db.String(20), nullable=False, default="MAINTENANCE")
    reason = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.CheckConstraint("end_at > start_at", name="ck_manual_block_range"),
    )

    @classmethod
    def active(cls, conflict_group_id: str):
        return cls.query.filter(
            cls.conflict_group_id == conflict_group_id,
            cls.deleted_at.is_(None),
        )
