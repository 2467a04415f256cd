from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import bps_to_percent


class Rep(db.Model):
    """
    Sales representative, mirrored from the external roster system.

    The engine reads reps (rep_id, default commission percent, active flag)
    but never authenticates them; user_id is the roster's opaque identity.
    """
    __tablename__ = "reps"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(200), nullable=True)

    commission_level = db.Column(db.String(16), nullable=False, default="junior")  # junior, senior, manager
    default_commission_percent_bps = db.Column(db.Integer, nullable=False, default=500)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "commission_level": self.commission_level,
            "default_commission_percent": bps_to_percent(self.default_commission_percent_bps),
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
