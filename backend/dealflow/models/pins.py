from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Pin(db.Model):
    """
    Geolocated field observation dropped by a rep while canvassing.

    Pin status (not_home, follow_up, appointment, installed, renter,
    not_interested) is its own vocabulary, independent from Deal.status.

    INVARIANTS:
    - normalized_address is unique platform-wide (cross-rep duplicate guard)
    - deal_id is set exactly once, by pin-to-deal conversion
    """
    __tablename__ = "pins"
    __table_args__ = (
        db.UniqueConstraint("normalized_address", name="uq_pins_normalized_address"),
        db.UniqueConstraint("deal_id", name="uq_pins_deal_id"),
        db.Index("ix_pins_location", "latitude", "longitude"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rep_id = db.Column(db.Integer, db.ForeignKey("reps.id"), nullable=False, index=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=True)

    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(64), nullable=True)
    zip_code = db.Column(db.String(16), nullable=True)
    normalized_address = db.Column(db.String(255), nullable=True)

    homeowner_name = db.Column(db.String(200), nullable=True)
    homeowner_phone = db.Column(db.String(32), nullable=True)
    homeowner_email = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="not_home", index=True)
    notes = db.Column(db.Text, nullable=True)

    # Appointment scheduling
    appointment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    appointment_end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    appointment_all_day = db.Column(db.Boolean, nullable=False, default=False)
    assigned_closer_id = db.Column(db.Integer, db.ForeignKey("reps.id"), nullable=True, index=True)
    follow_up_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    rep = db.relationship("Rep", foreign_keys=[rep_id], backref=db.backref("pins", lazy=True))
    assigned_closer = db.relationship("Rep", foreign_keys=[assigned_closer_id])
    deal = db.relationship("Deal", backref=db.backref("pin", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rep_id": self.rep_id,
            "rep_name": self.rep.full_name if self.rep else None,
            "deal_id": self.deal_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "normalized_address": self.normalized_address,
            "homeowner_name": self.homeowner_name,
            "homeowner_phone": self.homeowner_phone,
            "homeowner_email": self.homeowner_email,
            "status": self.status,
            "notes": self.notes,
            "appointment_date": to_utc_z(self.appointment_date),
            "appointment_end_date": to_utc_z(self.appointment_end_date),
            "appointment_all_day": self.appointment_all_day,
            "assigned_closer_id": self.assigned_closer_id,
            "closer_name": self.assigned_closer.full_name if self.assigned_closer else None,
            "follow_up_date": to_iso_date(self.follow_up_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
