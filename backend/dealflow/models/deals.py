from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Deal(db.Model):
    """
    One homeowner roofing job, tracked from lead to paid completion.

    WHY: The deal is the system of record for money. Status moves only through
    deal_service.transition_deal (or payment approval); commissions hang off it
    and are settled together with the status change.

    VOCABULARY: status_vocabulary is pinned at creation ("extended" or
    "legacy") and decides which forward path the deal follows.
    """
    __tablename__ = "deals"
    __table_args__ = (
        db.Index("ix_deals_payment_queue", "payment_requested", "payment_requested_at"),
        db.Index("ix_deals_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Homeowner
    homeowner_name = db.Column(db.String(200), nullable=False)
    homeowner_phone = db.Column(db.String(32), nullable=True)
    homeowner_email = db.Column(db.String(255), nullable=True)

    # Property
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(64), nullable=True)
    zip_code = db.Column(db.String(16), nullable=True)
    normalized_address = db.Column(db.String(255), nullable=True, index=True)

    # Money (cents). rcv wins over total_price for commission math when present.
    total_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    rcv_cents = db.Column(db.BigInteger, nullable=True)

    # Lifecycle
    status = db.Column(db.String(32), nullable=False, default="lead", index=True)
    status_vocabulary = db.Column(db.String(16), nullable=False, default="extended")
    held_from_status = db.Column(db.String(32), nullable=True)

    # Contract
    contract_signed = db.Column(db.Boolean, nullable=False, default=False)
    signature_url = db.Column(db.String(1024), nullable=True)

    # Verification artifacts (opaque URIs owned by file storage)
    permit_file_url = db.Column(db.String(1024), nullable=True)
    install_images = db.Column(db.JSON, nullable=True)
    completion_images = db.Column(db.JSON, nullable=True)

    # Key dates
    signed_date = db.Column(db.Date, nullable=True)
    install_date = db.Column(db.Date, nullable=True)
    completion_date = db.Column(db.Date, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # Payment request sub-state: not_requested, requested, approved, rejected
    payment_requested = db.Column(db.Boolean, nullable=False, default=False)
    payment_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default="not_requested", index=True)
    payment_reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_reviewed_by = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "homeowner_name": self.homeowner_name,
            "homeowner_phone": self.homeowner_phone,
            "homeowner_email": self.homeowner_email,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "normalized_address": self.normalized_address,
            "total_price_cents": self.total_price_cents,
            "rcv_cents": self.rcv_cents,
            "status": self.status,
            "status_vocabulary": self.status_vocabulary,
            "held_from_status": self.held_from_status,
            "contract_signed": self.contract_signed,
            "signature_url": self.signature_url,
            "permit_file_url": self.permit_file_url,
            "install_images": list(self.install_images or []),
            "completion_images": list(self.completion_images or []),
            "signed_date": to_iso_date(self.signed_date),
            "install_date": to_iso_date(self.install_date),
            "completion_date": to_iso_date(self.completion_date),
            "notes": self.notes,
            "payment_requested": self.payment_requested,
            "payment_requested_at": to_utc_z(self.payment_requested_at),
            "payment_status": self.payment_status,
            "payment_reviewed_at": to_utc_z(self.payment_reviewed_at),
            "payment_reviewed_by": self.payment_reviewed_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class DealEvent(db.Model):
    """
    Append-only audit trail for deal state, commission and pin-link changes.

    Events are written inside the same DB transaction as the change they record.
    """
    __tablename__ = "deal_events"
    __table_args__ = (
        db.Index("ix_deal_events_deal_occurred", "deal_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False, index=True)

    # e.g., DEAL_CREATED, STATUS_CHANGED, PAYMENT_APPROVED, COMMISSION_PAID
    event_type = db.Column(db.String(64), nullable=False, index=True)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)

    commission_id = db.Column(db.Integer, db.ForeignKey("commissions.id"), nullable=True, index=True)
    pin_id = db.Column(db.Integer, db.ForeignKey("pins.id"), nullable=True, index=True)
    actor_user_id = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    deal = db.relationship("Deal", backref=db.backref("events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "commission_id": self.commission_id,
            "pin_id": self.pin_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": json.loads(self.payload) if self.payload else None,
        }
