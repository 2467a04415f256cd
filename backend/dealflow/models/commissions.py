from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from ..validation import bps_to_percent


class Commission(db.Model):
    """
    A single rep's stake in a deal.

    WHY: commission_amount_cents is a point-in-time snapshot. It is computed
    once from deal_value_cents (rcv, else total_price) when the row is created
    and never recomputed, so historical payouts stay stable when the deal's
    price is edited later.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        db.UniqueConstraint("deal_id", "idempotency_key", name="uq_commissions_deal_idempotency_key"),
        db.Index("ix_commissions_deal_paid", "deal_id", "paid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey("deals.id"), nullable=False, index=True)
    rep_id = db.Column(db.Integer, db.ForeignKey("reps.id"), nullable=False, index=True)

    commission_type = db.Column(db.String(16), nullable=False)  # self_gen, setter, closer, referral
    commission_percent_bps = db.Column(db.Integer, nullable=False)
    commission_amount_cents = db.Column(db.BigInteger, nullable=False)
    deal_value_cents = db.Column(db.BigInteger, nullable=False)

    paid = db.Column(db.Boolean, nullable=False, default=False, index=True)
    paid_date = db.Column(db.Date, nullable=True)

    # Client-supplied key making add_commission safe to retry
    idempotency_key = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    deal = db.relationship("Deal", backref=db.backref("commissions", lazy=True, order_by="Commission.id"))
    rep = db.relationship("Rep", backref=db.backref("commissions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "rep_id": self.rep_id,
            "rep_name": self.rep.full_name if self.rep else None,
            "commission_type": self.commission_type,
            "commission_percent": bps_to_percent(self.commission_percent_bps),
            "commission_amount_cents": self.commission_amount_cents,
            "deal_value_cents": self.deal_value_cents,
            "paid": self.paid,
            "paid_date": to_iso_date(self.paid_date),
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
