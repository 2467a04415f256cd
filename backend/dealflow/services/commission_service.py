# Overview: Service-layer operations for the commission ledger; encapsulates commission math and payout state.

"""
Commission Ledger Service

COMMISSION MATH (integer money, no floats):
    deal_value_cents = rcv_cents if present, else total_price_cents, else 0
    amount_cents     = round_half_up(deal_value_cents * percent_bps / 10_000)

    Percentages arrive as decimals ("10.5") and are stored as basis points
    (1050). Amounts are a snapshot taken when the row is created; later
    edits to the deal price never recompute them.

PAYOUT:
    A commission is paid exactly once. Paying twice raises AlreadyPaidError
    carrying the prior payout so the caller can answer idempotently.

TOTALS:
    total_owed  = sum of UNPAID commission amounts on the deal
    total_paid  = sum of PAID commission amounts on the deal
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Commission, Deal, Rep
from ..validation import (
    ConflictError,
    MAX_PERCENT_BPS,
    NotFoundError,
    ValidationError,
    bps_to_percent,
    parse_percent_bps,
)
from ..time_utils import today
from .concurrency import is_unique_violation, lock_for_update, run_with_retry
from .deal_event_service import EVENT_COMMISSION_ADDED, EVENT_COMMISSION_PAID, append_deal_event
from .deal_service import deal_value_cents


COMMISSION_SELF_GEN = "self_gen"
COMMISSION_SETTER = "setter"
COMMISSION_CLOSER = "closer"
COMMISSION_REFERRAL = "referral"

VALID_COMMISSION_TYPES = (
    COMMISSION_SELF_GEN,
    COMMISSION_SETTER,
    COMMISSION_CLOSER,
    COMMISSION_REFERRAL,
)


class AlreadyPaidError(ConflictError):
    """Raised when paying a commission that has already been paid."""
    code = "ALREADY_PAID"

    def __init__(self, commission: Commission):
        self.commission = commission
        super().__init__(f"Commission {commission.id} was already paid on {commission.paid_date}")


def compute_commission_amount_cents(value_cents: int, percent_bps: int) -> int:
    """
    amount = value * bps / 10_000, rounded half-up to the cent.

    Examples:
        compute_commission_amount_cents(1_000_000, 1000) -> 100_000  (10% of $10,000)
        compute_commission_amount_cents(12_345, 750)     -> 926      (925.875 rounds up)
    """
    if value_cents < 0:
        raise ValidationError("deal value cannot be negative")
    if percent_bps < 0 or percent_bps > MAX_PERCENT_BPS:
        raise ValidationError("commission percent must be between 0 and 100")
    amount = Decimal(value_cents) * Decimal(percent_bps) / Decimal(10_000)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _resolve_active_rep(rep_id) -> Rep:
    if rep_id is None or isinstance(rep_id, bool):
        raise ValidationError("rep_id is required")
    try:
        rep_id = int(rep_id)
    except (TypeError, ValueError):
        raise ValidationError("rep_id must be an integer")

    rep = db.session.get(Rep, rep_id)
    if rep is None:
        raise ValidationError(f"Rep {rep_id} does not exist")
    if not rep.active:
        raise ValidationError(f"Rep {rep_id} is inactive")
    return rep


def _add_commission_locked(
    deal: Deal,
    *,
    rep_id,
    commission_type: str,
    commission_percent=None,
    idempotency_key: str | None = None,
    actor_user_id: str | None = None,
) -> Commission:
    """
    Create a commission row inside the caller's open transaction.

    The caller holds the deal lock and commits. A repeated idempotency_key on
    the same deal returns the existing row unchanged.
    """
    if commission_type not in VALID_COMMISSION_TYPES:
        raise ValidationError(
            f"Invalid commission_type '{commission_type}'. Must be one of: {', '.join(VALID_COMMISSION_TYPES)}"
        )

    if idempotency_key is not None:
        idempotency_key = str(idempotency_key).strip() or None
        if idempotency_key and len(idempotency_key) > 64:
            raise ValidationError("idempotency_key exceeds max length 64")

    if idempotency_key:
        existing = (
            db.session.query(Commission)
            .filter_by(deal_id=deal.id, idempotency_key=idempotency_key)
            .first()
        )
        if existing is not None:
            return existing

    rep = _resolve_active_rep(rep_id)

    if commission_percent is None:
        percent_bps = rep.default_commission_percent_bps
    else:
        percent_bps = parse_percent_bps(commission_percent)

    value = deal_value_cents(deal)
    commission = Commission(
        deal_id=deal.id,
        rep_id=rep.id,
        commission_type=commission_type,
        commission_percent_bps=percent_bps,
        deal_value_cents=value,
        commission_amount_cents=compute_commission_amount_cents(value, percent_bps),
        paid=False,
        idempotency_key=idempotency_key,
    )
    db.session.add(commission)
    db.session.flush()

    append_deal_event(
        deal_id=deal.id,
        event_type=EVENT_COMMISSION_ADDED,
        actor_user_id=actor_user_id,
        commission_id=commission.id,
        payload={
            "rep_id": rep.id,
            "commission_type": commission_type,
            "percent_bps": percent_bps,
            "amount_cents": commission.commission_amount_cents,
        },
    )
    return commission


def add_commission(
    deal_id: int,
    rep_id,
    commission_type: str = COMMISSION_SELF_GEN,
    commission_percent=None,
    *,
    idempotency_key: str | None = None,
    actor_user_id: str | None = None,
) -> Commission:
    """
    Attach a commission for rep_id to a deal.

    commission_percent defaults to the rep's default percent when omitted.

    Raises:
        NotFoundError: Deal does not exist
        ValidationError: Unknown/inactive rep, bad type, percent out of range
    """
    def _op():
        deal = lock_for_update(db.session.query(Deal).filter_by(id=deal_id)).first()
        if deal is None:
            raise NotFoundError(f"Deal {deal_id} not found")

        commission = _add_commission_locked(
            deal,
            rep_id=rep_id,
            commission_type=commission_type,
            commission_percent=commission_percent,
            idempotency_key=idempotency_key,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return commission

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        # Two requests with the same key raced past the pre-check.
        if idempotency_key and is_unique_violation(exc, "idempotency_key"):
            existing = (
                db.session.query(Commission)
                .filter_by(deal_id=deal_id, idempotency_key=str(idempotency_key).strip())
                .first()
            )
            if existing is not None:
                return existing
        raise


def mark_commission_paid(
    commission_id: int,
    *,
    paid_date: date | None = None,
    actor_user_id: str | None = None,
) -> Commission:
    """
    Mark one commission as paid.

    Raises:
        NotFoundError: Commission does not exist
        AlreadyPaidError: Commission was already paid (prior row on .commission)
    """
    def _op():
        commission = lock_for_update(db.session.query(Commission).filter_by(id=commission_id)).first()
        if commission is None:
            raise NotFoundError(f"Commission {commission_id} not found")
        if commission.paid:
            raise AlreadyPaidError(commission)

        commission.paid = True
        commission.paid_date = paid_date or today()

        append_deal_event(
            deal_id=commission.deal_id,
            event_type=EVENT_COMMISSION_PAID,
            actor_user_id=actor_user_id,
            commission_id=commission.id,
            payload={"amount_cents": commission.commission_amount_cents, "source": "manual"},
        )
        db.session.commit()
        return commission

    return run_with_retry(_op)


def get_commission(commission_id: int) -> Commission:
    commission = db.session.get(Commission, commission_id)
    if commission is None:
        raise NotFoundError(f"Commission {commission_id} not found")
    return commission


def list_commissions(
    *,
    deal_id: int | None = None,
    rep_id: int | None = None,
    paid: bool | None = None,
    limit: int = 500,
) -> list[Commission]:
    q = db.session.query(Commission)
    if deal_id is not None:
        q = q.filter(Commission.deal_id == deal_id)
    if rep_id is not None:
        q = q.filter(Commission.rep_id == rep_id)
    if paid is not None:
        q = q.filter(Commission.paid.is_(paid))
    return q.order_by(Commission.id.asc()).limit(limit).all()


def _sum_amounts(deal_id: int, paid: bool | None) -> int:
    q = db.session.query(func.coalesce(func.sum(Commission.commission_amount_cents), 0)).filter(
        Commission.deal_id == deal_id
    )
    if paid is not None:
        q = q.filter(Commission.paid.is_(paid))
    return int(q.scalar() or 0)


def total_owed(deal_id: int) -> int:
    """Sum of unpaid commission amounts on the deal (cents)."""
    return _sum_amounts(deal_id, paid=False)


def total_paid(deal_id: int) -> int:
    """Sum of paid commission amounts on the deal (cents)."""
    return _sum_amounts(deal_id, paid=True)


def get_commission_summary(deal_id: int) -> dict:
    """
    Per-deal commission roll-up for the payout screen.

    exceeds_100_percent flags a deal whose commission percents add up past
    100%. It is informational; nothing blocks such a split.
    """
    deal = db.session.get(Deal, deal_id)
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found")

    rows = list_commissions(deal_id=deal_id)
    percent_total_bps = sum(c.commission_percent_bps for c in rows)

    return {
        "deal_id": deal_id,
        "deal_value_cents": deal_value_cents(deal),
        "commission_count": len(rows),
        "unpaid_count": sum(1 for c in rows if not c.paid),
        "total_commission_cents": sum(c.commission_amount_cents for c in rows),
        "total_owed_cents": total_owed(deal_id),
        "total_paid_cents": total_paid(deal_id),
        "percent_total": bps_to_percent(percent_total_bps),
        "exceeds_100_percent": percent_total_bps > MAX_PERCENT_BPS,
        "commissions": [c.to_dict() for c in rows],
    }
