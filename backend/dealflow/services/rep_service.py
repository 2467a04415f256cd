# Overview: Roster mirror for sales reps (used by the CLI and commission defaults).

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Rep
from ..validation import ConflictError, ValidationError, parse_percent_bps
from .concurrency import is_unique_violation, run_with_retry


VALID_COMMISSION_LEVELS = ("junior", "senior", "manager")

# Default commission percent per level, in basis points
LEVEL_DEFAULT_PERCENT_BPS = {"junior": 500, "senior": 1000, "manager": 1300}


def create_rep(
    *,
    user_id: str,
    full_name: str | None = None,
    commission_level: str = "junior",
    default_commission_percent=None,
) -> Rep:
    """
    Register a rep from the external roster.

    The default percent follows the level when omitted.

    Raises:
        ValidationError: Blank user_id, unknown level, percent out of range
        ConflictError: user_id already registered
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("user_id is required")
    if len(user_id) > 64:
        raise ValidationError("user_id exceeds max length 64")
    if commission_level not in VALID_COMMISSION_LEVELS:
        raise ValidationError(
            f"Invalid commission_level '{commission_level}'. Must be one of: {', '.join(VALID_COMMISSION_LEVELS)}"
        )
    if default_commission_percent in (None, ""):
        bps = LEVEL_DEFAULT_PERCENT_BPS[commission_level]
    else:
        bps = parse_percent_bps(default_commission_percent, field="default_commission_percent")

    def _op():
        rep = Rep(
            user_id=user_id,
            full_name=(full_name or "").strip() or None,
            commission_level=commission_level,
            default_commission_percent_bps=bps,
            active=True,
        )
        db.session.add(rep)
        db.session.commit()
        return rep

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        if is_unique_violation(exc, "user_id"):
            raise ConflictError(f"Rep with user_id '{user_id}' already exists") from exc
        raise


def set_rep_active(rep_id: int, active: bool) -> Rep:
    rep = db.session.get(Rep, rep_id)
    if rep is None:
        raise ValidationError(f"Rep {rep_id} does not exist")
    rep.active = active
    db.session.commit()
    return rep


def list_reps(*, include_inactive: bool = False) -> list[Rep]:
    q = db.session.query(Rep)
    if not include_inactive:
        q = q.filter(Rep.active.is_(True))
    return q.order_by(Rep.id.asc()).all()
