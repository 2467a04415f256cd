# Overview: Service-layer operations for pin-to-deal conversion.

"""
Pin -> Deal Conversion

One pin becomes at most one deal. In a single transaction:
1. Lock the pin; refuse if it already carries a deal_id
2. Seed a new deal from the pin (address, homeowner, notes); extra_fields
   fill whatever the pin lacks and add prices/dates
3. Commission for the pin owner (self_gen unless told otherwise)
4. Closer commission when the pin has an assigned closer other than the owner
5. Link pin.deal_id

The pin's own status is left as-is; payment approval later syncs it.

RACES: pins.deal_id is unique and pins carry a version_id, so a second
concurrent conversion either goes stale (retried, then sees deal_id set) or
fails the unique index. Both surface as AlreadyConvertedError.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Pin
from ..validation import ConflictError, NotFoundError, ValidationError
from .commission_service import COMMISSION_CLOSER, COMMISSION_SELF_GEN, _add_commission_locked
from .concurrency import is_unique_violation, lock_for_update, run_with_retry
from .deal_event_service import EVENT_PIN_CONVERTED, append_deal_event
from .deal_service import _create_deal_locked


SEEDED_FIELDS = (
    "address",
    "city",
    "state",
    "zip_code",
    "homeowner_name",
    "homeowner_phone",
    "homeowner_email",
    "notes",
)


class AlreadyConvertedError(ConflictError):
    """Raised when a pin has already been converted into a deal."""
    code = "ALREADY_CONVERTED"

    def __init__(self, pin_id: int, deal_id: int | None = None):
        self.pin_id = pin_id
        self.deal_id = deal_id
        suffix = f" (deal {deal_id})" if deal_id else ""
        super().__init__(f"Pin {pin_id} has already been converted{suffix}")


def _seed_payload(pin: Pin, extra_fields: dict) -> dict:
    payload = dict(extra_fields)
    for field in SEEDED_FIELDS:
        value = getattr(pin, field)
        if value not in (None, ""):
            payload[field] = value
    return payload


def convert_pin_to_deal(
    pin_id: int,
    extra_fields: dict | None = None,
    *,
    actor_user_id: str | None = None,
    vocabulary: str | None = None,
    commission_type: str = COMMISSION_SELF_GEN,
    commission_percent=None,
    closer_commission_percent=None,
):
    """
    Convert a pin into a deal with its initial commissions.

    Args:
        pin_id: Pin to convert
        extra_fields: Deal fields not carried by the pin (total_price_cents, ...)
        commission_type: Type of the owner's commission
        commission_percent: Owner percent (rep default when omitted)
        closer_commission_percent: Closer percent (closer's default when omitted)

    Returns:
        The new Deal

    Raises:
        NotFoundError: Pin does not exist
        AlreadyConvertedError: Pin already has a deal
        ValidationError: Pin lacks an address or homeowner name, bad fields
        DuplicateAddressError: Another deal already holds the address
    """
    if extra_fields is None:
        extra_fields = {}
    if not isinstance(extra_fields, dict):
        raise ValidationError("extra_fields must be an object")

    def _op():
        pin = lock_for_update(db.session.query(Pin).filter_by(id=pin_id)).first()
        if pin is None:
            raise NotFoundError(f"Pin {pin_id} not found")
        if pin.deal_id is not None:
            raise AlreadyConvertedError(pin.id, pin.deal_id)

        # The pin itself holds this address; only other deals can collide.
        deal = _create_deal_locked(
            _seed_payload(pin, extra_fields),
            vocabulary=vocabulary,
            created_by_user_id=actor_user_id,
            guard_address=True,
            guard_scope={"include_pins": False},
            event_note=f"Converted from pin {pin.id}",
        )

        _add_commission_locked(
            deal,
            rep_id=pin.rep_id,
            commission_type=commission_type,
            commission_percent=commission_percent,
            actor_user_id=actor_user_id,
        )

        if pin.assigned_closer_id is not None and pin.assigned_closer_id != pin.rep_id:
            _add_commission_locked(
                deal,
                rep_id=pin.assigned_closer_id,
                commission_type=COMMISSION_CLOSER,
                commission_percent=closer_commission_percent,
                actor_user_id=actor_user_id,
            )

        pin.deal_id = deal.id

        append_deal_event(
            deal_id=deal.id,
            event_type=EVENT_PIN_CONVERTED,
            actor_user_id=actor_user_id,
            pin_id=pin.id,
            payload={"pin_rep_id": pin.rep_id, "closer_id": pin.assigned_closer_id},
        )

        db.session.commit()
        current_app.logger.info("Pin %s converted to deal %s", pin.id, deal.id)
        return deal

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        if is_unique_violation(exc, "deal_id"):
            existing = db.session.get(Pin, pin_id)
            raise AlreadyConvertedError(pin_id, existing.deal_id if existing else None) from exc
        raise
