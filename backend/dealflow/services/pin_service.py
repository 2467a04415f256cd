# Overview: Service-layer operations for canvassing pins; encapsulates pin records and pin/deal status sync.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Deal, Pin, Rep
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_pin,
    validate_payload,
)
from .address_guard_service import DuplicateAddressError, ensure_address_available, find_address_matches, normalize_address
from .concurrency import is_unique_violation, lock_for_update, run_with_retry
from .deal_event_service import EVENT_PIN_SYNCED, append_deal_event


PIN_NOT_HOME = "not_home"
PIN_FOLLOW_UP = "follow_up"
PIN_APPOINTMENT = "appointment"
PIN_INSTALLED = "installed"
PIN_RENTER = "renter"
PIN_NOT_INTERESTED = "not_interested"

VALID_PIN_STATUSES = (
    PIN_NOT_HOME,
    PIN_FOLLOW_UP,
    PIN_APPOINTMENT,
    PIN_INSTALLED,
    PIN_RENTER,
    PIN_NOT_INTERESTED,
)

_PIN_FIELDS = {
    "latitude", "longitude",
    "address", "city", "state", "zip_code",
    "homeowner_name", "homeowner_phone", "homeowner_email",
    "status", "notes",
    "appointment_date", "appointment_end_date", "appointment_all_day",
    "assigned_closer_id", "follow_up_date",
}

PIN_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_PIN_FIELDS,
    required_on_create={"latitude", "longitude"},
)

PIN_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=_PIN_FIELDS,
    required_on_create={"latitude", "longitude"},
)


def validate_pin_status(status: str) -> None:
    if status not in VALID_PIN_STATUSES:
        raise ValidationError(
            f"Invalid pin status '{status}'. Must be one of: {', '.join(VALID_PIN_STATUSES)}"
        )


def _validate_rep_reference(rep_id: int | None, field: str) -> None:
    if rep_id is None:
        return
    rep = db.session.get(Rep, rep_id)
    if rep is None:
        raise ValidationError(f"{field}: rep {rep_id} does not exist")
    if not rep.active:
        raise ValidationError(f"{field}: rep {rep_id} is inactive")


def _raise_duplicate(exc: IntegrityError, address: str | None, exclude_pin_id: int | None = None) -> None:
    if is_unique_violation(exc, "normalized_address"):
        matches = find_address_matches(address, include_deals=False, exclude_pin_id=exclude_pin_id)
        raise DuplicateAddressError(address, matches) from exc


def create_pin(payload: dict, *, rep_id: int, actor_user_id: str | None = None) -> Pin:
    """
    Drop a new pin for rep_id.

    The address is checked against every pin and deal on the platform. The
    unique index on pins.normalized_address backs the pre-flight check when
    two reps race on the same house.

    Raises:
        ValidationError: Missing coordinates, bad status, unknown rep
        DuplicateAddressError: Address already held by a pin or deal
    """
    patch = validate_payload(model=Pin, payload=payload, policy=PIN_CREATE_POLICY, partial=False)
    enforce_rules_pin(patch)
    if "status" in patch:
        validate_pin_status(patch["status"])
    _validate_rep_reference(rep_id, "rep_id")
    _validate_rep_reference(patch.get("assigned_closer_id"), "assigned_closer_id")

    def _op():
        normalized = ensure_address_available(patch.get("address"))
        pin = Pin(rep_id=rep_id, normalized_address=normalized, **patch)
        db.session.add(pin)
        db.session.commit()
        current_app.logger.info("Pin %s created by rep %s", pin.id, rep_id)
        return pin

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        _raise_duplicate(exc, patch.get("address"))
        raise


def get_pin(pin_id: int) -> Pin:
    pin = db.session.get(Pin, pin_id)
    if pin is None:
        raise NotFoundError(f"Pin {pin_id} not found")
    return pin


def rep_can_access_pin(pin: Pin, rep_id: int | None) -> bool:
    """Owner or assigned closer."""
    if rep_id is None:
        return False
    return pin.rep_id == rep_id or pin.assigned_closer_id == rep_id


def list_pins(*, rep_id: int | None = None, status: str | None = None, limit: int = 500) -> list[Pin]:
    q = db.session.query(Pin)
    if rep_id is not None:
        q = q.filter(or_(Pin.rep_id == rep_id, Pin.assigned_closer_id == rep_id))
    if status is not None:
        validate_pin_status(status)
        q = q.filter(Pin.status == status)
    return q.order_by(Pin.created_at.desc(), Pin.id.desc()).limit(limit).all()


def update_pin(pin_id: int, payload: dict) -> Pin:
    """
    Edit a pin. deal_id and rep_id are not editable here (conversion and
    reassign_pin own them).
    """
    patch = validate_payload(model=Pin, payload=payload, policy=PIN_UPDATE_POLICY, partial=True)
    enforce_rules_pin(patch)
    if not patch:
        raise ValidationError("No fields to update")
    if "status" in patch:
        validate_pin_status(patch["status"])
    _validate_rep_reference(patch.get("assigned_closer_id"), "assigned_closer_id")

    def _op():
        pin = lock_for_update(db.session.query(Pin).filter_by(id=pin_id)).first()
        if pin is None:
            raise NotFoundError(f"Pin {pin_id} not found")

        start = patch.get("appointment_date", pin.appointment_date)
        end = patch.get("appointment_end_date", pin.appointment_end_date)
        enforce_rules_pin({"appointment_date": start, "appointment_end_date": end})

        if "address" in patch:
            new_normalized = normalize_address(patch["address"])
            if new_normalized != pin.normalized_address:
                pin.normalized_address = ensure_address_available(
                    patch["address"], exclude_pin_id=pin.id, exclude_deal_id=pin.deal_id
                )

        for key, value in patch.items():
            setattr(pin, key, value)

        db.session.commit()
        return pin

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        _raise_duplicate(exc, patch.get("address"), exclude_pin_id=pin_id)
        raise


def set_pin_status(pin_id: int, status: str) -> Pin:
    validate_pin_status(status)

    def _op():
        pin = lock_for_update(db.session.query(Pin).filter_by(id=pin_id)).first()
        if pin is None:
            raise NotFoundError(f"Pin {pin_id} not found")
        pin.status = status
        db.session.commit()
        return pin

    return run_with_retry(_op)


def reassign_pin(pin_id: int, rep_id: int) -> Pin:
    """Admin: hand a pin to another rep."""
    _validate_rep_reference(rep_id, "rep_id")

    def _op():
        pin = lock_for_update(db.session.query(Pin).filter_by(id=pin_id)).first()
        if pin is None:
            raise NotFoundError(f"Pin {pin_id} not found")
        previous = pin.rep_id
        pin.rep_id = rep_id
        db.session.commit()
        current_app.logger.info("Pin %s reassigned from rep %s to rep %s", pin.id, previous, rep_id)
        return pin

    return run_with_retry(_op)


def find_pin_for_deal(deal_id: int) -> Pin | None:
    return db.session.query(Pin).filter_by(deal_id=deal_id).first()


def sync_pin_for_deal(deal_id: int, *, actor_user_id: str | None = None) -> Pin | None:
    """
    Move the deal's source pin to the configured installed status.

    Runs in its own transaction after payment approval has committed.
    Returns None when the deal has no linked pin.
    """
    target = current_app.config.get("PIN_INSTALLED_STATUS", PIN_INSTALLED)
    validate_pin_status(target)

    def _op():
        pin = lock_for_update(db.session.query(Pin).filter_by(deal_id=deal_id)).first()
        if pin is None:
            return None
        if pin.status != target:
            previous = pin.status
            pin.status = target
            append_deal_event(
                deal_id=deal_id,
                event_type=EVENT_PIN_SYNCED,
                actor_user_id=actor_user_id,
                pin_id=pin.id,
                payload={"from": previous, "to": target},
            )
        db.session.commit()
        return pin

    return run_with_retry(_op)


def reconcile_approved_pins(*, dry_run: bool = False) -> list[tuple[int, int]]:
    """
    Repair pins whose post-approval sync failed.

    Finds pins linked to payment-approved deals that are not in the installed
    status and syncs them. Returns [(deal_id, pin_id), ...] that needed it.
    """
    target = current_app.config.get("PIN_INSTALLED_STATUS", PIN_INSTALLED)
    rows = (
        db.session.query(Pin.deal_id, Pin.id)
        .join(Deal, Deal.id == Pin.deal_id)
        .filter(Deal.payment_status == "approved")
        .filter(Pin.status != target)
        .order_by(Pin.id.asc())
        .all()
    )
    pairs = [(deal_id, pin_id) for deal_id, pin_id in rows]
    if dry_run:
        return pairs

    for deal_id, _pin_id in pairs:
        sync_pin_for_deal(deal_id, actor_user_id="system:reconcile")
    return pairs
