# Overview: Service-layer operations for the deal lifecycle; encapsulates the status state machine and deal records.

"""
Deal Lifecycle Service

================================================================================
PURPOSE: Enforce the ordered status lifecycle of a roofing deal
================================================================================

ONE STATUS ENUMERATION, TWO VOCABULARIES:
    Every status lives in a single enumeration. A deal is pinned at creation
    to one documented subset of it (its "vocabulary") and never mixes them.

    extended (default for new deals):
        lead -> inspection_scheduled -> claim_filed -> adjuster_scheduled
        -> adjuster_met -> approved -> signed -> collect_acv
        -> collect_deductible -> install_scheduled -> installed
        -> invoice_sent -> depreciation_collected -> complete

    legacy (older callers):
        lead -> signed -> permit -> install_scheduled -> installed
        -> complete -> paid

RULES (NON-NEGOTIABLE):
1. Forward only, one step at a time along the deal's own vocabulary path
2. Administrative override: any status -> cancelled / on_hold,
   and on_hold -> the status it was held from
3. cancelled is closed: only an admin hold leaves it, and that hold
   can only resume back to cancelled
4. The vocabulary's terminal paid status (complete / paid) is never entered
   by a plain transition while a payment request is pending; payment
   approval owns that move
5. A rejected transition writes nothing

PROGRESS / PHASE:
    progress_percent() and phase_for_status() are the single source of truth
    for dashboards. Both are pure functions of the status string.

================================================================================
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Commission, Deal, Pin
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_deal,
    validate_payload,
)
from .address_guard_service import ensure_address_available, normalize_address
from .concurrency import lock_for_update, run_with_retry
from .deal_event_service import (
    EVENT_DEAL_CREATED,
    EVENT_DEAL_UPDATED,
    EVENT_STATUS_CHANGED,
    append_deal_event,
)


# =============================================================================
# STATUSES (CONSTANTS)
# =============================================================================

STATUS_LEAD = "lead"
STATUS_INSPECTION_SCHEDULED = "inspection_scheduled"
STATUS_CLAIM_FILED = "claim_filed"
STATUS_ADJUSTER_SCHEDULED = "adjuster_scheduled"
STATUS_ADJUSTER_MET = "adjuster_met"
STATUS_APPROVED = "approved"
STATUS_SIGNED = "signed"
STATUS_COLLECT_ACV = "collect_acv"
STATUS_COLLECT_DEDUCTIBLE = "collect_deductible"
STATUS_PERMIT = "permit"
STATUS_INSTALL_SCHEDULED = "install_scheduled"
STATUS_INSTALLED = "installed"
STATUS_INVOICE_SENT = "invoice_sent"
STATUS_DEPRECIATION_COLLECTED = "depreciation_collected"
STATUS_COMPLETE = "complete"
STATUS_PAID = "paid"
STATUS_CANCELLED = "cancelled"
STATUS_ON_HOLD = "on_hold"

VOCAB_EXTENDED = "extended"
VOCAB_LEGACY = "legacy"

EXTENDED_PATH = (
    STATUS_LEAD,
    STATUS_INSPECTION_SCHEDULED,
    STATUS_CLAIM_FILED,
    STATUS_ADJUSTER_SCHEDULED,
    STATUS_ADJUSTER_MET,
    STATUS_APPROVED,
    STATUS_SIGNED,
    STATUS_COLLECT_ACV,
    STATUS_COLLECT_DEDUCTIBLE,
    STATUS_INSTALL_SCHEDULED,
    STATUS_INSTALLED,
    STATUS_INVOICE_SENT,
    STATUS_DEPRECIATION_COLLECTED,
    STATUS_COMPLETE,
)

LEGACY_PATH = (
    STATUS_LEAD,
    STATUS_SIGNED,
    STATUS_PERMIT,
    STATUS_INSTALL_SCHEDULED,
    STATUS_INSTALLED,
    STATUS_COMPLETE,
    STATUS_PAID,
)

VOCABULARY_PATHS = {
    VOCAB_EXTENDED: EXTENDED_PATH,
    VOCAB_LEGACY: LEGACY_PATH,
}

OVERRIDE_STATUSES = (STATUS_CANCELLED, STATUS_ON_HOLD)

VALID_STATUSES = frozenset(EXTENDED_PATH) | frozenset(LEGACY_PATH) | frozenset(OVERRIDE_STATUSES)

# Merged forward ordering across both vocabularies. Each vocabulary's path is
# non-decreasing in this rank; complete and paid share the final rank.
_PROGRESS_RANK = {
    STATUS_LEAD: 0,
    STATUS_INSPECTION_SCHEDULED: 1,
    STATUS_CLAIM_FILED: 2,
    STATUS_ADJUSTER_SCHEDULED: 3,
    STATUS_ADJUSTER_MET: 4,
    STATUS_APPROVED: 5,
    STATUS_SIGNED: 6,
    STATUS_COLLECT_ACV: 7,
    STATUS_COLLECT_DEDUCTIBLE: 8,
    STATUS_PERMIT: 8,
    STATUS_INSTALL_SCHEDULED: 9,
    STATUS_INSTALLED: 10,
    STATUS_INVOICE_SENT: 11,
    STATUS_DEPRECIATION_COLLECTED: 12,
    STATUS_COMPLETE: 13,
    STATUS_PAID: 13,
}
_FINAL_RANK = 13

PHASE_SIGN = "sign"
PHASE_BUILD = "build"
PHASE_FINALIZING = "finalizing"
PHASE_COMPLETE = "complete"
PHASE_OTHER = "other"

_PHASES = {
    STATUS_LEAD: PHASE_SIGN,
    STATUS_INSPECTION_SCHEDULED: PHASE_SIGN,
    STATUS_CLAIM_FILED: PHASE_SIGN,
    STATUS_ADJUSTER_SCHEDULED: PHASE_SIGN,
    STATUS_ADJUSTER_MET: PHASE_SIGN,
    STATUS_APPROVED: PHASE_SIGN,
    STATUS_SIGNED: PHASE_SIGN,
    STATUS_COLLECT_ACV: PHASE_BUILD,
    STATUS_COLLECT_DEDUCTIBLE: PHASE_BUILD,
    STATUS_PERMIT: PHASE_BUILD,
    STATUS_INSTALL_SCHEDULED: PHASE_BUILD,
    STATUS_INSTALLED: PHASE_BUILD,
    STATUS_INVOICE_SENT: PHASE_FINALIZING,
    STATUS_DEPRECIATION_COLLECTED: PHASE_FINALIZING,
    STATUS_COMPLETE: PHASE_COMPLETE,
    STATUS_PAID: PHASE_COMPLETE,
    STATUS_CANCELLED: PHASE_OTHER,
    STATUS_ON_HOLD: PHASE_OTHER,
}


# =============================================================================
# ERRORS
# =============================================================================

class InvalidTransitionError(ConflictError):
    """
    Raised when a status change is not allowed from the deal's current status.

    This is a domain error, not a technical error. The deal is left unchanged.
    """
    code = "INVALID_TRANSITION"

    def __init__(self, message: str, *, from_status: str | None = None, to_status: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message)


class UnknownStatusError(ValidationError):
    """Raised when a status string is not part of the status enumeration."""
    code = "UNKNOWN_STATUS"


# =============================================================================
# VALIDATION POLICIES
# =============================================================================

DEAL_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "homeowner_name", "homeowner_phone", "homeowner_email",
        "address", "city", "state", "zip_code",
        "total_price_cents", "rcv_cents",
        "contract_signed", "signature_url",
        "permit_file_url", "install_images", "completion_images",
        "signed_date", "install_date", "completion_date",
        "notes",
    },
    required_on_create={"homeowner_name", "address"},
)

# Status and payment-request fields are deliberately absent: they move only
# through transition_deal() and payment_request_service.
DEAL_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=set(DEAL_CREATE_POLICY.writable_fields),
    required_on_create={"homeowner_name", "address"},
)


# =============================================================================
# PURE STATE-MACHINE HELPERS
# =============================================================================

def validate_status(status: str) -> None:
    """
    Validate that a status value is part of the status enumeration.

    Raises:
        UnknownStatusError: If status is not in VALID_STATUSES
    """
    if status not in VALID_STATUSES:
        raise UnknownStatusError(
            f"Unknown status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def validate_vocabulary(vocabulary: str) -> str:
    if vocabulary not in VOCABULARY_PATHS:
        raise ValidationError(
            f"Unknown status vocabulary '{vocabulary}'. Must be one of: {', '.join(sorted(VOCABULARY_PATHS))}"
        )
    return vocabulary


def forward_path(vocabulary: str) -> tuple[str, ...]:
    return VOCABULARY_PATHS[validate_vocabulary(vocabulary)]


def next_status(vocabulary: str, status: str) -> str | None:
    """Next status on the vocabulary's forward path, or None at the end / off-path."""
    path = forward_path(vocabulary)
    if status not in path:
        return None
    idx = path.index(status)
    return path[idx + 1] if idx + 1 < len(path) else None


def paid_status(vocabulary: str) -> str:
    """
    Terminal "paid" status that payment approval moves a deal into.

    Configured per vocabulary (EXTENDED_PAID_STATUS / LEGACY_PAID_STATUS) and
    always a member of that vocabulary's path.
    """
    path = forward_path(vocabulary)
    key = "EXTENDED_PAID_STATUS" if vocabulary == VOCAB_EXTENDED else "LEGACY_PAID_STATUS"
    status = current_app.config.get(key) or path[-1]
    if status not in path or status not in (STATUS_COMPLETE, STATUS_PAID):
        raise ValidationError(f"{key} must be 'complete' or 'paid' within the {vocabulary} path")
    return status


def is_installed_or_later(vocabulary: str, status: str) -> bool:
    path = forward_path(vocabulary)
    if status not in path:
        return False
    return path.index(status) >= path.index(STATUS_INSTALLED)


def is_terminal(vocabulary: str, status: str) -> bool:
    return status == paid_status(vocabulary)


def is_payable_status(vocabulary: str, status: str) -> bool:
    """Installed or later, and not already in the terminal paid status."""
    return is_installed_or_later(vocabulary, status) and not is_terminal(vocabulary, status)


def check_transition(
    vocabulary: str,
    from_status: str,
    to_status: str,
    *,
    is_admin: bool = False,
    held_from_status: str | None = None,
) -> None:
    """
    Raise InvalidTransitionError unless from_status -> to_status is allowed.

    A same-status request is accepted (callers treat it as a no-op).

    Raises:
        UnknownStatusError: If to_status is not a known status
        InvalidTransitionError: If the move breaks the lifecycle rules
    """
    validate_status(to_status)
    path = forward_path(vocabulary)

    def _reject(reason: str) -> None:
        raise InvalidTransitionError(
            f"Cannot move deal from '{from_status}' to '{to_status}': {reason}",
            from_status=from_status,
            to_status=to_status,
        )

    if from_status == to_status:
        return

    if to_status in OVERRIDE_STATUSES:
        if not is_admin:
            _reject("requires administrative override")
        return

    if from_status == STATUS_CANCELLED:
        _reject("cancelled deals only leave through an administrative hold")

    if from_status == STATUS_ON_HOLD:
        if not is_admin:
            _reject("resuming a held deal requires administrative override")
        if to_status != held_from_status:
            _reject(f"a held deal can only resume to '{held_from_status}'")
        return

    if to_status not in path:
        _reject(f"status is not part of the {vocabulary} vocabulary")

    if from_status not in path or path.index(to_status) != path.index(from_status) + 1:
        expected = next_status(vocabulary, from_status)
        _reject(f"next status is '{expected}'" if expected else "no further forward status")


def can_transition(vocabulary: str, from_status: str, to_status: str, **kwargs) -> bool:
    try:
        check_transition(vocabulary, from_status, to_status, **kwargs)
    except InvalidTransitionError:
        return False
    return True


def progress_percent(status: str) -> int:
    """
    Display progress 0..100 derived purely from the status.

    Non-decreasing along both forward paths; cancelled and on_hold report 0.
    Not authoritative: never branch business logic on it.
    """
    validate_status(status)
    rank = _PROGRESS_RANK.get(status)
    if rank is None:
        return 0
    return (rank * 100 * 2 + _FINAL_RANK) // (_FINAL_RANK * 2)


def phase_for_status(status: str) -> str:
    validate_status(status)
    return _PHASES[status]


def status_catalogue(vocabulary: str) -> list[dict]:
    """Status list for one vocabulary with progress/phase, for the UI."""
    path = forward_path(vocabulary)
    rows = []
    for idx, status in enumerate(path + OVERRIDE_STATUSES):
        rows.append({
            "status": status,
            "step": idx + 1 if status in path else None,
            "phase": phase_for_status(status),
            "progress_percent": progress_percent(status),
            "next_status": next_status(vocabulary, status),
            "is_terminal": status == paid_status(vocabulary),
        })
    return rows


def deal_value_cents(deal: Deal) -> int:
    """Commission base: rcv when present, else total_price, else 0."""
    if deal.rcv_cents is not None:
        return deal.rcv_cents
    return deal.total_price_cents or 0


# =============================================================================
# DEAL CREATION
# =============================================================================

def _create_deal_locked(
    payload: dict,
    *,
    vocabulary: str | None,
    created_by_user_id: str | None,
    guard_address: bool,
    guard_scope: dict | None = None,
    event_note: str | None = None,
) -> Deal:
    """
    Build and flush a new deal inside the caller's open transaction.

    Shared by create_deal() and pin-to-deal conversion. Does not commit.
    """
    patch = validate_payload(model=Deal, payload=payload, policy=DEAL_CREATE_POLICY, partial=False)
    enforce_rules_deal(patch)

    vocabulary = validate_vocabulary(vocabulary or current_app.config.get("DEFAULT_STATUS_VOCABULARY", VOCAB_EXTENDED))

    if guard_address:
        normalized = ensure_address_available(patch["address"], **(guard_scope or {}))
    else:
        normalized = normalize_address(patch["address"])

    deal = Deal(
        **patch,
        status=STATUS_LEAD,
        status_vocabulary=vocabulary,
        normalized_address=normalized,
        payment_requested=False,
        payment_status="not_requested",
        created_by=created_by_user_id,
    )
    db.session.add(deal)
    db.session.flush()  # Get deal ID

    append_deal_event(
        deal_id=deal.id,
        event_type=EVENT_DEAL_CREATED,
        actor_user_id=created_by_user_id,
        to_status=STATUS_LEAD,
        note=event_note,
        payload={"vocabulary": vocabulary},
    )
    return deal


def create_deal(
    payload: dict,
    *,
    created_by_user_id: str | None = None,
    vocabulary: str | None = None,
    commissions: list[dict] | None = None,
    guard_address: bool | None = None,
) -> Deal:
    """
    Create a deal in status 'lead', optionally with its initial commission rows.

    Args:
        payload: Deal fields (homeowner_name and address required)
        created_by_user_id: External user id of the author
        vocabulary: "extended" or "legacy" (config default when omitted)
        commissions: [{"rep_id", "commission_type", "commission_percent", "idempotency_key"}]
        guard_address: Consult the address guard (config default when omitted)

    Raises:
        ValidationError: Missing/invalid fields
        DuplicateAddressError: Address already held by a pin or deal
    """
    if commissions is not None and not isinstance(commissions, list):
        raise ValidationError("commissions must be a list")
    if guard_address is None:
        guard_address = bool(current_app.config.get("ADDRESS_GUARD_ON_DEALS", True))

    def _op():
        from .commission_service import _add_commission_locked

        deal = _create_deal_locked(
            payload,
            vocabulary=vocabulary,
            created_by_user_id=created_by_user_id,
            guard_address=guard_address,
        )

        for entry in commissions or []:
            if not isinstance(entry, dict):
                raise ValidationError("Each commission must be an object")
            _add_commission_locked(
                deal,
                rep_id=entry.get("rep_id"),
                commission_type=entry.get("commission_type", "self_gen"),
                commission_percent=entry.get("commission_percent"),
                idempotency_key=entry.get("idempotency_key"),
                actor_user_id=created_by_user_id,
            )

        db.session.commit()
        return deal

    return run_with_retry(_op)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def transition_deal(
    deal_id: int,
    target_status: str,
    *,
    actor_user_id: str | None = None,
    is_admin: bool = False,
    note: str | None = None,
) -> Deal:
    """
    Move a deal to target_status if the lifecycle allows it.

    Returns:
        The deal (unchanged when target_status equals the current status)

    Raises:
        NotFoundError: Deal does not exist
        UnknownStatusError: target_status is not a known status
        InvalidTransitionError: Move not allowed; nothing is written
    """
    validate_status(target_status)

    def _op():
        deal = lock_for_update(db.session.query(Deal).filter_by(id=deal_id)).first()
        if deal is None:
            raise NotFoundError(f"Deal {deal_id} not found")

        current = deal.status
        if current == target_status:
            return deal

        check_transition(
            deal.status_vocabulary,
            current,
            target_status,
            is_admin=is_admin,
            held_from_status=deal.held_from_status,
        )

        if deal.payment_requested and is_terminal(deal.status_vocabulary, target_status):
            raise InvalidTransitionError(
                f"Deal {deal_id} has a pending payment request; approve or reject it instead",
                from_status=current,
                to_status=target_status,
            )

        if target_status == STATUS_ON_HOLD:
            deal.held_from_status = current
        elif current == STATUS_ON_HOLD:
            deal.held_from_status = None

        deal.status = target_status

        append_deal_event(
            deal_id=deal.id,
            event_type=EVENT_STATUS_CHANGED,
            actor_user_id=actor_user_id,
            from_status=current,
            to_status=target_status,
            note=note,
            payload={"override": target_status in OVERRIDE_STATUSES or current == STATUS_ON_HOLD},
        )

        db.session.commit()
        return deal

    return run_with_retry(_op)


# =============================================================================
# DEAL EDITS & QUERIES
# =============================================================================

def update_deal(deal_id: int, payload: dict, *, actor_user_id: str | None = None) -> Deal:
    """
    Edit descriptive deal fields (homeowner, address, prices, artifacts, dates).

    Existing commission amounts are snapshots and are NOT recomputed when
    total_price_cents or rcv_cents change.
    """
    patch = validate_payload(model=Deal, payload=payload, policy=DEAL_UPDATE_POLICY, partial=True)
    enforce_rules_deal(patch)
    if not patch:
        raise ValidationError("No fields to update")

    def _op():
        deal = lock_for_update(db.session.query(Deal).filter_by(id=deal_id)).first()
        if deal is None:
            raise NotFoundError(f"Deal {deal_id} not found")

        if "address" in patch and normalize_address(patch["address"]) != deal.normalized_address:
            if current_app.config.get("ADDRESS_GUARD_ON_DEALS", True):
                linked_pin = db.session.query(Pin.id).filter_by(deal_id=deal.id).scalar()
                deal.normalized_address = ensure_address_available(
                    patch["address"], exclude_deal_id=deal.id, exclude_pin_id=linked_pin
                )
            else:
                deal.normalized_address = normalize_address(patch["address"])

        changed = []
        for key, value in patch.items():
            if getattr(deal, key) != value:
                setattr(deal, key, value)
                changed.append(key)

        if changed:
            append_deal_event(
                deal_id=deal.id,
                event_type=EVENT_DEAL_UPDATED,
                actor_user_id=actor_user_id,
                payload={"fields": sorted(changed)},
            )
        db.session.commit()
        return deal

    return run_with_retry(_op)


def get_deal(deal_id: int) -> Deal:
    deal = db.session.get(Deal, deal_id)
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found")
    return deal


def rep_can_access_deal(deal_id: int, rep_id: int | None) -> bool:
    """
    Reps see deals they hold a commission on, or whose source pin they own
    or close.
    """
    if rep_id is None:
        return False
    has_commission = db.session.query(
        db.session.query(Commission.id).filter_by(deal_id=deal_id, rep_id=rep_id).exists()
    ).scalar()
    if has_commission:
        return True
    return bool(db.session.query(
        db.session.query(Pin.id)
        .filter(Pin.deal_id == deal_id)
        .filter(or_(Pin.rep_id == rep_id, Pin.assigned_closer_id == rep_id))
        .exists()
    ).scalar())


def list_deals(
    *,
    rep_id: int | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[Deal]:
    """
    List deals, newest first.

    rep_id scopes the list to deals the rep can access (see rep_can_access_deal).
    """
    q = db.session.query(Deal)

    if status is not None:
        validate_status(status)
        q = q.filter(Deal.status == status)

    if rep_id is not None:
        commission_deals = db.session.query(Commission.deal_id).filter(Commission.rep_id == rep_id)
        pin_deals = (
            db.session.query(Pin.deal_id)
            .filter(Pin.deal_id.isnot(None))
            .filter(or_(Pin.rep_id == rep_id, Pin.assigned_closer_id == rep_id))
        )
        q = q.filter(or_(Deal.id.in_(commission_deals), Deal.id.in_(pin_deals)))

    q = q.order_by(Deal.created_at.desc(), Deal.id.desc())
    return q.limit(limit).all()
