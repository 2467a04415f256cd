# Overview: Service-layer operations for payment requests; encapsulates the request/approve/reject workflow.

"""
Payment Request Workflow

STATE (on the deal):
    payment_status: not_requested -> requested -> approved
                                              -> rejected -> requested (re-request)
    payment_requested is True exactly while payment_status == "requested".

REQUEST:
    Allowed only once the deal is installed or later and not yet in its
    terminal paid status. Requesting again while pending is a no-op.

APPROVE (one transaction, all or nothing):
    - deal.status -> terminal paid status of its vocabulary
    - payment flags cleared, reviewer recorded
    - completion_date defaulted to today
    - every unpaid commission on the deal paid with today's date

    Then, in a SEPARATE transaction, the source pin (if any) is moved to the
    installed status. A failure there does not undo the approval; it is
    logged and reported in ApprovalResult.warnings, and the
    `maintenance reconcile-pins` command repairs it later.

REJECT:
    Flags cleared, payment_status -> rejected, commissions untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Commission, Deal
from ..time_utils import to_utc_z, today, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .deal_event_service import (
    EVENT_COMMISSION_PAID,
    EVENT_PAYMENT_APPROVED,
    EVENT_PAYMENT_REJECTED,
    EVENT_PAYMENT_REQUESTED,
    EVENT_STATUS_CHANGED,
    append_deal_event,
)
from .deal_service import (
    InvalidTransitionError,
    deal_value_cents,
    is_payable_status,
    paid_status,
    progress_percent,
)
from . import pin_service


PAYMENT_NOT_REQUESTED = "not_requested"
PAYMENT_REQUESTED = "requested"
PAYMENT_APPROVED = "approved"
PAYMENT_REJECTED = "rejected"


class NotRequestedError(ConflictError):
    """Raised when approving/rejecting a deal that never had a payment request."""
    code = "NOT_REQUESTED"


class AlreadyProcessedError(ConflictError):
    """Raised when approving/rejecting a request that was already decided."""
    code = "ALREADY_PROCESSED"


@dataclass
class ApprovalResult:
    deal: Deal
    commissions_paid: list[Commission] = field(default_factory=list)
    pin_id: int | None = None
    pin_synced: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deal": self.deal.to_dict(),
            "commissions_paid": [c.to_dict() for c in self.commissions_paid],
            "commissions_paid_cents": sum(c.commission_amount_cents for c in self.commissions_paid),
            "pin_id": self.pin_id,
            "pin_synced": self.pin_synced,
            "warnings": list(self.warnings),
        }


def _lock_deal(deal_id: int) -> Deal:
    deal = lock_for_update(db.session.query(Deal).filter_by(id=deal_id)).first()
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found")
    return deal


def _require_pending(deal: Deal) -> None:
    if deal.payment_requested:
        return
    if deal.payment_status in (PAYMENT_APPROVED, PAYMENT_REJECTED):
        raise AlreadyProcessedError(
            f"Payment request for deal {deal.id} was already {deal.payment_status}"
        )
    raise NotRequestedError(f"Deal {deal.id} has no pending payment request")


def request_payment(deal_id: int, *, actor_user_id: str | None = None) -> Deal:
    """
    Flag a deal for admin payment review.

    Raises:
        NotFoundError: Deal does not exist
        InvalidTransitionError: Deal is not installed yet, already paid, or cancelled/on hold
    """
    def _op():
        deal = _lock_deal(deal_id)

        if deal.payment_requested:
            return deal

        if not is_payable_status(deal.status_vocabulary, deal.status):
            raise InvalidTransitionError(
                f"Deal {deal_id} in status '{deal.status}' is not eligible for a payment request",
                from_status=deal.status,
            )

        deal.payment_requested = True
        deal.payment_requested_at = utcnow()
        deal.payment_status = PAYMENT_REQUESTED
        deal.payment_reviewed_at = None
        deal.payment_reviewed_by = None

        append_deal_event(
            deal_id=deal.id,
            event_type=EVENT_PAYMENT_REQUESTED,
            actor_user_id=actor_user_id,
            from_status=deal.status,
        )
        db.session.commit()
        return deal

    return run_with_retry(_op)


def list_pending_requests(*, limit: int = 200) -> list[Deal]:
    """Approval queue: pending requests, most recently requested first."""
    return (
        db.session.query(Deal)
        .filter(Deal.payment_requested.is_(True))
        .order_by(Deal.payment_requested_at.desc(), Deal.id.desc())
        .limit(limit)
        .all()
    )


def verification_summary(deal: Deal) -> dict:
    """
    What an admin checks before approving: paperwork present and the payout
    that approval will trigger.
    """
    unpaid = [c for c in deal.commissions if not c.paid]
    return {
        "deal": deal.to_dict(),
        "progress_percent": progress_percent(deal.status),
        "requested_at": to_utc_z(deal.payment_requested_at),
        "deal_value_cents": deal_value_cents(deal),
        "contract_signed": bool(deal.contract_signed),
        "has_signature": bool(deal.signature_url),
        "has_permit": bool(deal.permit_file_url),
        "install_image_count": len(deal.install_images or []),
        "completion_image_count": len(deal.completion_images or []),
        "unpaid_commission_count": len(unpaid),
        "unpaid_commission_cents": sum(c.commission_amount_cents for c in unpaid),
    }


def approve_payment_request(deal_id: int, *, approved_by_user_id: str | None = None) -> ApprovalResult:
    """
    Approve a pending payment request and pay out every open commission.

    Raises:
        NotFoundError: Deal does not exist
        NotRequestedError: No request was ever made
        AlreadyProcessedError: Request already approved or rejected
        InvalidTransitionError: Deal left the payable range while pending
    """
    def _op():
        deal = _lock_deal(deal_id)
        _require_pending(deal)

        if not is_payable_status(deal.status_vocabulary, deal.status):
            raise InvalidTransitionError(
                f"Deal {deal_id} in status '{deal.status}' cannot be approved for payment",
                from_status=deal.status,
            )

        now = utcnow()
        pay_date = today()
        previous_status = deal.status
        target = paid_status(deal.status_vocabulary)

        deal.status = target
        deal.payment_requested = False
        deal.payment_status = PAYMENT_APPROVED
        deal.payment_reviewed_at = now
        deal.payment_reviewed_by = approved_by_user_id
        if deal.completion_date is None:
            deal.completion_date = pay_date

        commissions = lock_for_update(
            db.session.query(Commission).filter_by(deal_id=deal.id, paid=False)
        ).order_by(Commission.id.asc()).all()

        for commission in commissions:
            commission.paid = True
            commission.paid_date = pay_date
            append_deal_event(
                deal_id=deal.id,
                event_type=EVENT_COMMISSION_PAID,
                actor_user_id=approved_by_user_id,
                commission_id=commission.id,
                occurred_at=now,
                payload={"amount_cents": commission.commission_amount_cents, "source": "payment_approval"},
            )

        append_deal_event(
            deal_id=deal.id,
            event_type=EVENT_STATUS_CHANGED,
            actor_user_id=approved_by_user_id,
            from_status=previous_status,
            to_status=target,
            occurred_at=now,
        )
        append_deal_event(
            deal_id=deal.id,
            event_type=EVENT_PAYMENT_APPROVED,
            actor_user_id=approved_by_user_id,
            occurred_at=now,
            payload={
                "commissions_paid": len(commissions),
                "amount_cents": sum(c.commission_amount_cents for c in commissions),
            },
        )

        db.session.commit()
        return ApprovalResult(deal=deal, commissions_paid=commissions)

    result = run_with_retry(_op)

    current_app.logger.info(
        "Payment approved for deal %s by %s (%s commissions paid)",
        deal_id, approved_by_user_id, len(result.commissions_paid),
    )

    # The approval is committed from here on; pin problems only become warnings
    try:
        pin = pin_service.find_pin_for_deal(deal_id)
        if pin is None:
            return result
        result.pin_id = pin.id
        pin_service.sync_pin_for_deal(deal_id, actor_user_id=approved_by_user_id)
        result.pin_synced = True
    except (SQLAlchemyError, ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        current_app.logger.warning(
            "Pin sync failed after payment approval (deal %s, pin %s)", deal_id, result.pin_id, exc_info=True
        )
        subject = f"Pin {result.pin_id}" if result.pin_id is not None else "The linked pin"
        result.warnings.append(
            f"{subject} could not be updated; run 'flask maintenance reconcile-pins' to repair"
        )
    return result


def reject_payment_request(
    deal_id: int,
    *,
    rejected_by_user_id: str | None = None,
    reason: str | None = None,
) -> Deal:
    """
    Reject a pending payment request. Commissions are not touched and the
    deal may be re-requested.

    Raises:
        NotFoundError, NotRequestedError, AlreadyProcessedError
    """
    def _op():
        deal = _lock_deal(deal_id)
        _require_pending(deal)

        deal.payment_requested = False
        deal.payment_requested_at = None
        deal.payment_status = PAYMENT_REJECTED
        deal.payment_reviewed_at = utcnow()
        deal.payment_reviewed_by = rejected_by_user_id

        append_deal_event(
            deal_id=deal.id,
            event_type=EVENT_PAYMENT_REJECTED,
            actor_user_id=rejected_by_user_id,
            note=reason,
        )
        db.session.commit()
        return deal

    deal = run_with_retry(_op)
    current_app.logger.info("Payment request rejected for deal %s by %s", deal_id, rejected_by_user_id)
    return deal
