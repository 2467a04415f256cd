# Overview: Flask API routes for payment requests; parses input and returns JSON responses.

# backend/dealflow/routes/payments.py
"""
Payment Request API Routes

WHY: A rep asks for payout once the roof is installed; an admin reviews the
paperwork and approves (paying every open commission) or rejects.

SECURITY:
- Requesting: admin, or a rep with access to the deal
- Queue, approve, reject: admin only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import deal_service, payment_request_service
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_caller, require_role


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment-requests")


@payments_bp.get("")
@require_caller
@require_role("admin")
def list_payment_requests_route():
    """Approval queue, most recently requested first, with verification details."""
    try:
        deals = payment_request_service.list_pending_requests(
            limit=min(request.args.get("limit", 200, type=int), 1000)
        )
        return jsonify({
            "requests": [payment_request_service.verification_summary(d) for d in deals],
            "count": len(deals),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list payment requests")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/deals/<int:deal_id>/request")
@require_caller
def request_payment_route(deal_id: int):
    """
    Flag an installed deal for payment review.

    Returns:
        200: Deal (also when a request was already pending)
        404: Deal not found
        409: Deal not eligible (not installed yet, already paid, cancelled)
    """
    try:
        deal_service.get_deal(deal_id)
        if not g.caller.is_admin and not deal_service.rep_can_access_deal(deal_id, g.caller.rep_id):
            return jsonify({"error": "Deal not found", "code": "NOT_FOUND"}), 404

        deal = payment_request_service.request_payment(deal_id, actor_user_id=g.caller.user_id)
        return jsonify({"deal": deal.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to request payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/deals/<int:deal_id>/approve")
@require_caller
@require_role("admin")
def approve_payment_route(deal_id: int):
    """
    Approve a pending request: deal -> paid status, all open commissions paid.

    Returns:
        200: {deal, commissions_paid, pin_id, pin_synced, warnings}
        404: Deal not found
        409: NOT_REQUESTED / ALREADY_PROCESSED / INVALID_TRANSITION
    """
    try:
        result = payment_request_service.approve_payment_request(
            deal_id, approved_by_user_id=g.caller.user_id
        )
        return jsonify(result.to_dict()), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to approve payment request")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/deals/<int:deal_id>/reject")
@require_caller
@require_role("admin")
def reject_payment_route(deal_id: int):
    """
    Reject a pending request. Commissions are untouched.

    Request body (optional):
    {
        "reason": "Missing permit photo"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        deal = payment_request_service.reject_payment_request(
            deal_id,
            rejected_by_user_id=g.caller.user_id,
            reason=data.get("reason"),
        )
        return jsonify({"deal": deal.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to reject payment request")
        return jsonify({"error": "Internal server error"}), 500
