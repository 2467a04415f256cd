# Overview: Flask API routes for commission operations; parses input and returns JSON responses.

# backend/dealflow/routes/commissions.py
"""
Commission API Routes

DESIGN:
- Admins attach commissions to deals and mark them paid
- POST is idempotent when an Idempotency-Key header (or idempotency_key
  body field) is supplied
- Marking an already-paid commission answers 200 with already_paid=true

SECURITY:
- Reps only see their own commission rows
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import commission_service, deal_service
from ..services.commission_service import AlreadyPaidError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_caller, require_role
from ..time_utils import parse_iso_date


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


def _parse_bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if raw not in {"true", "false"}:
        raise ValidationError(f"{name} must be true or false")
    return raw == "true"


@commissions_bp.get("")
@require_caller
def list_commissions_route():
    """
    List commissions.

    Query params:
    - deal_id, paid (true/false)
    - rep_id: admin only; reps are always scoped to themselves
    """
    try:
        rep_id = request.args.get("rep_id", type=int) if g.caller.is_admin else g.caller.rep_id
        rows = commission_service.list_commissions(
            deal_id=request.args.get("deal_id", type=int),
            rep_id=rep_id,
            paid=_parse_bool_arg("paid"),
            limit=min(request.args.get("limit", 500, type=int), 2000),
        )
        return jsonify({"commissions": [c.to_dict() for c in rows], "count": len(rows)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except Exception:
        current_app.logger.exception("Failed to list commissions")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.post("")
@require_caller
@require_role("admin")
def add_commission_route():
    """
    Attach a commission to a deal.

    Request body:
    {
        "deal_id": 12,
        "rep_id": 3,
        "commission_type": "closer",
        "commission_percent": "7.5",    (optional: rep default when omitted)
        "idempotency_key": "abc-123"    (optional; or Idempotency-Key header)
    }

    Returns:
        201: Commission (the existing row when the key was seen before)
        400: Invalid input / inactive rep
        404: Deal not found
    """
    try:
        data = request.get_json(silent=True) or {}
        deal_id = data.get("deal_id")
        if deal_id is None:
            return jsonify({"error": "deal_id is required", "code": "VALIDATION_ERROR"}), 400

        commission = commission_service.add_commission(
            deal_id,
            data.get("rep_id"),
            data.get("commission_type", commission_service.COMMISSION_SELF_GEN),
            data.get("commission_percent"),
            idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            actor_user_id=g.caller.user_id,
        )
        return jsonify({"commission": commission.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to add commission")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.post("/<int:commission_id>/mark-paid")
@require_caller
@require_role("admin")
def mark_commission_paid_route(commission_id: int):
    """
    Mark a commission paid.

    Request body (optional):
    {
        "paid_date": "2024-06-30"   (default: today)
    }

    Returns:
        200: Commission paid (already_paid=true if it was paid before)
        404: Commission not found
    """
    try:
        data = request.get_json(silent=True) or {}
        paid_date = None
        if data.get("paid_date"):
            try:
                paid_date = parse_iso_date(str(data["paid_date"]))
            except ValueError:
                return jsonify({"error": "paid_date must be an ISO-8601 date", "code": "VALIDATION_ERROR"}), 400

        commission = commission_service.mark_commission_paid(
            commission_id, paid_date=paid_date, actor_user_id=g.caller.user_id
        )
        return jsonify({"commission": commission.to_dict(), "already_paid": False}), 200

    except AlreadyPaidError as e:
        return jsonify({"commission": e.commission.to_dict(), "already_paid": True}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except Exception:
        current_app.logger.exception("Failed to mark commission paid")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.get("/deals/<int:deal_id>/summary")
@require_caller
def commission_summary_route(deal_id: int):
    """Per-deal totals: owed (unpaid), paid, percent total."""
    try:
        if not g.caller.is_admin and not deal_service.rep_can_access_deal(deal_id, g.caller.rep_id):
            return jsonify({"error": "Deal not found", "code": "NOT_FOUND"}), 404

        return jsonify(commission_service.get_commission_summary(deal_id)), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except Exception:
        current_app.logger.exception("Failed to summarize commissions")
        return jsonify({"error": "Internal server error"}), 500
