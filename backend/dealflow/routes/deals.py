# Overview: Flask API routes for deal operations; parses input and returns JSON responses.

# backend/dealflow/routes/deals.py
"""
Deal API Routes

WHY: Reps and admins track each roofing job from lead to paid completion.

DESIGN:
- Create / edit deals (descriptive fields only)
- Status moves go through POST /<id>/transition, never PATCH
- Progress, phase and next status are derived server-side for the UI
- Event history per deal

SECURITY:
- Every route requires a gateway identity (X-User-Id / X-User-Role)
- Reps see only deals they hold a commission on or whose pin they own/close
- cancelled / on_hold (and resuming from on_hold) require admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import commission_service, deal_event_service, deal_service
from ..services.address_guard_service import DuplicateAddressError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_caller


deals_bp = Blueprint("deals", __name__, url_prefix="/api/deals")


def _deal_payload(deal) -> dict:
    data = deal.to_dict()
    data["progress_percent"] = deal_service.progress_percent(deal.status)
    data["phase"] = deal_service.phase_for_status(deal.status)
    data["next_status"] = deal_service.next_status(deal.status_vocabulary, deal.status)
    data["deal_value_cents"] = deal_service.deal_value_cents(deal)
    return data


def _can_see(deal_id: int) -> bool:
    return g.caller.is_admin or deal_service.rep_can_access_deal(deal_id, g.caller.rep_id)


# =============================================================================
# DEAL QUERIES
# =============================================================================

@deals_bp.get("")
@require_caller
def list_deals_route():
    """
    List deals, newest first.

    Query params:
    - status: Filter by status
    - rep_id: (admin only) deals visible to that rep
    - limit: Max rows (default 200)
    """
    try:
        status = request.args.get("status")
        limit = min(request.args.get("limit", 200, type=int), 1000)

        rep_id = g.caller.rep_id
        if g.caller.is_admin:
            rep_id = request.args.get("rep_id", type=int)

        deals = deal_service.list_deals(rep_id=rep_id, status=status, limit=limit)
        return jsonify({"deals": [_deal_payload(d) for d in deals], "count": len(deals)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except Exception:
        current_app.logger.exception("Failed to list deals")
        return jsonify({"error": "Internal server error"}), 500


@deals_bp.get("/statuses")
@require_caller
def list_statuses_route():
    """Status catalogue (with progress and phase) for one vocabulary."""
    try:
        vocabulary = request.args.get("vocabulary") or current_app.config.get("DEFAULT_STATUS_VOCABULARY")
        return jsonify({
            "vocabulary": vocabulary,
            "statuses": deal_service.status_catalogue(vocabulary),
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400


@deals_bp.get("/<int:deal_id>")
@require_caller
def get_deal_route(deal_id: int):
    """Get one deal with its commission roll-up."""
    try:
        deal = deal_service.get_deal(deal_id)
        if not _can_see(deal_id):
            return jsonify({"error": "Deal not found", "code": "NOT_FOUND"}), 404

        return jsonify({
            "deal": _deal_payload(deal),
            "commission_summary": commission_service.get_commission_summary(deal_id),
        }), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except Exception:
        current_app.logger.exception("Failed to get deal")
        return jsonify({"error": "Internal server error"}), 500


@deals_bp.get("/<int:deal_id>/events")
@require_caller
def list_deal_events_route(deal_id: int):
    try:
        deal_service.get_deal(deal_id)
        if not _can_see(deal_id):
            return jsonify({"error": "Deal not found", "code": "NOT_FOUND"}), 404

        events = deal_event_service.list_deal_events(deal_id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except Exception:
        current_app.logger.exception("Failed to list deal events")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DEAL WRITES
# =============================================================================

@deals_bp.post("")
@require_caller
def create_deal_route():
    """
    Create a deal in status 'lead'.

    Request body:
    {
        "homeowner_name": "Pat Doe",
        "address": "123 Main St",
        "total_price_cents": 1500000,
        "rcv_cents": 1800000,               (optional)
        "status_vocabulary": "extended",    (optional: extended | legacy)
        "commissions": [                    (optional)
            {"rep_id": 3, "commission_type": "self_gen", "commission_percent": "10"}
        ]
    }

    A rep creating a deal without naming themselves in commissions gets a
    self_gen commission at their default percent.

    Returns:
        201: Deal created
        400: Invalid input
        409: Address already registered
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        vocabulary = data.pop("status_vocabulary", None)
        commissions = data.pop("commissions", None)

        if not g.caller.is_admin:
            if commissions is None:
                commissions = []
            if isinstance(commissions, list) and not any(
                isinstance(c, dict) and str(c.get("rep_id")) == str(g.caller.rep_id) for c in commissions
            ):
                commissions = commissions + [{"rep_id": g.caller.rep_id, "commission_type": "self_gen"}]

        deal = deal_service.create_deal(
            data,
            created_by_user_id=g.caller.user_id,
            vocabulary=vocabulary,
            commissions=commissions,
        )
        return jsonify({"deal": _deal_payload(deal)}), 201

    except DuplicateAddressError as e:
        return jsonify({"error": str(e), "code": e.code, "matches": e.matches}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to create deal")
        return jsonify({"error": "Internal server error"}), 500


@deals_bp.patch("/<int:deal_id>")
@require_caller
def update_deal_route(deal_id: int):
    """Edit descriptive fields. Status cannot be changed here."""
    try:
        deal_service.get_deal(deal_id)
        if not _can_see(deal_id):
            return jsonify({"error": "Deal not found", "code": "NOT_FOUND"}), 404

        data = request.get_json(silent=True) or {}
        if "status" in data:
            return jsonify({
                "error": "Use POST /api/deals/<id>/transition to change status",
                "code": "VALIDATION_ERROR",
            }), 400

        deal = deal_service.update_deal(deal_id, data, actor_user_id=g.caller.user_id)
        return jsonify({"deal": _deal_payload(deal)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except DuplicateAddressError as e:
        return jsonify({"error": str(e), "code": e.code, "matches": e.matches}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to update deal")
        return jsonify({"error": "Internal server error"}), 500


@deals_bp.post("/<int:deal_id>/transition")
@require_caller
def transition_deal_route(deal_id: int):
    """
    Move a deal along its lifecycle.

    Request body:
    {
        "status": "inspection_scheduled",
        "note": "Booked for Tuesday"  (optional)
    }

    Returns:
        200: Deal (unchanged if already in that status)
        400: Unknown status
        404: Deal not found
        409: Transition not allowed
    """
    try:
        deal_service.get_deal(deal_id)
        if not _can_see(deal_id):
            return jsonify({"error": "Deal not found", "code": "NOT_FOUND"}), 404

        data = request.get_json(silent=True) or {}
        target = data.get("status")
        if not target:
            return jsonify({"error": "status is required", "code": "VALIDATION_ERROR"}), 400

        deal = deal_service.transition_deal(
            deal_id,
            target,
            actor_user_id=g.caller.user_id,
            is_admin=g.caller.is_admin,
            note=data.get("note"),
        )
        return jsonify({"deal": _deal_payload(deal)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to transition deal")
        return jsonify({"error": "Internal server error"}), 500
