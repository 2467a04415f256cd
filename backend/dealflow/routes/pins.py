# Overview: Flask API routes for canvassing pins and pin-to-deal conversion.

# backend/dealflow/routes/pins.py
"""
Pin API Routes

DESIGN:
- Reps drop pins on houses; the address guard blocks duplicates across reps
- check-duplicate lets the map warn before the rep submits
- A pin converts into a deal exactly once

SECURITY:
- Reps see and edit pins they own or are assigned to close
- Reassigning a pin to another rep is admin only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import conversion_service, pin_service
from ..services.address_guard_service import DuplicateAddressError, find_address_matches, normalize_address
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_caller, require_role


pins_bp = Blueprint("pins", __name__, url_prefix="/api/pins")


def _load_visible_pin(pin_id: int):
    pin = pin_service.get_pin(pin_id)
    if not g.caller.is_admin and not pin_service.rep_can_access_pin(pin, g.caller.rep_id):
        raise NotFoundError(f"Pin {pin_id} not found")
    return pin


@pins_bp.get("")
@require_caller
def list_pins_route():
    try:
        rep_id = request.args.get("rep_id", type=int) if g.caller.is_admin else g.caller.rep_id
        pins = pin_service.list_pins(
            rep_id=rep_id,
            status=request.args.get("status"),
            limit=min(request.args.get("limit", 500, type=int), 2000),
        )
        return jsonify({"pins": [p.to_dict() for p in pins], "count": len(pins)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except Exception:
        current_app.logger.exception("Failed to list pins")
        return jsonify({"error": "Internal server error"}), 500


@pins_bp.get("/check-duplicate")
@require_caller
def check_duplicate_route():
    """
    Query params:
    - address: Free-text address (required)

    Returns {"duplicate": bool, "normalized_address": ..., "matches": [...]}
    """
    address = request.args.get("address")
    if not address:
        return jsonify({"error": "address is required", "code": "VALIDATION_ERROR"}), 400

    matches = find_address_matches(address)
    return jsonify({
        "duplicate": bool(matches),
        "normalized_address": normalize_address(address),
        "matches": matches,
    }), 200


@pins_bp.post("")
@require_caller
def create_pin_route():
    """
    Drop a pin.

    Request body:
    {
        "latitude": 33.1, "longitude": -96.6,
        "address": "123 Main St",
        "status": "not_home",
        "rep_id": 4          (admin only; defaults to the caller's rep)
    }

    Returns:
        201: Pin created
        400: Invalid input
        409: DUPLICATE_ADDRESS
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        rep_id = data.pop("rep_id", None)
        if not g.caller.is_admin or rep_id is None:
            rep_id = g.caller.rep_id
        if rep_id is None:
            return jsonify({"error": "rep_id is required", "code": "VALIDATION_ERROR"}), 400

        pin = pin_service.create_pin(data, rep_id=int(rep_id), actor_user_id=g.caller.user_id)
        return jsonify({"pin": pin.to_dict()}), 201

    except DuplicateAddressError as e:
        return jsonify({"error": str(e), "code": e.code, "matches": e.matches}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "rep_id must be an integer", "code": "VALIDATION_ERROR"}), 400
    except Exception:
        current_app.logger.exception("Failed to create pin")
        return jsonify({"error": "Internal server error"}), 500


@pins_bp.get("/<int:pin_id>")
@require_caller
def get_pin_route(pin_id: int):
    try:
        pin = _load_visible_pin(pin_id)
        return jsonify({"pin": pin.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404


@pins_bp.patch("/<int:pin_id>")
@require_caller
def update_pin_route(pin_id: int):
    try:
        _load_visible_pin(pin_id)
        pin = pin_service.update_pin(pin_id, request.get_json(silent=True) or {})
        return jsonify({"pin": pin.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except DuplicateAddressError as e:
        return jsonify({"error": str(e), "code": e.code, "matches": e.matches}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except Exception:
        current_app.logger.exception("Failed to update pin")
        return jsonify({"error": "Internal server error"}), 500


@pins_bp.post("/<int:pin_id>/status")
@require_caller
def set_pin_status_route(pin_id: int):
    try:
        _load_visible_pin(pin_id)
        status = (request.get_json(silent=True) or {}).get("status")
        if not status:
            return jsonify({"error": "status is required", "code": "VALIDATION_ERROR"}), 400

        pin = pin_service.set_pin_status(pin_id, status)
        return jsonify({"pin": pin.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except Exception:
        current_app.logger.exception("Failed to set pin status")
        return jsonify({"error": "Internal server error"}), 500


@pins_bp.post("/<int:pin_id>/reassign")
@require_caller
@require_role("admin")
def reassign_pin_route(pin_id: int):
    try:
        rep_id = (request.get_json(silent=True) or {}).get("rep_id")
        if not isinstance(rep_id, int) or isinstance(rep_id, bool):
            return jsonify({"error": "rep_id must be an integer", "code": "VALIDATION_ERROR"}), 400

        pin = pin_service.reassign_pin(pin_id, rep_id)
        return jsonify({"pin": pin.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except Exception:
        current_app.logger.exception("Failed to reassign pin")
        return jsonify({"error": "Internal server error"}), 500


@pins_bp.post("/<int:pin_id>/convert")
@require_caller
def convert_pin_route(pin_id: int):
    """
    Convert a pin into a deal.

    Allowed for the pin owner, its assigned closer, or an admin.

    Request body (all optional):
    {
        "deal": {"total_price_cents": 1500000, "homeowner_name": "..."},
        "status_vocabulary": "extended",
        "commission_type": "self_gen",
        "commission_percent": "10",
        "closer_commission_percent": "5"
    }

    Returns:
        201: {deal, pin}
        404: Pin not found
        409: ALREADY_CONVERTED / DUPLICATE_ADDRESS
    """
    try:
        _load_visible_pin(pin_id)
        data = request.get_json(silent=True) or {}

        deal = conversion_service.convert_pin_to_deal(
            pin_id,
            data.get("deal") or {},
            actor_user_id=g.caller.user_id,
            vocabulary=data.get("status_vocabulary"),
            commission_type=data.get("commission_type", "self_gen"),
            commission_percent=data.get("commission_percent"),
            closer_commission_percent=data.get("closer_commission_percent"),
        )
        return jsonify({
            "deal": deal.to_dict(),
            "pin": pin_service.get_pin(pin_id).to_dict(),
            "commissions": [c.to_dict() for c in deal.commissions],
        }), 201

    except NotFoundError as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except DuplicateAddressError as e:
        return jsonify({"error": str(e), "code": e.code, "matches": e.matches}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except ConflictError as e:
        return jsonify({"error": str(e), "code": e.code}), 409
    except Exception:
        current_app.logger.exception("Failed to convert pin")
        return jsonify({"error": "Internal server error"}), 500
