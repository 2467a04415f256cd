# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import caller_service


def _has_caller() -> bool:
    return hasattr(g, 'caller') and g.caller is not None


def require_caller(f):
    """
    Require a gateway-forwarded identity.

    Sets the following Flask g attributes:
    - g.caller: CallerContext (user_id, role, rep_id, is_admin)

    SECURITY: Returns 401 if:
    - X-User-Id or X-User-Role is missing or malformed
    - A rep caller does not map to an active rep
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        caller = caller_service.resolve_caller(
            request.headers.get("X-User-Id"),
            request.headers.get("X-User-Role"),
            request.headers.get("X-Rep-Id"),
        )
        if caller is None:
            current_app.logger.info(
                "Rejected unauthenticated request to %s %s", request.method, request.path
            )
            return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

        g.caller = caller
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the caller to hold one of the given roles.

    Must be stacked under @require_caller.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _has_caller():
                return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

            if g.caller.role not in roles:
                current_app.logger.warning(
                    "Role denied: user %s (%s) on %s %s",
                    g.caller.user_id, g.caller.role, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "FORBIDDEN",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
