# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, authorization_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'tenant_id')


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.tenant_id: The resolved company id (None if unaffiliated, or if a
      global_override user has not selected a tenant yet)
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account inactive
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "reason": "unauthenticated"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token", "reason": "unauthenticated"}), 401

        g.current_user = context.user
        g.tenant_id = context.tenant_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(resource: str, action: str):
    """
    Require authorize(current_user, g.tenant_id, resource, action).

    Must be stacked under @require_auth. A global_override user without a
    selected tenant gets 400 so tenant-scoped handlers never run unscoped.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "reason": "unauthenticated"}), 401

            user = g.current_user
            if g.tenant_id is None and user.global_override:
                return jsonify({"error": "No tenant selected", "reason": "no_tenant_selected"}), 400

            if not authorization_service.authorize(user, g.tenant_id, resource, action):
                return jsonify({
                    "error": "Permission denied",
                    "reason": "permission_denied",
                    "required_permission": f"{resource}:{action}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_global_override(f):
    """Require the authenticated user to carry global_override."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, 'current_user'):
            return jsonify({"error": "Authentication required", "reason": "unauthenticated"}), 401
        if not g.current_user.global_override:
            return jsonify({"error": "Global override required", "reason": "not_global_override"}), 403
        return f(*args, **kwargs)
    return decorated_function
