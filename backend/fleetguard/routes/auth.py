# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/fleetguard/routes/auth.py
"""
Authentication and signup API routes

- register / verify / resend-verification: email verification workflow
- login / logout / me: session lifecycle
- promote: one-shot admin bootstrap for the principal whose email is a
  company's contact email
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import AuthzError, error_response
from ..services import (
    auth_service,
    authorization_service,
    provisioning_service,
    session_service,
    verification_service,
)
from ..services.membership_service import list_user_memberships
from ..validation import ValidationError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _optional_user():
    """Principal behind an optional bearer token (invitations)."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    context = session_service.validate_session(auth_header.split(" ", 1)[1])
    return context.user if context else None


def _verification_body(record) -> dict:
    body = {"verification": record.to_dict()}
    if current_app.config.get("EXPOSE_VERIFICATION_TOKENS"):
        body["token"] = record.token
    return body


@auth_bp.post("/register")
def register_route():
    """
    Start signup: issue a pending verification for the email.

    Request body:
    - email: str (required)
    - first_name, last_name, password: str (optional)
    - company_id, role: invitation into a company (requires a bearer token
      of a principal holding users:create there)
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        if not email:
            return jsonify({"error": "email required"}), 400

        payload = {k: v for k, v in data.items() if k != "email"}
        record = verification_service.issue_verification(email, payload, issued_by=_optional_user())

        body = _verification_body(record)
        body["message"] = "Verification issued"
        return jsonify(body), 201

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to issue verification")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/verify")
def verify_route():
    """Consume a verification token and materialize the account."""
    try:
        data = request.get_json(silent=True) or {}
        token = data.get("token")
        if not token:
            return jsonify({"error": "token required"}), 400

        user = verification_service.consume_verification(token)
        memberships = list_user_memberships(user.id)

        return jsonify({
            "user": user.to_dict(),
            "memberships": [m.to_dict() for m in memberships],
            "message": "Account verified",
        }), 201

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to verify token")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/resend-verification")
def resend_verification_route():
    """Rotate the pending token for an email."""
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        if not email:
            return jsonify({"error": "email required"}), 400

        record = verification_service.resend_verification(email)
        body = _verification_body(record)
        body["message"] = "Verification resent"
        return jsonify(body), 200

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to resend verification")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials", "reason": "unauthenticated"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        context = session_service.validate_session(token)
        tenant_id = context.tenant_id if context else None

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "tenant_id": tenant_id,
            "permissions": authorization_service.get_effective_permissions(user, tenant_id),
            "message": "Login successful",
        }), 200

    except AuthzError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization").split(" ", 1)[1]
    session_service.revoke_session(token, reason="User logout")
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current principal, resolved tenant, memberships and effective permissions."""
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "tenant_id": g.tenant_id,
        "memberships": [m.to_dict() for m in list_user_memberships(user.id)],
        "permissions": authorization_service.get_effective_permissions(user, g.tenant_id),
    }), 200


@auth_bp.post("/promote")
@require_auth
def promote_route():
    """
    Promote to company admin.

    Without a body the current principal is promoted. Promoting someone
    else (user_id in the body) requires global_override.

    Returns 200 on success (including already_admin), 404 for
    no_matching_company, 409 for company_has_admin.
    """
    try:
        data = request.get_json(silent=True) or {}
        actor = g.current_user
        target_id = data.get("user_id") or actor.id

        if target_id != actor.id and not actor.global_override:
            return jsonify({"error": "Global override required", "reason": "not_global_override"}), 403

        result = provisioning_service.promote_to_admin(target_id, actor_id=actor.id)
        if result.success:
            return jsonify(result.to_dict()), 200

        status = 404 if result.reason == "no_matching_company" else 409
        return jsonify({**result.to_dict(), "error": "Promotion failed"}), status

    except AuthzError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to promote user")
        return jsonify({"error": "Internal server error"}), 500
