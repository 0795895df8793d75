# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/fleetguard/routes/admin.py
"""
Admin routes for tenant access management.

Provides endpoints for:
- Membership management (list, upsert, remove)
- Permission grant management (list, upsert, revoke)
- Audit trail (read-only, tenant-scoped)
- Principal profile edits and the global override flag

The target company is the ?company_id= query parameter, falling back to the
caller's resolved tenant. Every mutation is gated again in the service layer.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AuthzError, error_response
from ..services import (
    audit_service,
    authorization_service,
    membership_service,
    permission_service,
    user_service,
)
from ..validation import ValidationError
from ..decorators import require_auth, require_global_override

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _target_company_id() -> int | None:
    company_id = request.args.get("company_id", type=int)
    return g.tenant_id if company_id is None else company_id


def _no_tenant():
    return jsonify({"error": "No tenant selected", "reason": "no_tenant_selected"}), 400


# =============================================================================
# MEMBERSHIPS
# =============================================================================

@admin_bp.get("/memberships")
@require_auth
def list_memberships():
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()
        authorization_service.require_authorization(g.current_user, company_id, "users", "view")

        memberships = membership_service.list_memberships(company_id)
        result = []
        for membership in memberships:
            item = membership.to_dict()
            item["user"] = membership.user.to_dict()
            result.append(item)
        return jsonify({"memberships": result, "count": len(result)})

    except AuthzError as e:
        return error_response(e)


@admin_bp.put("/memberships/<user_id>")
@require_auth
def upsert_membership(user_id: str):
    """
    Add a principal to the company or change their role.

    Request body:
    - role: str (required)
    """
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()

        data = request.get_json(silent=True) or {}
        role = data.get("role")
        if not role:
            return jsonify({"error": "role required"}), 400

        membership = membership_service.add_membership(user_id, company_id, role, actor=g.current_user)
        return jsonify({"membership": membership.to_dict()}), 200

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to upsert membership")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/memberships/<user_id>")
@require_auth
def delete_membership(user_id: str):
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()

        membership_service.remove_membership(user_id, company_id, actor=g.current_user)
        return jsonify({"message": "Membership removed"}), 200

    except AuthzError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove membership")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PERMISSION GRANTS
# =============================================================================

@admin_bp.get("/permissions")
@require_auth
def list_permissions():
    """Grant matrix of the company, optionally filtered by ?role=."""
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()
        authorization_service.require_authorization(g.current_user, company_id, "settings", "view")

        grants = permission_service.list_grants(company_id, role=request.args.get("role"))
        return jsonify({"grants": [grant.to_dict() for grant in grants], "count": len(grants)})

    except AuthzError as e:
        return error_response(e)


def _grant_fields():
    data = request.get_json(silent=True) or {}
    role = data.get("role")
    resource = data.get("resource")
    action = data.get("action")
    if not all([role, resource, action]):
        raise ValidationError("role, resource and action required")
    return role, resource, action


@admin_bp.put("/permissions")
@require_auth
def upsert_permission():
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()

        role, resource, action = _grant_fields()
        grant = permission_service.set_grant(g.current_user, company_id, role, resource, action)
        return jsonify({"grant": grant.to_dict()}), 200

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to upsert permission grant")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/permissions")
@require_auth
def revoke_permission():
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()

        role, resource, action = _grant_fields()
        removed = permission_service.revoke_grant(g.current_user, company_id, role, resource, action)
        if not removed:
            return jsonify({"error": "Grant not found", "reason": "not_found"}), 404
        return jsonify({"message": "Grant revoked"}), 200

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to revoke permission grant")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT
# =============================================================================

@admin_bp.get("/audit")
@require_auth
def list_audit():
    """
    Tenant-scoped audit records, newest first.

    Query params:
    - action: str - filter by action tag
    - user_id: str - filter by subject
    - limit: int (default 100, max 500)
    """
    try:
        company_id = _target_company_id()
        if company_id is None:
            return _no_tenant()

        records = audit_service.list_audit_records(
            g.current_user,
            company_id,
            action=request.args.get("action"),
            user_id=request.args.get("user_id"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"records": [r.to_dict() for r in records], "count": len(records)})

    except AuthzError as e:
        return error_response(e)


# =============================================================================
# PRINCIPALS
# =============================================================================

@admin_bp.patch("/users/<user_id>")
@require_auth
def update_user(user_id: str):
    """Profile fields only: first_name, last_name, status."""
    try:
        user = user_service.update_profile(g.current_user, user_id, request.get_json(silent=True))
        return jsonify({"user": user.to_dict()}), 200

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/users/<user_id>/global-override")
@require_auth
@require_global_override
def set_global_override(user_id: str):
    """
    Request body:
    - enabled: bool (required)
    """
    try:
        data = request.get_json(silent=True) or {}
        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            return jsonify({"error": "enabled must be a boolean"}), 400

        user = user_service.set_global_override(user_id, enabled, actor=g.current_user)
        return jsonify({"user": user.to_dict()}), 200

    except AuthzError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change global override")
        return jsonify({"error": "Internal server error"}), 500
