# Overview: Flask API routes for tenant operations; parses input and returns JSON responses.

"""
Tenant directory and company switcher.

Ordinary principals see the companies they are members of and cannot
switch; their tenant is derived. global_override principals list every
company and pick one through /switch.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AuthzError, error_response
from ..services import tenant_service
from ..validation import ValidationError
from ..decorators import require_auth

tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")


@tenants_bp.get("")
@require_auth
def list_tenants():
    companies = tenant_service.list_available_tenants(g.current_user)
    return jsonify({
        "tenants": [c.to_dict() for c in companies],
        "count": len(companies),
        "current_tenant_id": g.tenant_id,
    })


@tenants_bp.post("")
@require_auth
def create_tenant():
    """
    Tenant signup. The caller becomes owner and admin.

    Request body:
    - name: str (required)
    - contact_email: str (required)
    - industry, contact_name: str (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("name") or not data.get("contact_email"):
            return jsonify({"error": "name and contact_email required"}), 400

        company = tenant_service.create_company(
            g.current_user,
            name=data.get("name"),
            contact_email=data.get("contact_email"),
            industry=data.get("industry"),
            contact_name=data.get("contact_name"),
        )
        return jsonify({"tenant": company.to_dict()}), 201

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create tenant")
        return jsonify({"error": "Internal server error"}), 500


@tenants_bp.get("/current")
@require_auth
def current_tenant():
    tenant_id = g.tenant_id
    company = None
    if tenant_id is not None:
        company = tenant_service.get_company(tenant_id).to_dict()
    return jsonify({
        "tenant_id": tenant_id,
        "tenant": company,
        "global_override": g.current_user.global_override,
    })


@tenants_bp.post("/switch")
@require_auth
def switch_tenant():
    """Select the company a global_override principal operates on."""
    try:
        data = request.get_json(silent=True) or {}
        company_id = data.get("company_id")
        if company_id is None:
            return jsonify({"error": "company_id required"}), 400
        try:
            company_id = int(company_id)
        except (TypeError, ValueError):
            return jsonify({"error": "company_id must be an integer"}), 400

        company = tenant_service.set_active_tenant(g.current_user, company_id)
        return jsonify({"tenant_id": company.id, "tenant": company.to_dict()}), 200

    except AuthzError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to switch tenant")
        return jsonify({"error": "Internal server error"}), 500


@tenants_bp.patch("/<int:company_id>")
@require_auth
def update_tenant(company_id: int):
    try:
        data = request.get_json(silent=True)
        company = tenant_service.update_company(g.current_user, company_id, data)
        return jsonify({"tenant": company.to_dict()}), 200

    except AuthzError as e:
        return error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update tenant")
        return jsonify({"error": "Internal server error"}), 500
