# backend/fleetguard/routes/system.py
"""
System health and the authorization check endpoint.

/api/authorize is the narrow contract consumed by the CRUD screens: it
answers allow/deny for the caller in a company without side effects.
"""

import time
from flask import Blueprint, current_app, request, jsonify, g
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Company, PermissionGrant, SessionToken, User, VerificationToken
from ..services import authorization_service
from ..services.audit_service import SYSTEM_ACTOR_ID
from ..decorators import require_auth
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        company_count = db.session.query(Company).count()
        user_count = db.session.query(User).count()
        grant_count = db.session.query(PermissionGrant).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "companies": company_count,
                "users": user_count,
                "permission_grants": grant_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_workflow_health() -> dict:
    """
    Sessions and verification backlog. A missing system actor is reported
    as degraded: it is created lazily on first use.
    """
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        expired_verifications = db.session.query(VerificationToken).filter(
            VerificationToken.consumed_at.is_(None),
            VerificationToken.expires_at < now,
        ).count()
        has_system_actor = db.session.query(User.id).filter_by(id=SYSTEM_ACTOR_ID).first() is not None

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if has_system_actor else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_verifications_pending_cleanup": expired_verifications,
                "system_actor": has_system_actor,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Workflow health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Workflow store error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    workflow_health = check_workflow_health()

    all_checks = [database_health, workflow_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "workflows": workflow_health,
        }
    }, http_status


@system_bp.get("/api/authorize")
@require_auth
def authorize_route():
    """
    Query params:
    - resource, action: str (required)
    - company_id: int (defaults to the caller's resolved tenant)
    """
    resource = request.args.get("resource")
    action = request.args.get("action")
    if not resource or not action:
        return jsonify({"error": "resource and action required"}), 400

    company_id = request.args.get("company_id", type=int)
    if company_id is None:
        company_id = g.tenant_id
    allowed = authorization_service.authorize(g.current_user, company_id, resource, action)
    return jsonify({
        "allowed": allowed,
        "company_id": company_id,
        "resource": resource,
        "action": action,
    }), 200
