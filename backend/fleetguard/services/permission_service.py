# Overview: Service-layer operations for permission grants; encapsulates business logic and database work.

"""
Per-Company Permission Grants (Policy as Data)

WHY: Authorization rules live in the permission_grants table so a tenant
can edit its matrix without a redeploy. authorization_service only reads
these rows; this module is the only writer.

DESIGN PRINCIPLES:
- Upserts keyed on (company_id, role, resource, action); reseeding a
  company refreshes updated_at instead of inserting duplicates
- Edits are gated by settings:edit in the target company
- Grants for the admin role can only be edited by an admin of the company
  or a global_override principal
- One audit record per logical operation (one per seed, one per edit)
"""

import re

from ..extensions import db
from ..errors import NotFoundError, ForbiddenError
from ..models import Company, PermissionGrant, User
from ..permissions import ADMIN_ROLE, iter_default_grants
from ..time_utils import utcnow
from ..validation import ValidationError
from . import audit_service, authorization_service


# Resources, actions and roles are open enumerations; edits only need to be well-formed slugs
SLUG_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


def _require_slug(field: str, value) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    slug = value.strip().lower()
    if not SLUG_RE.match(slug):
        raise ValidationError(f"{field} must be a lower-case identifier")
    return slug


def _require_company(company_id: int) -> Company:
    company = db.session.query(Company).filter_by(id=company_id).first()
    if not company:
        raise NotFoundError("Company not found", reason="company_not_found")
    return company


def _ensure_can_edit_role(editor: User, company_id: int, role: str) -> None:
    if role != ADMIN_ROLE or editor.global_override:
        return
    membership = authorization_service.get_membership(editor.id, company_id)
    if membership is None or membership.role != ADMIN_ROLE:
        raise ForbiddenError(
            "Only company admins can change admin grants",
            reason="admin_role_protected",
        )


def stage_default_grants(company_id: int) -> int:
    """
    Add the baseline role templates for company_id to the session.

    Does not commit: callers fold this into their own transaction.
    Returns the number of rows inserted (existing rows are only touched).
    """
    existing = {
        (g.role, g.resource, g.action): g
        for g in db.session.query(PermissionGrant).filter_by(company_id=company_id).all()
    }
    now = utcnow()
    inserted = 0
    for role, resource, action in iter_default_grants():
        grant = existing.get((role, resource, action))
        if grant is not None:
            grant.updated_at = now
            continue
        db.session.add(PermissionGrant(
            company_id=company_id,
            role=role,
            resource=resource,
            action=action,
            created_at=now,
            updated_at=now,
        ))
        inserted += 1
    return inserted


def seed_default_grants(company_id: int, actor_id: str | None = None) -> int:
    """
    Seed (or refresh) the default grants for a company and commit.

    Idempotent. Returns the number of newly inserted rows.
    """
    _require_company(company_id)
    inserted = stage_default_grants(company_id)
    db.session.commit()

    performed_by = audit_service.resolve_actor_id(actor_id)
    audit_service.record_audit(
        user_id=performed_by,
        company_id=company_id,
        action="SEED_PERMISSIONS",
        details={"operation": "UPSERT", "inserted": inserted},
        actor_id=performed_by,
    )
    return inserted


def list_grants(company_id: int, role: str | None = None) -> list[PermissionGrant]:
    query = db.session.query(PermissionGrant).filter_by(company_id=company_id)
    if role:
        query = query.filter_by(role=role)
    return query.order_by(
        PermissionGrant.role,
        PermissionGrant.resource,
        PermissionGrant.action,
    ).all()


def set_grant(editor: User, company_id: int, role: str, resource: str, action: str) -> PermissionGrant:
    """
    Upsert a single grant.

    Raises ForbiddenError unless the editor holds settings:edit in the
    company, ValidationError on malformed identifiers.
    """
    role = _require_slug("role", role)
    resource = _require_slug("resource", resource)
    action = _require_slug("action", action)

    authorization_service.require_authorization(editor, company_id, "settings", "edit")
    _require_company(company_id)
    _ensure_can_edit_role(editor, company_id, role)

    grant = db.session.query(PermissionGrant).filter_by(
        company_id=company_id,
        role=role,
        resource=resource,
        action=action,
    ).first()

    now = utcnow()
    before = audit_service.snapshot(grant)
    if grant is None:
        grant = PermissionGrant(
            company_id=company_id,
            role=role,
            resource=resource,
            action=action,
            created_at=now,
            updated_at=now,
        )
        db.session.add(grant)
    else:
        grant.updated_at = now

    db.session.commit()

    audit_service.record_audit(
        user_id=editor.id,
        company_id=company_id,
        action="GRANT_UPSERT",
        details={
            "operation": "INSERT" if before is None else "UPDATE",
            "old_data": before,
            "new_data": audit_service.snapshot(grant),
        },
        actor_id=editor.id,
    )
    return grant


def revoke_grant(editor: User, company_id: int, role: str, resource: str, action: str) -> bool:
    """
    Delete a single grant. Returns False when no such row existed.

    Same gate as set_grant.
    """
    role = _require_slug("role", role)
    resource = _require_slug("resource", resource)
    action = _require_slug("action", action)

    authorization_service.require_authorization(editor, company_id, "settings", "edit")
    _require_company(company_id)
    _ensure_can_edit_role(editor, company_id, role)

    grant = db.session.query(PermissionGrant).filter_by(
        company_id=company_id,
        role=role,
        resource=resource,
        action=action,
    ).first()
    if grant is None:
        return False

    before = audit_service.snapshot(grant)
    db.session.delete(grant)
    db.session.commit()

    audit_service.record_audit(
        user_id=editor.id,
        company_id=company_id,
        action="GRANT_REVOKE",
        details={"operation": "DELETE", "old_data": before},
        actor_id=editor.id,
    )
    return True
