# Overview: Service-layer operations for tenants; encapsulates business logic and database work.

"""
Tenant Directory and Tenant Context Selector

WHY: Every request operates against exactly one company. Ordinary principals
cannot choose that company: it is derived from their membership. Only
global_override principals pick the company they operate on, and every pick
is audited.

SECURITY INVARIANTS:
1. set_active_tenant is rejected outright for non-override principals
2. active_tenant_id is only meaningful while global_override is set
3. A company is created together with its owner's admin membership and its
   default grants, in one commit
4. Cross-tenant lookups return NotFound, never another tenant's row

USAGE:
    from fleetguard.services.tenant_service import get_current_tenant_id

    tenant_id = get_current_tenant_id(g.current_user)
"""

from ..extensions import db
from ..errors import ForbiddenError, NotFoundError
from ..models import Company, Membership, User
from ..permissions import ADMIN_ROLE
from ..time_utils import utcnow
from ..validation import (
    COMPANY_SETTINGS_POLICY,
    email_domain,
    validate_payload,
)
from . import audit_service, authorization_service
from .membership_service import stage_membership
from .permission_service import stage_default_grants


def get_company(company_id: int) -> Company:
    company = db.session.query(Company).filter_by(id=company_id).first()
    if not company:
        raise NotFoundError("Company not found", reason="company_not_found")
    return company


def find_company_by_contact_email(email: str) -> Company | None:
    """Exact, case-insensitive match on the company contact email."""
    email = (email or "").strip().lower()
    if not email:
        return None
    return db.session.query(Company).filter(
        Company.contact_email == email,
        Company.is_active.is_(True),
    ).order_by(Company.id).first()


def find_company_by_email_domain(email: str) -> Company | None:
    """
    First active company whose contact email shares the domain of email.

    Lower-privilege match used only for member auto-linking.
    """
    if not email or "@" not in email:
        return None
    domain = email_domain(email)
    return db.session.query(Company).filter(
        Company.contact_email.like(f"%@{domain}"),
        Company.is_active.is_(True),
    ).order_by(Company.id).first()


def create_company(
    owner: User,
    name: str,
    contact_email: str,
    industry: str | None = None,
    contact_name: str | None = None,
) -> Company:
    """
    Tenant signup.

    Creates the company, the owner's admin membership and the default
    permission grants in a single commit, then records CREATE_COMPANY.
    """
    patch = validate_payload(
        model=Company,
        payload={
            "name": name,
            "contact_email": contact_email,
            "industry": industry,
            "contact_name": contact_name,
        },
        policy=COMPANY_SETTINGS_POLICY,
        partial=False,
    )

    now = utcnow()
    company = Company(
        owner_id=owner.id,
        is_active=True,
        created_at=now,
        updated_at=now,
        **patch,
    )
    db.session.add(company)
    db.session.flush()

    stage_membership(owner.id, company.id, ADMIN_ROLE)
    stage_default_grants(company.id)
    if not owner.is_system:
        owner.role = ADMIN_ROLE

    db.session.commit()

    audit_service.record_audit(
        user_id=owner.id,
        company_id=company.id,
        action="CREATE_COMPANY",
        details={"operation": "INSERT", "new_data": audit_service.snapshot(company)},
    )
    return company


def update_company(editor: User, company_id: int, payload: dict) -> Company:
    """Patch company settings. Gated by settings:edit."""
    authorization_service.require_authorization(editor, company_id, "settings", "edit")
    company = get_company(company_id)

    patch = validate_payload(
        model=Company,
        payload=payload,
        policy=COMPANY_SETTINGS_POLICY,
        partial=True,
    )

    before = audit_service.snapshot(company)
    for key, value in patch.items():
        setattr(company, key, value)
    company.updated_at = utcnow()
    db.session.commit()

    audit_service.record_audit(
        user_id=editor.id,
        company_id=company.id,
        action="COMPANY_UPDATE",
        details={
            "operation": "UPDATE",
            "old_data": before,
            "new_data": audit_service.snapshot(company),
        },
        actor_id=editor.id,
    )
    return company


def get_current_tenant_id(user: User | None) -> int | None:
    """
    Resolve the company a principal is operating on.

    - global_override: active_tenant_id (None means no tenant selected)
    - ordinary principal: company of their oldest membership, or None
    """
    if user is None:
        return None

    if user.global_override:
        return user.active_tenant_id

    membership = db.session.query(Membership).filter_by(
        user_id=user.id,
    ).order_by(Membership.created_at, Membership.id).first()
    return membership.company_id if membership else None


def set_active_tenant(user: User, company_id: int) -> Company:
    """
    Switch the company a global_override principal operates on.

    Raises ForbiddenError for non-override principals and NotFoundError
    for unknown companies. Records SWITCH_TENANT.
    """
    if user is None or not user.global_override:
        raise ForbiddenError(
            "Only global override users can switch tenants",
            reason="not_global_override",
        )

    company = get_company(company_id)
    previous = user.active_tenant_id

    user.active_tenant_id = company.id
    db.session.commit()

    audit_service.record_audit(
        user_id=user.id,
        company_id=company.id,
        action="SWITCH_TENANT",
        details={
            "operation": "UPDATE",
            "old_data": {"active_tenant_id": previous},
            "new_data": {"active_tenant_id": company.id},
        },
        actor_id=user.id,
    )
    return company


def list_available_tenants(user: User) -> list[Company]:
    """All companies for override principals, otherwise the user's companies."""
    if user.global_override:
        return db.session.query(Company).order_by(Company.name, Company.id).all()

    return db.session.query(Company).join(
        Membership, Membership.company_id == Company.id,
    ).filter(
        Membership.user_id == user.id,
    ).order_by(Company.name, Company.id).all()
