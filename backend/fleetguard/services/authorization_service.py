# Overview: Service-layer operations for authorization decisions; encapsulates business logic and database work.

"""
Tenant-Scoped Authorization Decisions

WHY: One function answers "may this principal perform this action on this
resource in this company?" Every route and service gate goes through it.

MULTI-TENANT: Grants are looked up by the role the principal holds in the
target company only. A role in one company never grants anything in another.

DESIGN PRINCIPLES:
- Fail closed: no principal, no membership or no grant row means deny
- global_override principals are allowed everywhere, before any lookup
- Store faults are logged and answered with deny, never with allow
"""

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import ForbiddenError, UnauthenticatedError
from ..models import Membership, PermissionGrant, User
from ..permissions import ACTIONS, RESOURCES


def get_membership(user_id: str, company_id: int) -> Membership | None:
    return db.session.query(Membership).filter_by(
        user_id=user_id,
        company_id=company_id,
    ).first()


def authorize(user: User | None, company_id: int | None, resource: str, action: str) -> bool:
    """
    Decide access for (principal, company, resource, action).

    Returns True only if the principal is active and either carries
    global_override or holds a membership in company_id whose role has
    a matching grant in that same company.
    """
    if user is None or not user.is_active:
        return False

    if user.global_override:
        return True

    if company_id is None:
        return False

    try:
        membership = get_membership(user.id, company_id)
        if membership is None:
            return False

        grant = db.session.query(PermissionGrant.id).filter_by(
            company_id=company_id,
            role=membership.role,
            resource=resource,
            action=action,
        ).first()
        return grant is not None
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Authorization lookup failed for user %s in company %s; denying",
            user.id, company_id, exc_info=True,
        )
        return False


def authorize_by_id(user_id: str | None, company_id: int | None, resource: str, action: str) -> bool:
    """authorize() for callers that only hold an id."""
    if not user_id:
        return False
    user = db.session.query(User).filter_by(id=user_id).first()
    return authorize(user, company_id, resource, action)


def require_authorization(user: User | None, company_id: int | None, resource: str, action: str) -> None:
    """
    Raise instead of returning False.

    Raises UnauthenticatedError when no principal is given,
    ForbiddenError when authorize() denies.
    """
    if user is None:
        raise UnauthenticatedError("Authentication required")
    if not authorize(user, company_id, resource, action):
        raise ForbiddenError(
            f"Permission denied: {resource}:{action}",
            reason="permission_denied",
        )


def get_effective_permissions(user: User, company_id: int | None) -> dict[str, list[str]]:
    """
    resource -> sorted actions the principal may perform in company_id.

    global_override principals get the full catalog.
    """
    if user is None or not user.is_active:
        return {}

    if user.global_override:
        return {resource: list(ACTIONS) for resource in RESOURCES}

    if company_id is None:
        return {}

    membership = get_membership(user.id, company_id)
    if membership is None:
        return {}

    grants = db.session.query(PermissionGrant).filter_by(
        company_id=company_id,
        role=membership.role,
    ).all()

    permissions: dict[str, list[str]] = {}
    for grant in grants:
        permissions.setdefault(grant.resource, []).append(grant.action)
    return {resource: sorted(actions) for resource, actions in sorted(permissions.items())}
