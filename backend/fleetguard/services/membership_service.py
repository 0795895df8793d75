# Overview: Service-layer operations for memberships; encapsulates business logic and database work.

"""
Membership Store

WHY: A Membership is the only link between a principal and a company and
carries exactly one role. authorization_service resolves grants through it.

DESIGN:
- add_membership is an upsert on (user_id, company_id): repeating it with
  a different role overwrites the role, repeating it with the same role is
  a no-op that still succeeds
- A duplicate insert from a concurrent caller is resolved by re-reading
  the pair and applying the role to the winning row
- Only admins of the company (or global_override principals) can hand out
  the admin role, or demote or remove an existing admin
- The company owner's membership is pinned to admin
"""

from ..extensions import db
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..models import Company, Membership, User
from ..permissions import ADMIN_ROLE
from ..time_utils import utcnow
from ..validation import ValidationError
from . import audit_service, authorization_service
from .concurrency import configured_retry_policy, run_with_retry
from .permission_service import SLUG_RE


def get_membership(user_id: str, company_id: int) -> Membership | None:
    return authorization_service.get_membership(user_id, company_id)


def list_memberships(company_id: int) -> list[Membership]:
    return db.session.query(Membership).filter_by(
        company_id=company_id,
    ).order_by(Membership.created_at, Membership.id).all()


def list_user_memberships(user_id: str) -> list[Membership]:
    return db.session.query(Membership).filter_by(
        user_id=user_id,
    ).order_by(Membership.created_at, Membership.id).all()


def stage_membership(user_id: str, company_id: int, role: str) -> tuple[Membership, dict | None]:
    """
    Upsert the membership in the current session without committing.

    Returns (membership, snapshot_before); snapshot_before is None on insert.
    """
    membership = get_membership(user_id, company_id)
    if membership is not None:
        before = audit_service.snapshot(membership)
        if membership.role != role:
            membership.role = role
            membership.updated_at = utcnow()
        return membership, before

    now = utcnow()
    membership = Membership(
        user_id=user_id,
        company_id=company_id,
        role=role,
        created_at=now,
        updated_at=now,
    )
    db.session.add(membership)
    return membership, None


def _is_company_admin(actor: User, company_id: int) -> bool:
    if actor.global_override:
        return True
    membership = get_membership(actor.id, company_id)
    return membership is not None and membership.role == ADMIN_ROLE


def ensure_can_assign_role(actor: User, company_id: int, role: str) -> None:
    """Block privilege escalation: only admins hand out the admin role."""
    if role != ADMIN_ROLE:
        return
    if not _is_company_admin(actor, company_id):
        raise ForbiddenError(
            "Only company admins can assign the admin role",
            reason="role_escalation",
        )


def ensure_can_change_membership(actor: User, membership: Membership | None) -> None:
    """Only admins (or override principals) may demote or remove an admin."""
    if membership is None or membership.role != ADMIN_ROLE:
        return
    if not _is_company_admin(actor, membership.company_id):
        raise ForbiddenError(
            "Only company admins can change an admin membership",
            reason="admin_membership_protected",
        )


def _ensure_owner_keeps_admin(company: Company, user_id: str, role: str) -> None:
    if company.owner_id == user_id and role != ADMIN_ROLE:
        raise ConflictError("The company owner must remain admin", reason="company_owner")


def add_membership(user_id: str, company_id: int, role: str, actor: User | None = None) -> Membership:
    """
    Upsert a membership and record MEMBERSHIP_UPSERT.

    When actor is given the call is gated by users:edit in the company plus
    the admin guards. Internal callers (provisioning, CLI) pass no actor and
    are attributed through the audit actor resolution.

    The company owner always keeps the admin role (ConflictError
    "company_owner"), whoever the caller is.
    """
    if not isinstance(role, str) or not SLUG_RE.match(role):
        raise ValidationError("role must be a lower-case identifier")

    if actor is not None:
        authorization_service.require_authorization(actor, company_id, "users", "edit")
        ensure_can_assign_role(actor, company_id, role)
        ensure_can_change_membership(actor, get_membership(user_id, company_id))

    company = db.session.query(Company).filter_by(id=company_id).first()
    if company is None:
        raise NotFoundError("Company not found", reason="company_not_found")
    if not db.session.query(User.id).filter_by(id=user_id).first():
        raise NotFoundError("User not found", reason="user_not_found")
    _ensure_owner_keeps_admin(company, user_id, role)

    state = {}

    def _upsert():
        membership, before = stage_membership(user_id, company_id, role)
        db.session.commit()
        state["before"] = before
        return membership

    def _existing():
        # Lost an insert race: apply the role to the row that won
        if get_membership(user_id, company_id) is None:
            return None
        return _upsert()

    membership = run_with_retry(_upsert, on_conflict=_existing, **configured_retry_policy())

    before = state.get("before")
    audit_service.record_audit(
        user_id=user_id,
        company_id=company_id,
        action="MEMBERSHIP_UPSERT",
        details={
            "operation": "INSERT" if before is None else "UPDATE",
            "old_data": before,
            "new_data": audit_service.snapshot(membership),
        },
        actor_id=actor.id if actor is not None else None,
    )
    return membership


def remove_membership(user_id: str, company_id: int, actor: User | None = None) -> None:
    """
    Delete a membership and record MEMBERSHIP_REMOVE.

    The company owner's membership cannot be removed. Raises NotFoundError
    when the pair has no membership.
    """
    if actor is not None:
        authorization_service.require_authorization(actor, company_id, "users", "delete")

    membership = get_membership(user_id, company_id)
    if membership is None:
        raise NotFoundError("Membership not found", reason="membership_not_found")

    company = db.session.query(Company).filter_by(id=company_id).first()
    if company is not None and company.owner_id == user_id:
        raise ConflictError("The company owner cannot be removed", reason="company_owner")
    if actor is not None:
        ensure_can_change_membership(actor, membership)

    before = audit_service.snapshot(membership)
    db.session.delete(membership)
    db.session.commit()

    audit_service.record_audit(
        user_id=user_id,
        company_id=company_id,
        action="MEMBERSHIP_REMOVE",
        details={"operation": "DELETE", "old_data": before},
        actor_id=actor.id if actor is not None else None,
    )
