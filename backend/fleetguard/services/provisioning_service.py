# Overview: Service-layer operations for account provisioning and admin promotion; encapsulates business logic and database work.

"""
Provisioning Workflow

WHY: Two entry points create or elevate access, and both must converge on
the same end state when re-run: one membership per matched company,
default grants for that company, and an audit record for the action.

NEW-ACCOUNT AUTO-LINK:
- Get-or-create the principal by the identity issued at authentication
- An invitation (company_id + role in the profile) links to that company
- Otherwise a company whose contact-email domain matches gets a member
- Otherwise the principal stays unaffiliated (account role "user")
- Concurrent first logins collide on the primary key; the loser re-reads
  the winner's row and reports success

ADMIN PROMOTION (ordered preconditions):
(a) already an admin anywhere -> success, already_admin
(b) no company whose contact email equals the principal's -> no_matching_company
(c) that company has a distinct admin -> company_has_admin
The check and the insert are not atomic; the membership unique constraint
is the backstop and the precondition is re-checked inside the retry loop.
global_override is never touched by promotion.
"""

import time
from dataclasses import asdict, dataclass

from ..extensions import db
from ..errors import ConflictError, NotFoundError
from ..models import Membership, User, new_identity
from ..permissions import ADMIN_ROLE, MEMBER_ROLE, UNAFFILIATED_ROLE
from ..time_utils import utcnow
from ..validation import normalize_email
from . import audit_service
from .concurrency import configured_retry_policy, run_with_retry
from .membership_service import get_membership, stage_membership
from .permission_service import stage_default_grants
from .tenant_service import find_company_by_contact_email, find_company_by_email_domain, get_company


@dataclass
class PromotionResult:
    success: bool
    reason: str | None = None
    role: str | None = None
    company_id: int | None = None
    already_admin: bool = False
    preserved_global_override: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ProvisioningOutcome:
    """What stage_new_account changed; drives the post-commit audit records."""
    user: User
    created: bool = False
    company_id: int | None = None
    role: str | None = None
    link_source: str | None = None  # "invite" | "domain"


def _find_principal(user_id: str | None) -> User | None:
    if not user_id:
        return None
    return db.session.query(User).filter_by(id=user_id).first()


def _resolve_link(email: str, profile: dict):
    """(company, role, source) the new account should be linked to, or Nones."""
    if profile.get("company_id") is not None:
        company = get_company(int(profile["company_id"]))
        return company, profile.get("role") or MEMBER_ROLE, "invite"

    company = find_company_by_email_domain(email)
    if company is not None:
        return company, MEMBER_ROLE, "domain"
    return None, None, None


def stage_new_account(user_id: str | None, email: str, profile: dict | None = None) -> ProvisioningOutcome:
    """
    Get-or-create the principal and its company link inside the current
    session. Flushes but does not commit.

    An existing membership is never downgraded: re-running for a principal
    that was promoted in the meantime leaves its role alone.
    """
    profile = profile or {}
    email = normalize_email(email)

    user = _find_principal(user_id)
    outcome = ProvisioningOutcome(user=user)
    if user is None:
        now = utcnow()
        user = User(
            id=user_id or new_identity(),
            email=email,
            first_name=profile.get("first_name"),
            last_name=profile.get("last_name"),
            password_hash=profile.get("password_hash"),
            role=UNAFFILIATED_ROLE,
            status="active",
            global_override=False,
            is_system=False,
            created_at=now,
            updated_at=now,
        )
        db.session.add(user)
        db.session.flush()
        outcome.user = user
        outcome.created = True

    company, role, source = _resolve_link(email, profile)
    if company is not None and get_membership(user.id, company.id) is None:
        stage_membership(user.id, company.id, role)
        stage_default_grants(company.id)
        if user.role == UNAFFILIATED_ROLE:
            user.role = ADMIN_ROLE if role == ADMIN_ROLE else MEMBER_ROLE
        outcome.company_id = company.id
        outcome.role = role
        outcome.link_source = source

    db.session.flush()
    return outcome


def record_provisioning(outcome: ProvisioningOutcome) -> None:
    """Post-commit audit records for a staged account."""
    user = outcome.user
    if outcome.created:
        audit_service.record_audit(
            user_id=user.id,
            company_id=outcome.company_id,
            action="CREATE_USER",
            details={"operation": "INSERT", "new_data": audit_service.snapshot(user)},
            actor_id=user.id,
        )
    if outcome.company_id is not None:
        audit_service.record_audit(
            user_id=user.id,
            company_id=outcome.company_id,
            action="AUTO_COMPANY_LINK",
            details={
                "operation": "INSERT",
                "role": outcome.role,
                "source": outcome.link_source,
                "email_domain": user.email.rsplit("@", 1)[-1],
            },
            actor_id=user.id,
        )


def provision_new_account(user_id: str, email: str, profile: dict | None = None) -> User:
    """
    Idempotent first-login provisioning.

    A benign duplicate (another caller created the same identity first) is
    reported as success. A different identity already owning the email
    raises ConflictError("account_exists").
    """
    email = normalize_email(email)
    audit_service.ensure_unreserved_email(email)
    state = {}

    def _attempt():
        outcome = stage_new_account(user_id, email, profile)
        db.session.commit()
        state["outcome"] = outcome
        return outcome.user

    def _existing():
        user = _find_principal(user_id)
        if user is not None:
            return user
        other = db.session.query(User.id).filter_by(email=email).first()
        if other is not None:
            raise ConflictError("An account already exists for this email", reason="account_exists")
        return None

    user = run_with_retry(_attempt, on_conflict=_existing, **configured_retry_policy())

    outcome = state.get("outcome")
    if outcome is not None:
        record_provisioning(outcome)
    return user


def _admin_membership(user_id: str) -> Membership | None:
    return db.session.query(Membership).filter_by(
        user_id=user_id,
        role=ADMIN_ROLE,
    ).order_by(Membership.created_at, Membership.id).first()


def _rival_admin(company_id: int, user_id: str) -> Membership | None:
    return db.session.query(Membership).filter(
        Membership.company_id == company_id,
        Membership.role == ADMIN_ROLE,
        Membership.user_id != user_id,
    ).first()


def _record_attempt(user: User, result: PromotionResult, actor_id: str | None) -> None:
    audit_service.record_audit(
        user_id=user.id,
        company_id=result.company_id,
        action="PROMOTE_ADMIN_ATTEMPT",
        details={"email": user.email, "reason": result.reason},
        actor_id=actor_id,
        success=result.success,
        error_message=None if result.success else result.reason,
    )


def promote_to_admin(user_id: str, actor_id: str | None = None) -> PromotionResult:
    """
    Make a principal the admin of the company whose contact email equals
    theirs. Safe to call repeatedly.

    Non-mutating outcomes (already_admin, no_matching_company,
    company_has_admin) are recorded as PROMOTE_ADMIN_ATTEMPT; a performed
    promotion is recorded once as PROMOTE_ADMIN.
    """
    started = time.perf_counter()

    user = _find_principal(user_id)
    if user is None:
        raise NotFoundError("User not found", reason="user_not_found")

    # (a)
    existing = _admin_membership(user.id)
    if existing is not None or user.role == ADMIN_ROLE:
        result = PromotionResult(
            success=True,
            reason="already_admin",
            role=ADMIN_ROLE,
            company_id=existing.company_id if existing else None,
            already_admin=True,
            preserved_global_override=bool(user.global_override),
        )
        _record_attempt(user, result, actor_id)
        return result

    # (b)
    company = find_company_by_contact_email(user.email)
    if company is None:
        result = PromotionResult(
            success=False,
            reason="no_matching_company",
            preserved_global_override=bool(user.global_override),
        )
        _record_attempt(user, result, actor_id)
        return result

    company_id = company.id
    state = {}

    def _promote():
        # (c), re-checked on every attempt
        if _rival_admin(company_id, user.id) is not None:
            return "company_has_admin"
        membership, before = stage_membership(user.id, company_id, ADMIN_ROLE)
        stage_default_grants(company_id)
        user.role = ADMIN_ROLE
        db.session.commit()
        state["before"] = before
        state["membership"] = membership
        return "promoted"

    outcome = run_with_retry(_promote, on_conflict=lambda: None, **configured_retry_policy())

    preserved = bool(user.global_override)
    if outcome == "company_has_admin":
        result = PromotionResult(
            success=False,
            reason="company_has_admin",
            company_id=company_id,
            preserved_global_override=preserved,
        )
        _record_attempt(user, result, actor_id)
        return result

    duration_ms = int((time.perf_counter() - started) * 1000)
    audit_service.record_audit(
        user_id=user.id,
        company_id=company_id,
        action="PROMOTE_ADMIN",
        details={
            "operation": "INSERT" if state.get("before") is None else "UPDATE",
            "company_id": company_id,
            "company_name": company.name,
            "old_data": state.get("before"),
            "new_data": audit_service.snapshot(state.get("membership")),
            "duration_ms": duration_ms,
            "preserved_global_override": preserved,
        },
        actor_id=actor_id,
    )

    return PromotionResult(
        success=True,
        role=ADMIN_ROLE,
        company_id=company_id,
        preserved_global_override=preserved,
    )
