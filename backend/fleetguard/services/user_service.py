# Overview: Service-layer operations for principals; encapsulates business logic and database work.

"""
Principal profile and privilege changes.

Profile edits go through USER_PROFILE_POLICY, which excludes every
privileged column. global_override has its own entry point with its own
gate: only an override principal, or a non-interactive (system) context,
may change it.
"""

from ..extensions import db
from ..errors import ForbiddenError, NotFoundError
from ..models import Company, User
from ..time_utils import utcnow
from ..validation import USER_PROFILE_POLICY, validate_payload
from . import audit_service, authorization_service
from .tenant_service import get_current_tenant_id


def get_user(user_id: str) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFoundError("User not found", reason="user_not_found")
    return user


def list_users(include_system: bool = False) -> list[User]:
    query = db.session.query(User)
    if not include_system:
        query = query.filter(User.is_system.is_(False))
    return query.order_by(User.email).all()


def _owns_company(user_id: str) -> bool:
    return db.session.query(Company.id).filter_by(owner_id=user_id).first() is not None


def update_profile(editor: User, user_id: str, payload: dict) -> User:
    """
    Patch a principal's profile.

    Principals may edit their own names. Editing someone else, or changing
    status, needs users:edit in the target's current company.

    SECURITY: a global_override principal can only be edited by another
    override principal, whatever tenant it has switched into. The status of
    a company owner can only be changed by an override principal.
    """
    user = get_user(user_id)
    patch = validate_payload(
        model=User,
        payload=payload,
        policy=USER_PROFILE_POLICY,
        partial=True,
    )

    if user.is_system:
        raise ForbiddenError("The system actor cannot be edited", reason="system_actor")

    if editor.id != user.id and user.global_override and not editor.global_override:
        raise ForbiddenError(
            "Only override principals can edit an override principal",
            reason="override_principal_protected",
        )

    if "status" in patch and not editor.global_override and _owns_company(user.id):
        raise ForbiddenError(
            "Only override principals can change a company owner's status",
            reason="company_owner",
        )

    if editor.id != user.id or "status" in patch:
        company_id = get_current_tenant_id(user)
        authorization_service.require_authorization(editor, company_id, "users", "edit")

    before = audit_service.snapshot(user)
    for key, value in patch.items():
        setattr(user, key, value)
    user.updated_at = utcnow()
    db.session.commit()

    audit_service.record_audit(
        user_id=user.id,
        company_id=get_current_tenant_id(user),
        action="USER_UPDATE",
        details={
            "operation": "UPDATE",
            "old_data": before,
            "new_data": audit_service.snapshot(user),
        },
        actor_id=editor.id,
    )
    return user


def set_global_override(user_id: str, enabled: bool, actor: User | None = None) -> User:
    """
    Grant or revoke cross-tenant access.

    actor=None means a non-interactive caller (CLI, scheduled job) and is
    attributed to the system actor. Disabling clears active_tenant_id.
    """
    if actor is not None and not actor.global_override:
        raise ForbiddenError(
            "Only global override users can change global override",
            reason="not_global_override",
        )

    user = get_user(user_id)
    if user.is_system:
        raise ForbiddenError("The system actor cannot be changed", reason="system_actor")

    before = {"global_override": user.global_override, "active_tenant_id": user.active_tenant_id}
    user.global_override = bool(enabled)
    if not user.global_override:
        user.active_tenant_id = None
    user.updated_at = utcnow()
    db.session.commit()

    audit_service.record_audit(
        user_id=user.id,
        action="SET_GLOBAL_OVERRIDE",
        details={
            "operation": "UPDATE",
            "old_data": before,
            "new_data": {"global_override": user.global_override, "active_tenant_id": user.active_tenant_id},
        },
        actor_id=actor.id if actor is not None else None,
    )
    return user
