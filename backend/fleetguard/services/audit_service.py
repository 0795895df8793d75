# Overview: Service-layer operations for the audit trail; encapsulates business logic and database work.

"""
Audit Log with System-Actor Fallback

WHY: Every change to a principal, membership or permission grant must be
attributable, including changes made by scheduled jobs and CLI commands
where no interactive user exists.

DESIGN PRINCIPLES:
- Post-commit hooks: services call record_audit() right after their own
  commit returns. One record per logical operation.
- Never block the primary write: a failed audit insert is rolled back and
  logged as a warning. The caller's outcome is preserved.
- No nullable performer: actions without a request principal are attributed
  to a lazily created, reserved system actor with global_override set.
"""

from flask import current_app, g, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import AuditRecord, User
from ..time_utils import utcnow, to_utc_z
from ..validation import ValidationError
from . import authorization_service


SYSTEM_ACTOR_ID = "00000000-0000-0000-0000-000000000000"

DEFAULT_SYSTEM_ACTOR_EMAIL = "system@fleetguard.invalid"

# Used when the configured address is already held by another principal
SYSTEM_ACTOR_FALLBACK_EMAIL = f"{SYSTEM_ACTOR_ID}@system.invalid"

# RFC 2606 top-level domain: never deliverable, so never a real principal
RESERVED_TLD = ".invalid"

# Never copied into audit snapshots
SNAPSHOT_EXCLUDED_FIELDS = {"password_hash", "token_hash", "token"}


def system_actor_email() -> str:
    return current_app.config.get("SYSTEM_ACTOR_EMAIL", DEFAULT_SYSTEM_ACTOR_EMAIL).strip().lower()


def is_reserved_email(email: str) -> bool:
    """The system actor's address and anything under .invalid."""
    email = email.strip().lower()
    return email == system_actor_email() or email.endswith(RESERVED_TLD)


def ensure_unreserved_email(email: str) -> None:
    if is_reserved_email(email):
        raise ValidationError("This email address is reserved")


def snapshot(obj) -> dict | None:
    """Column values of a model instance as a JSON-safe dict."""
    if obj is None:
        return None
    data = {}
    for column in obj.__table__.columns:
        if column.key in SNAPSHOT_EXCLUDED_FIELDS:
            continue
        value = getattr(obj, column.key)
        if hasattr(value, "isoformat"):
            value = to_utc_z(value)
        data[column.key] = value
    return data


def get_system_actor() -> User:
    """
    Look up the reserved system principal, creating it on first use.

    Resolved by the reserved id only. Idempotent: concurrent creators
    collide on the reserved primary key and the loser re-reads the
    winner's row. If the configured address already belongs to another
    principal the actor is created under SYSTEM_ACTOR_FALLBACK_EMAIL.
    """
    actor = db.session.query(User).filter_by(id=SYSTEM_ACTOR_ID).first()
    if actor:
        return actor

    email = system_actor_email()
    if db.session.query(User.id).filter_by(email=email).first():
        current_app.logger.warning(
            "System actor email %s is held by another principal, using %s",
            email, SYSTEM_ACTOR_FALLBACK_EMAIL,
        )
        email = SYSTEM_ACTOR_FALLBACK_EMAIL

    actor = User(
        id=SYSTEM_ACTOR_ID,
        email=email,
        first_name="System",
        last_name="User",
        role="system",
        status="active",
        global_override=True,
        is_system=True,
    )
    db.session.add(actor)
    db.session.add(AuditRecord(
        user_id=SYSTEM_ACTOR_ID,
        action="CREATE_USER",
        details={"operation": "INSERT", "new_data": {"id": SYSTEM_ACTOR_ID, "role": "system"}, "is_system_action": True},
        performed_by=SYSTEM_ACTOR_ID,
        success=True,
        occurred_at=utcnow(),
    ))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        actor = db.session.query(User).filter_by(id=SYSTEM_ACTOR_ID).first()
        if actor is None:
            raise
    return actor


def current_actor_id() -> str | None:
    """The authenticated request principal, if any."""
    if not has_app_context():
        return None
    user = g.get("current_user")
    return user.id if user is not None else None


def resolve_actor_id(actor_id: str | None = None) -> str:
    """Explicit actor, then the request principal, then the system actor."""
    if actor_id:
        return actor_id
    request_actor = current_actor_id()
    if request_actor:
        return request_actor
    return get_system_actor().id


def _write_record(record: AuditRecord) -> None:
    db.session.add(record)
    db.session.commit()


def record_audit(
    *,
    user_id: str,
    action: str,
    details: dict | None = None,
    company_id: int | None = None,
    actor_id: str | None = None,
    success: bool = True,
    error_message: str | None = None,
) -> AuditRecord | None:
    """
    Append an audit record after the primary mutation committed.

    Returns the record, or None when the write failed. Failures never
    propagate to the caller.

    action examples:
    - CREATE_USER, USER_UPDATE, SET_GLOBAL_OVERRIDE, LOGIN
    - AUTO_COMPANY_LINK, MEMBERSHIP_UPSERT, MEMBERSHIP_REMOVE
    - SEED_PERMISSIONS, GRANT_UPSERT, GRANT_REVOKE
    - CREATE_COMPANY, COMPANY_UPDATE, SWITCH_TENANT
    - PROMOTE_ADMIN, PROMOTE_ADMIN_ATTEMPT
    """
    try:
        is_system_action = not actor_id and current_actor_id() is None
        performed_by = resolve_actor_id(actor_id)
        payload = dict(details or {})
        payload.setdefault("is_system_action", is_system_action)

        record = AuditRecord(
            user_id=user_id or performed_by,
            company_id=company_id,
            action=action,
            details=payload,
            performed_by=performed_by,
            success=success,
            error_message=error_message,
            occurred_at=utcnow(),
        )
        _write_record(record)
        return record
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Audit write failed for action %s on user %s", action, user_id, exc_info=True
        )
        return None


def list_audit_records(
    viewer: User,
    company_id: int,
    *,
    action: str | None = None,
    user_id: str | None = None,
    limit: int = 100,
) -> list[AuditRecord]:
    """
    Tenant-scoped audit records, newest first.

    Readable by principals holding users:view in the company, or by
    global_override principals.
    """
    authorization_service.require_authorization(viewer, company_id, "users", "view")

    query = db.session.query(AuditRecord).filter(AuditRecord.company_id == company_id)
    if action:
        query = query.filter(AuditRecord.action == action)
    if user_id:
        query = query.filter(AuditRecord.user_id == user_id)

    limit = max(1, min(int(limit), 500))
    return query.order_by(AuditRecord.occurred_at.desc(), AuditRecord.id.desc()).limit(limit).all()
