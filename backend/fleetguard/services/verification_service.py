# Overview: Service-layer operations for email verification; encapsulates business logic and database work.

"""
Verification Workflow

WHY: An account is only materialized once its email address has been
proven. Registration data waits in a verification row until the token is
consumed.

STATE MACHINE (per row):
- pending -> verified: consume_verification() materializes the account and
  sets consumed_at in the same commit
- pending -> expired: detected lazily on consume; rows are only deleted by
  cleanup_expired_verifications()
- pending -> superseded: resend (or a repeated issue) rotates the token
  value and expiry on the same row, so the old token stops matching

At most one actionable token exists per email at any time.

SECURITY NOTES:
- Tokens are 32 random bytes (64 hex chars) from secrets
- Plaintext passwords are hashed before they are stored in the payload
- Invitations (payload with company_id) require an issuer holding
  users:create in that company and cannot hand out the admin role unless
  the issuer is an admin there
"""

import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..errors import ConflictError, ExpiredError, NotFoundError, UnauthenticatedError
from ..models import User, VerificationToken, new_identity
from ..permissions import MEMBER_ROLE, validate_role
from ..time_utils import as_naive_utc, utcnow
from ..validation import ValidationError, normalize_email
from . import audit_service, auth_service, authorization_service
from .concurrency import configured_retry_policy, lock_for_update, run_with_retry
from .membership_service import ensure_can_assign_role
from .provisioning_service import record_provisioning, stage_new_account
from .tenant_service import get_company


ALLOWED_PAYLOAD_KEYS = {"first_name", "last_name", "password", "company_id", "role"}


def generate_token() -> str:
    return secrets.token_hex(32)


def _expiry(now):
    return now + timedelta(hours=current_app.config.get("VERIFICATION_TTL_HOURS", 24))


def _invalid_token() -> NotFoundError:
    return NotFoundError("Invalid or expired verification token", reason="invalid_or_expired")


def _build_payload(payload: dict, issued_by: User | None) -> dict:
    """Validate registration input into the stored (password-free) payload."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(set(payload) - ALLOWED_PAYLOAD_KEYS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    data = {}
    for key in ("first_name", "last_name"):
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        value = value.strip()
        if len(value) > 120:
            raise ValidationError(f"{key} exceeds max length 120")
        data[key] = value

    if payload.get("password") is not None:
        data["password_hash"] = auth_service.hash_password(payload["password"])

    company_id = payload.get("company_id")
    role = payload.get("role")
    if company_id is None:
        if role is not None:
            raise ValidationError("role requires company_id")
        return data

    if issued_by is None:
        raise UnauthenticatedError("Invitations require an authenticated issuer")
    try:
        company_id = int(company_id)
    except (TypeError, ValueError):
        raise ValidationError("company_id must be an integer")

    role = role or MEMBER_ROLE
    if not validate_role(role):
        raise ValidationError(f"Unknown role: {role}")

    get_company(company_id)
    authorization_service.require_authorization(issued_by, company_id, "users", "create")
    ensure_can_assign_role(issued_by, company_id, role)

    data["company_id"] = company_id
    data["role"] = role
    data["invited_by"] = issued_by.id
    return data


def _pending_row(email: str) -> VerificationToken | None:
    """The unconsumed row for email (pending or expired), newest first."""
    return db.session.query(VerificationToken).filter_by(
        email=email,
        consumed_at=None,
    ).order_by(VerificationToken.created_at.desc(), VerificationToken.id.desc()).first()


def issue_verification(email: str, payload: dict | None = None, issued_by: User | None = None) -> VerificationToken:
    """
    Issue a pending verification for email, valid for VERIFICATION_TTL_HOURS.

    An existing unconsumed row for the same email is rotated in place
    (payload refreshed) instead of adding a second actionable token. A
    pending invitation is only replaced by another authorized invitation.

    Raises:
        ValidationError: malformed input or a reserved address
        ConflictError(account_exists): the email is already taken
        ConflictError(invite_pending): a plain signup would overwrite an invitation
    """
    email = normalize_email(email)
    audit_service.ensure_unreserved_email(email)
    data = _build_payload(payload, issued_by)

    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError("An account already exists for this email", reason="account_exists")

    now = utcnow()
    record = _pending_row(email)
    if record is not None and (record.payload or {}).get("invited_by") and "invited_by" not in data:
        raise ConflictError("An invitation is pending for this email", reason="invite_pending")
    if record is None:
        record = VerificationToken(
            email=email,
            token=generate_token(),
            expires_at=_expiry(now),
            payload=data,
            resend_count=0,
            created_at=now,
        )
        db.session.add(record)
    else:
        record.token = generate_token()
        record.expires_at = _expiry(now)
        record.payload = data
        record.rotated_at = now

    db.session.commit()
    current_app.logger.info("Issued verification token for %s (expires %s)", email, record.expires_at)
    return record


def consume_verification(token: str) -> User:
    """
    Materialize the account behind token.

    The new principal (through the provisioning staging step) and
    consumed_at are written in one commit, or not at all.

    Raises:
        NotFoundError(invalid_or_expired): no unconsumed row with this token
        ExpiredError: the row exists but is past its expiry
        ConflictError(account_exists): the email was claimed meanwhile
    """
    if not token or not isinstance(token, str):
        raise _invalid_token()

    record = db.session.query(VerificationToken).filter_by(
        token=token,
        consumed_at=None,
    ).first()
    if record is None:
        raise _invalid_token()
    if as_naive_utc(record.expires_at) <= utcnow():
        raise ExpiredError("Verification token has expired", reason="expired")

    record_id = record.id
    email = record.email
    profile = dict(record.payload or {})
    user_id = new_identity()
    state = {}

    def _materialize():
        row = lock_for_update(
            db.session.query(VerificationToken).filter_by(id=record_id, consumed_at=None)
        ).first()
        if row is None:
            raise _invalid_token()
        if db.session.query(User.id).filter_by(email=email).first():
            raise ConflictError("An account already exists for this email", reason="account_exists")

        outcome = stage_new_account(user_id, email, profile)
        row.consumed_at = utcnow()
        row.user_id = outcome.user.id
        db.session.commit()
        state["outcome"] = outcome
        return outcome.user

    def _conflict():
        # Another consumer of the same token won the race
        consumed = db.session.query(VerificationToken.consumed_at).filter_by(id=record_id).scalar()
        if consumed is not None:
            raise _invalid_token()
        return None

    user = run_with_retry(_materialize, on_conflict=_conflict, **configured_retry_policy())

    record_provisioning(state["outcome"])
    current_app.logger.info("Verified %s as user %s", email, user.id)
    return user


def resend_verification(email: str) -> VerificationToken:
    """
    Rotate token and expiry on the unconsumed row for email.

    The previous token value stops matching immediately.
    Raises NotFoundError(not_found) when there is nothing to resend.
    """
    email = normalize_email(email)
    record = _pending_row(email)
    if record is None:
        raise NotFoundError("No pending verification for this email", reason="not_found")

    now = utcnow()
    record.token = generate_token()
    record.expires_at = _expiry(now)
    record.resend_count = (record.resend_count or 0) + 1
    record.rotated_at = now
    db.session.commit()

    current_app.logger.info("Resent verification token for %s (resend #%s)", email, record.resend_count)
    return record


def cleanup_expired_verifications() -> int:
    """
    Delete unconsumed rows past their expiry.

    Safe to run concurrently with everything else: it only removes rows
    that can no longer be consumed.
    """
    deleted = db.session.query(VerificationToken).filter(
        VerificationToken.consumed_at.is_(None),
        VerificationToken.expires_at < utcnow(),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
