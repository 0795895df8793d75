from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z


def new_identity() -> str:
    return str(uuid.uuid4())


class User(db.Model):
    """
    Principals: authenticated identities that can hold memberships.

    WHY: Every action must be attributable, including actions taken by
    background jobs (see the reserved system actor, is_system=True).

    MULTI-TENANT: A user is linked to companies only through Membership.
    global_override users bypass per-company checks and pick the company
    they operate on through active_tenant_id; for everyone else the active
    company is derived from their membership and cannot be set.

    The id is issued by the authentication layer before the row exists, so
    duplicate first-login inserts collide on the primary key.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        db.Index("ix_users_global_override", "global_override"),
        db.Index("ix_users_active_tenant", "active_tenant_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_identity)

    email = db.Column(db.String(255), nullable=False, index=True)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)

    # Account-level label: user (unaffiliated), member, admin, system
    role = db.Column(db.String(32), nullable=False, default="user")
    status = db.Column(db.String(16), nullable=False, default="active")

    # Bcrypt hashed password; null for the system actor
    password_hash = db.Column(db.String(255), nullable=True)

    # Cross-tenant operator flag and the tenant they currently operate on
    global_override = db.Column(db.Boolean, nullable=False, default=False)
    active_tenant_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True)

    is_system = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    active_tenant = db.relationship("Company", foreign_keys=[active_tenant_id])

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "status": self.status,
            "global_override": self.global_override,
            "active_tenant_id": self.active_tenant_id,
            "is_system": self.is_system,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class Membership(db.Model):
    """
    User-Company association carrying exactly one role.

    Unique on (user_id, company_id): re-adding a pair overwrites the role.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        db.UniqueConstraint("user_id", "company_id", name="uq_memberships_user_company"),
        db.Index("ix_memberships_company_role", "company_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    role = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", backref=db.backref("memberships", lazy=True))
    company = db.relationship("Company", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PermissionGrant(db.Model):
    """
    Explicit allow rule: (company, role, resource, action).

    WHY: Policy is data, editable per tenant without a redeploy.
    Absence of a row means deny. Unique on the full tuple so that
    seeding and editing are upserts.
    """
    __tablename__ = "permission_grants"
    __table_args__ = (
        db.UniqueConstraint(
            "company_id", "role", "resource", "action",
            name="uq_permission_grants_tuple",
        ),
        db.Index("ix_permission_grants_company_role", "company_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    role = db.Column(db.String(64), nullable=False)
    resource = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("permission_grants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "role": self.role,
            "resource": self.resource,
            "action": self.action,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SessionToken(db.Model):
    """
    Secure session token management.

    WHY: Stateless auth tokens with timeout and revocation support.
    Tokens are cryptographically secure random strings (32 bytes = 64 hex chars).

    The tenant for a request is not captured here: it is resolved on every
    request from the user's membership or, for global_override users, from
    their active_tenant_id, so a tenant switch takes effect immediately.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout or suspicious activity
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }
