from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class VerificationToken(db.Model):
    """
    Email-bound registration token.

    LIFECYCLE:
    - pending: consumed_at is null and expires_at is in the future
    - verified: consumed_at set, the account has been materialized
    - expired: past expires_at without being consumed (cleanup eligible)
    - superseded: a resend rotates token/expires_at on the same row, so the
      previous token value stops matching; resend_count and rotated_at keep
      the history

    At most one pending row per email is actionable at a time.
    payload holds the pending account data (names, password hash, optional
    invite company/role) and never a plaintext password.
    """
    __tablename__ = "verification_tokens"
    __table_args__ = (
        db.Index("ix_verification_tokens_email_pending", "email", "consumed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    token = db.Column(db.String(128), nullable=False, unique=True, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)

    resend_count = db.Column(db.Integer, nullable=False, default=0)
    rotated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def status(self, now=None) -> str:
        if self.consumed_at is not None:
            return "verified"
        if self.expires_at <= (now or utcnow()):
            return "expired"
        return "pending"

    def to_dict(self) -> dict:
        # The token value itself is never serialized.
        return {
            "id": self.id,
            "email": self.email,
            "status": self.status(),
            "expires_at": to_utc_z(self.expires_at),
            "consumed_at": to_utc_z(self.consumed_at) if self.consumed_at else None,
            "user_id": self.user_id,
            "resend_count": self.resend_count,
            "created_at": to_utc_z(self.created_at),
        }
