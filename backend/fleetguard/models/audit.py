from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditRecord(db.Model):
    """
    Audit trail for principal, membership and permission changes.

    MULTI-TENANT: company_id scopes a record to a tenant for read access;
    it is null for account-level events (e.g. an unaffiliated signup).

    performed_by is never null. Changes made outside an authenticated request
    are attributed to the reserved system actor.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "audit_records"
    __table_args__ = (
        db.Index("ix_audit_records_user_action", "user_id", "action"),
        db.Index("ix_audit_records_company_occurred", "company_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Subject of the change
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # CREATE_USER, MEMBERSHIP_UPSERT, SWITCH_TENANT, ...
    details = db.Column(db.JSON, nullable=True)

    performed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)

    success = db.Column(db.Boolean, nullable=False, default=True, index=True)
    error_message = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    subject = db.relationship("User", foreign_keys=[user_id])
    actor = db.relationship("User", foreign_keys=[performed_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "action": self.action,
            "details": self.details,
            "performed_by": self.performed_by,
            "success": self.success,
            "error_message": self.error_message,
            "occurred_at": to_utc_z(self.occurred_at),
        }
