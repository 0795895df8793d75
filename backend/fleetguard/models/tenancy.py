from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Company(db.Model):
    """
    Multi-tenant root: Every tenant is a Company.

    WHY: Enables shared-database multi-tenancy with strict isolation.
    Memberships, permission grants and scoped audit records all hang off
    a company id. No data may cross company boundaries.

    DESIGN:
    - contact_email is stored lower-cased; its exact value drives admin
      promotion and its domain drives automatic member linking
    - owner_id references the principal that signed the tenant up; the owner
      receives an admin Membership in the same transaction
    - Companies are deactivated, never deleted, while memberships exist
    """
    __tablename__ = "companies"
    __table_args__ = (
        db.Index("ix_companies_contact_email", "contact_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    industry = db.Column(db.String(120), nullable=True)
    contact_name = db.Column(db.String(255), nullable=True)
    contact_email = db.Column(db.String(255), nullable=False)

    owner_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id", use_alter=True, name="fk_companies_owner_id"),
        nullable=True,
        index=True,
    )

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("User", foreign_keys=[owner_id])

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "industry": self.industry,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "owner_id": self.owner_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
