"""
Membership store tests: upsert semantics, escalation guard, removal.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from fleetguard.errors import ConflictError, ForbiddenError, NotFoundError
from fleetguard.models import AuditRecord, Membership
from fleetguard.services import membership_service
from fleetguard.services.audit_service import SYSTEM_ACTOR_ID
from fleetguard.services.authorization_service import authorize
from fleetguard.validation import ValidationError


def _memberships(db_session, user_id, company_id):
    return db_session.query(Membership).filter_by(user_id=user_id, company_id=company_id).all()


class TestAddMembership:

    def test_repeat_is_idempotent(self, acme, make_user, db_session):
        u2 = make_user("u2@example.com")

        membership_service.add_membership(u2.id, acme.id, "viewer")
        membership_service.add_membership(u2.id, acme.id, "viewer")

        rows = _memberships(db_session, u2.id, acme.id)
        assert len(rows) == 1
        assert rows[0].role == "viewer"

    def test_repeat_overwrites_role(self, acme, make_user, db_session):
        u2 = make_user("u2@example.com")

        membership_service.add_membership(u2.id, acme.id, "viewer")
        membership_service.add_membership(u2.id, acme.id, "manager")

        rows = _memberships(db_session, u2.id, acme.id)
        assert [r.role for r in rows] == ["manager"]

    def test_each_call_is_audited_once(self, acme, make_user, db_session):
        u2 = make_user("u2@example.com")

        membership_service.add_membership(u2.id, acme.id, "viewer")
        membership_service.add_membership(u2.id, acme.id, "manager")

        records = db_session.query(AuditRecord).filter_by(
            action="MEMBERSHIP_UPSERT", user_id=u2.id,
        ).order_by(AuditRecord.id).all()
        assert [r.details["operation"] for r in records] == ["INSERT", "UPDATE"]
        assert records[1].details["old_data"]["role"] == "viewer"
        assert records[1].details["new_data"]["role"] == "manager"
        # no request principal: attributed to the system actor
        assert all(r.performed_by == SYSTEM_ACTOR_ID for r in records)

    def test_unique_constraint_is_the_backstop(self, acme, make_user, db_session):
        u2 = make_user("u2@example.com")
        membership_service.add_membership(u2.id, acme.id, "viewer")

        db_session.add(Membership(user_id=u2.id, company_id=acme.id, role="manager"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_unknown_company(self, db_session, make_user):
        u2 = make_user("u2@example.com")
        with pytest.raises(NotFoundError):
            membership_service.add_membership(u2.id, 999, "viewer")

    def test_malformed_role(self, acme, make_user):
        u2 = make_user("u2@example.com")
        with pytest.raises(ValidationError):
            membership_service.add_membership(u2.id, acme.id, "Super Admin")


class TestActorGates:

    def test_admin_can_add_member(self, acme, owner, make_user, db_session):
        u2 = make_user("u2@example.com")
        membership_service.add_membership(u2.id, acme.id, "maintenance", actor=owner)

        record = db_session.query(AuditRecord).filter_by(action="MEMBERSHIP_UPSERT").one()
        assert record.performed_by == owner.id
        assert record.company_id == acme.id

    def test_viewer_cannot_add_member(self, acme, make_user):
        viewer = make_user("viewer@example.com")
        membership_service.add_membership(viewer.id, acme.id, "viewer")
        u3 = make_user("u3@example.com")

        with pytest.raises(ForbiddenError):
            membership_service.add_membership(u3.id, acme.id, "viewer", actor=viewer)

    def test_manager_cannot_hand_out_admin(self, acme, make_user):
        manager = make_user("manager@example.com")
        membership_service.add_membership(manager.id, acme.id, "manager")
        u3 = make_user("u3@example.com")

        with pytest.raises(ForbiddenError) as exc:
            membership_service.add_membership(u3.id, acme.id, "admin", actor=manager)
        assert exc.value.reason == "role_escalation"

    def test_override_can_hand_out_admin(self, acme, operator, make_user, db_session):
        u3 = make_user("u3@example.com")
        membership_service.add_membership(u3.id, acme.id, "admin", actor=operator)
        assert _memberships(db_session, u3.id, acme.id)[0].role == "admin"

    def test_manager_cannot_demote_admin(self, acme, make_user, db_session):
        manager = make_user("manager@example.com")
        membership_service.add_membership(manager.id, acme.id, "manager")
        co_admin = make_user("coadmin@example.com")
        membership_service.add_membership(co_admin.id, acme.id, "admin")

        with pytest.raises(ForbiddenError) as exc:
            membership_service.add_membership(co_admin.id, acme.id, "viewer", actor=manager)
        assert exc.value.reason == "admin_membership_protected"
        assert _memberships(db_session, co_admin.id, acme.id)[0].role == "admin"

    def test_manager_cannot_remove_admin(self, acme, make_user, db_session):
        manager = make_user("manager@example.com")
        membership_service.add_membership(manager.id, acme.id, "manager")
        co_admin = make_user("coadmin@example.com")
        membership_service.add_membership(co_admin.id, acme.id, "admin")

        with pytest.raises(ForbiddenError):
            membership_service.remove_membership(co_admin.id, acme.id, actor=manager)
        assert len(_memberships(db_session, co_admin.id, acme.id)) == 1

    def test_admin_can_demote_admin(self, acme, owner, make_user, db_session):
        co_admin = make_user("coadmin@example.com")
        membership_service.add_membership(co_admin.id, acme.id, "admin")

        membership_service.add_membership(co_admin.id, acme.id, "manager", actor=owner)
        assert _memberships(db_session, co_admin.id, acme.id)[0].role == "manager"


class TestOwnerPinnedToAdmin:

    def test_manager_cannot_demote_owner(self, acme, owner, make_user, db_session):
        manager = make_user("manager@example.com")
        membership_service.add_membership(manager.id, acme.id, "manager")

        with pytest.raises(ForbiddenError):
            membership_service.add_membership(owner.id, acme.id, "viewer", actor=manager)

        assert _memberships(db_session, owner.id, acme.id)[0].role == "admin"
        assert authorize(owner, acme.id, "settings", "edit") is True

    @pytest.mark.parametrize("actor_fixture", ["operator", None])
    def test_owner_role_change_is_a_conflict(self, request, acme, owner, db_session, actor_fixture):
        actor = request.getfixturevalue(actor_fixture) if actor_fixture else None

        with pytest.raises(ConflictError) as exc:
            membership_service.add_membership(owner.id, acme.id, "viewer", actor=actor)
        assert exc.value.reason == "company_owner"
        assert _memberships(db_session, owner.id, acme.id)[0].role == "admin"

    def test_owner_admin_upsert_still_succeeds(self, acme, owner, db_session):
        membership_service.add_membership(owner.id, acme.id, "admin")
        assert _memberships(db_session, owner.id, acme.id)[0].role == "admin"


class TestRemoveMembership:

    def test_remove_revokes_access(self, acme, owner, make_user, db_session):
        u2 = make_user("u2@example.com")
        membership_service.add_membership(u2.id, acme.id, "viewer")

        membership_service.remove_membership(u2.id, acme.id, actor=owner)

        assert _memberships(db_session, u2.id, acme.id) == []
        record = db_session.query(AuditRecord).filter_by(action="MEMBERSHIP_REMOVE").one()
        assert record.details["old_data"]["role"] == "viewer"

    def test_owner_cannot_be_removed(self, acme, owner, operator):
        with pytest.raises(ConflictError) as exc:
            membership_service.remove_membership(owner.id, acme.id, actor=operator)
        assert exc.value.reason == "company_owner"

    def test_missing_membership(self, acme, owner, make_user):
        u2 = make_user("u2@example.com")
        with pytest.raises(NotFoundError):
            membership_service.remove_membership(u2.id, acme.id, actor=owner)
