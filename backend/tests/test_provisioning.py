# Overview: Pytest coverage for account auto-provisioning and admin promotion.

"""
Provisioning Workflow Tests

Covers:
- Domain auto-link on first login, unaffiliated fallback
- Benign duplicate first logins resolve to success
- Admin promotion preconditions in order: already_admin,
  no_matching_company, company_has_admin
- Promotion never clears global_override and is audited once
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from fleetguard.errors import ConflictError, TransientStoreError
from fleetguard.extensions import db
from fleetguard.models import AuditRecord, Company, Membership, PermissionGrant, User, new_identity
from fleetguard.permissions import iter_default_grants
from fleetguard.services import provisioning_service
from fleetguard.services.authorization_service import authorize
from fleetguard.services.provisioning_service import promote_to_admin, provision_new_account


class TestAutoLink:

    def test_domain_match_links_as_member(self, acme, db_session):
        user = provision_new_account(new_identity(), "Dana@ACME.com", {"first_name": "Dana"})

        assert user.email == "dana@acme.com"
        assert user.role == "member"
        membership = db_session.query(Membership).filter_by(user_id=user.id).one()
        assert membership.company_id == acme.id
        assert membership.role == "member"
        assert authorize(user, acme.id, "vehicles", "view") is True
        assert authorize(user, acme.id, "vehicles", "edit") is False

    def test_no_match_stays_unaffiliated(self, acme, db_session):
        user = provision_new_account(new_identity(), "solo@freelance.dev")

        assert user.role == "user"
        assert db_session.query(Membership).filter_by(user_id=user.id).count() == 0

    def test_audit_records(self, acme, db_session):
        user = provision_new_account(new_identity(), "dana@acme.com")

        actions = [r.action for r in db_session.query(AuditRecord).filter_by(user_id=user.id).order_by(AuditRecord.id)]
        assert actions == ["CREATE_USER", "AUTO_COMPANY_LINK"]

    def test_repeat_is_idempotent(self, acme, db_session):
        user_id = new_identity()
        provision_new_account(user_id, "dana@acme.com")
        provision_new_account(user_id, "dana@acme.com")

        assert db_session.query(User).filter_by(email="dana@acme.com").count() == 1
        assert db_session.query(Membership).filter_by(user_id=user_id).count() == 1
        assert db_session.query(AuditRecord).filter_by(user_id=user_id, action="CREATE_USER").count() == 1

    def test_repeat_never_downgrades(self, acme, db_session):
        user_id = new_identity()
        provision_new_account(user_id, "dana@acme.com")
        db_session.query(Membership).filter_by(user_id=user_id).one().role = "manager"
        db_session.commit()

        provision_new_account(user_id, "dana@acme.com")

        assert db_session.query(Membership).filter_by(user_id=user_id).one().role == "manager"

    def test_concurrent_first_login_is_success(self, acme, db_session, monkeypatch):
        user_id = new_identity()
        # Another worker committed the same identity between our lookup and insert
        db_session.add(User(id=user_id, email="dana@acme.com", role="user"))
        db_session.commit()
        db_session.expunge_all()

        real_find = provisioning_service._find_principal
        calls = {"n": 0}

        def stale_then_real(uid):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_find(uid)

        monkeypatch.setattr(provisioning_service, "_find_principal", stale_then_real)

        user = provision_new_account(user_id, "dana@acme.com")

        assert user.id == user_id
        assert db.session.query(User).filter_by(email="dana@acme.com").count() == 1

    def test_email_owned_by_other_identity(self, acme, make_user):
        make_user("dana@acme.com")
        with pytest.raises(ConflictError) as exc:
            provision_new_account(new_identity(), "dana@acme.com")
        assert exc.value.reason == "account_exists"


class TestPromoteToAdmin:

    def test_exact_contact_match_promotes(self, unclaimed):
        company, founder = unclaimed

        result = promote_to_admin(founder.id)

        assert result.success is True
        assert result.role == "admin"
        assert result.company_id == company.id
        assert result.already_admin is False
        assert authorize(founder, company.id, "settings", "edit") is True

    def test_second_call_reports_already_admin(self, unclaimed, db_session):
        company, founder = unclaimed
        first = promote_to_admin(founder.id)
        grants_after_first = db_session.query(PermissionGrant).filter_by(company_id=company.id).count()

        second = promote_to_admin(founder.id)

        assert first.success and not first.already_admin
        assert second.success and second.already_admin
        assert second.company_id == company.id
        assert db_session.query(Membership).filter_by(user_id=founder.id).count() == 1
        assert db_session.query(PermissionGrant).filter_by(company_id=company.id).count() == grants_after_first
        assert grants_after_first == len(list(iter_default_grants()))

    def test_no_matching_company(self, acme, make_user):
        # domain matches Acme but the contact email does not
        dana = make_user("dana@acme.com")
        result = promote_to_admin(dana.id)
        assert result.success is False
        assert result.reason == "no_matching_company"

    def test_company_has_admin(self, acme, owner, make_user, db_session):
        contact = make_user("ops@acme.com")

        result = promote_to_admin(contact.id)

        assert result.success is False
        assert result.reason == "company_has_admin"
        assert result.company_id == acme.id
        owner_membership = db_session.query(Membership).filter_by(user_id=owner.id, company_id=acme.id).one()
        assert owner_membership.role == "admin"
        assert db_session.query(Membership).filter_by(user_id=contact.id).count() == 0

    def test_preserves_global_override(self, unclaimed, db_session):
        company, founder = unclaimed
        founder.global_override = True
        db_session.commit()

        result = promote_to_admin(founder.id)

        assert result.success is True
        assert result.preserved_global_override is True
        assert db_session.get(User, founder.id).global_override is True

    def test_promotion_audited_once(self, unclaimed, db_session):
        company, founder = unclaimed
        promote_to_admin(founder.id)
        promote_to_admin(founder.id)

        records = db_session.query(AuditRecord).filter_by(action="PROMOTE_ADMIN").all()
        assert len(records) == 1
        details = records[0].details
        assert details["company_id"] == company.id
        assert isinstance(details["duration_ms"], int)
        assert details["preserved_global_override"] is False

        attempts = db_session.query(AuditRecord).filter_by(action="PROMOTE_ADMIN_ATTEMPT").all()
        assert [a.error_message for a in attempts] == [None]

    def test_failed_attempt_recorded(self, acme, make_user, db_session):
        contact = make_user("ops@acme.com")
        promote_to_admin(contact.id)

        attempt = db_session.query(AuditRecord).filter_by(action="PROMOTE_ADMIN_ATTEMPT").one()
        assert attempt.success is False
        assert attempt.error_message == "company_has_admin"


@pytest.fixture
def unclaimed(make_user, db_session):
    """A company whose contact email belongs to a principal with no admin yet."""
    company = Company(name="Umbrella", contact_email="founder@umbrella.io", is_active=True)
    db_session.add(company)
    db_session.commit()
    founder = make_user("founder@umbrella.io")
    return company, founder


class TestRetryPolicy:
    """Bounded retries around the provisioning commit."""

    @staticmethod
    def _flaky_commit(monkeypatch, error, failures):
        session_cls = type(db.session())
        real_commit = session_cls.commit
        calls = {"n": 0}

        def commit(session):
            calls["n"] += 1
            if calls["n"] <= failures:
                raise error
            return real_commit(session)

        monkeypatch.setattr(session_cls, "commit", commit)
        return calls

    def test_transient_faults_then_success(self, app, db_session, monkeypatch):
        attempts = app.config["PROVISIONING_MAX_ATTEMPTS"]
        calls = self._flaky_commit(
            monkeypatch,
            OperationalError("COMMIT", {}, Exception("database is locked")),
            failures=attempts - 1,
        )

        user = provision_new_account(new_identity(), "solo@freelance.dev")

        assert calls["n"] >= attempts
        assert db_session.query(User).filter_by(id=user.id).count() == 1

    def test_exhausted_transient_faults(self, app, db_session, monkeypatch):
        attempts = app.config["PROVISIONING_MAX_ATTEMPTS"]
        calls = self._flaky_commit(
            monkeypatch,
            OperationalError("COMMIT", {}, Exception("database is locked")),
            failures=10 ** 6,
        )

        with pytest.raises(TransientStoreError):
            provision_new_account(new_identity(), "solo@freelance.dev")

        assert calls["n"] == attempts
        assert db_session.query(User).filter_by(email="solo@freelance.dev").count() == 0

    def test_unresolved_uniqueness_conflict(self, app, db_session, monkeypatch):
        attempts = app.config["PROVISIONING_MAX_ATTEMPTS"]
        calls = self._flaky_commit(
            monkeypatch,
            IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed")),
            failures=10 ** 6,
        )

        with pytest.raises(ConflictError) as exc:
            provision_new_account(new_identity(), "solo@freelance.dev")

        assert exc.value.reason == "conflict"
        assert calls["n"] == attempts


class TestConcurrentPromotion:

    def test_rival_admin_between_lookup_and_commit(self, unclaimed, make_user, db_session, monkeypatch):
        company, founder = unclaimed
        rival = make_user("rival@umbrella.io")
        real_lookup = provisioning_service.find_company_by_contact_email

        def lookup_then_rival_commits(email):
            found = real_lookup(email)
            db_session.add(Membership(user_id=rival.id, company_id=company.id, role="admin"))
            db_session.commit()
            return found

        monkeypatch.setattr(provisioning_service, "find_company_by_contact_email", lookup_then_rival_commits)

        result = promote_to_admin(founder.id)

        assert result.success is False
        assert result.reason == "company_has_admin"
        assert result.company_id == company.id
        assert db_session.query(Membership).filter_by(user_id=founder.id).count() == 0
        rival_rows = db_session.query(Membership).filter_by(company_id=company.id).all()
        assert [(m.user_id, m.role) for m in rival_rows] == [(rival.id, "admin")]
        assert db_session.get(User, founder.id).role == "user"
        assert db_session.query(AuditRecord).filter_by(action="PROMOTE_ADMIN").count() == 0
