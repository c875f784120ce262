"""
Tests: supplier invitations and the supplier-portal response lifecycle.
"""

from datetime import datetime, timedelta, timezone

import pytest

from rfp_platform.core.exceptions import (
    ArchivedReadOnlyError,
    ConflictError,
    ForbiddenError,
    SubmissionsClosedError,
    ValidationError,
)
from rfp_platform.models import db
from rfp_platform.models.activity import ActivityLog
from rfp_platform.models.auth import Company, User
from rfp_platform.services.rfp_service import archive_rfp
from rfp_platform.services.supplier_service import (
    get_own_response,
    invite_supplier,
    list_contacts,
    response_for_contact,
    save_response,
    submissions_closed,
    submit_response,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
DRAFT = {"executive_summary": "ERP in a box", "requirements_coverage": "see annex"}


@pytest.fixture()
def invited(make_rfp, buyer, supplier_user):
    """An RFP with ``supplier_user`` invited to it."""
    def _make(**rfp_fields):
        rfp = make_rfp(submission_end=rfp_fields.pop("submission_end", NOW + timedelta(days=7)), **rfp_fields)
        contact = invite_supplier(rfp.id, {"name": "Vendor Sales", "email": "Sales@Vendor.test"},
                                  actor=buyer, now=NOW)
        db.session.commit()
        return rfp, contact
    return _make


# ═════════════════════════════════════════════════════════════════════════════
# Invitations
# ═════════════════════════════════════════════════════════════════════════════


class TestInvite:
    def test_invite_binds_existing_supplier_user(self, invited, supplier_user):
        rfp, contact = invited()
        assert contact.email == "sales@vendor.test"
        assert contact.invitation_status == "SENT"
        assert contact.portal_user_id == supplier_user.id
        assert list_contacts(rfp.id) == [contact]
        assert ActivityLog.query.filter_by(rfp_id=rfp.id, event_type="SUPPLIER_INVITED").count() == 1

    def test_unknown_email_is_unbound(self, make_rfp, buyer):
        rfp = make_rfp()
        contact = invite_supplier(rfp.id, {"name": "New Co", "email": "hello@newco.test"}, actor=buyer)
        assert contact.portal_user_id is None

    def test_duplicate_email_conflicts(self, invited, buyer):
        rfp, _ = invited()
        with pytest.raises(ConflictError):
            invite_supplier(rfp.id, {"name": "Again", "email": "sales@vendor.test"}, actor=buyer)
        assert len(list_contacts(rfp.id)) == 1

    @pytest.mark.parametrize("data,field", [
        ({"email": "a@b.test"}, "name"),
        ({"name": "No mail"}, "email"),
        ({"name": "Bad", "email": "not-an-email"}, "email"),
    ])
    def test_validation(self, make_rfp, buyer, data, field):
        rfp = make_rfp()
        with pytest.raises(ValidationError) as exc:
            invite_supplier(rfp.id, data, actor=buyer)
        assert field in exc.value.details

    def test_archived_rfp_rejects_invites(self, make_rfp, buyer):
        rfp = make_rfp(is_archived=True)
        with pytest.raises(ArchivedReadOnlyError):
            invite_supplier(rfp.id, {"name": "X", "email": "x@y.test"}, actor=buyer)

    def test_contact_of_other_rfp_forbidden(self, invited, make_rfp):
        _, contact = invited()
        other = make_rfp(title="Other")
        with pytest.raises(ForbiddenError):
            response_for_contact(other.id, contact.id)


# ═════════════════════════════════════════════════════════════════════════════
# Supplier portal
# ═════════════════════════════════════════════════════════════════════════════


class TestSupplierResponse:
    def test_empty_draft_before_first_save(self, invited, supplier_user):
        rfp, contact = invited()
        own = get_own_response(rfp.id, supplier_user)
        assert own["id"] is None
        assert own["status"] == "DRAFT"
        assert own["supplier_contact_id"] == contact.id

    def test_save_merges_and_accepts_invitation(self, invited, supplier_user):
        rfp, contact = invited()
        save_response(rfp.id, {"structured_data": {"executive_summary": "v1"}}, user=supplier_user, now=NOW)
        save_response(rfp.id, {"structured_data": {"architecture": "SaaS"}}, user=supplier_user, now=NOW)
        db.session.commit()

        own = get_own_response(rfp.id, supplier_user)
        assert own["structured_data"] == {"executive_summary": "v1", "architecture": "SaaS"}
        assert contact.invitation_status == "ACCEPTED"

    def test_structured_data_must_be_object(self, invited, supplier_user):
        rfp, _ = invited()
        with pytest.raises(ValidationError):
            save_response(rfp.id, {"structured_data": ["x"]}, user=supplier_user, now=NOW)

    def test_uninvited_supplier_forbidden(self, invited):
        rfp, _ = invited()
        company = Company(name="Stranger")
        db.session.add(company)
        db.session.flush()
        stranger = User(company_id=company.id, email="x@stranger.test", role="supplier", full_name="x")
        db.session.add(stranger)
        db.session.flush()
        with pytest.raises(ForbiddenError):
            save_response(rfp.id, {"structured_data": DRAFT}, user=stranger, now=NOW)

    def test_submit_computes_readiness(self, invited, supplier_user):
        rfp, contact = invited()
        save_response(rfp.id, {"structured_data": DRAFT}, user=supplier_user, now=NOW)
        response, readiness = submit_response(rfp.id, user=supplier_user, now=NOW)

        assert response.status == "SUBMITTED"
        assert readiness["overall_score"] == 10
        assert response.readiness_score == 10
        assert contact.response is response
        assert ActivityLog.query.filter_by(rfp_id=rfp.id, event_type="SUPPLIER_RESPONSE_SUBMITTED").count() == 1

    @pytest.mark.parametrize("extra", [
        {"risk_flags": ["vendor lock-in"]},
        {"mandatory_status": {"unmet_count": "2"}},
        {"mandatory_status": {"unmet_count": 1, "unmet_list": ["SSO", None]}},
        {"pricing": {"hidden_fee_alerts": ["setup fee"]}},
        {"requirements_coverage": {"requirements": ["R1", 7]}},
    ])
    def test_submit_with_malformed_signals(self, invited, supplier_user, extra):
        rfp, _ = invited()
        save_response(rfp.id, {"structured_data": {**DRAFT, **extra}}, user=supplier_user, now=NOW)
        response, readiness = submit_response(rfp.id, user=supplier_user, now=NOW)

        assert response.status == "SUBMITTED"
        assert readiness["indicator"] in ("READY", "CONDITIONAL", "NOT_READY")

    def test_submit_without_draft(self, invited, supplier_user):
        rfp, _ = invited()
        with pytest.raises(ValidationError):
            submit_response(rfp.id, user=supplier_user, now=NOW)

    def test_submitted_response_is_frozen(self, invited, supplier_user):
        rfp, _ = invited()
        save_response(rfp.id, {"structured_data": DRAFT}, user=supplier_user, now=NOW)
        submit_response(rfp.id, user=supplier_user, now=NOW)
        with pytest.raises(SubmissionsClosedError):
            save_response(rfp.id, {"structured_data": {"pricing": "later"}}, user=supplier_user, now=NOW)
        with pytest.raises(SubmissionsClosedError):
            submit_response(rfp.id, user=supplier_user, now=NOW)

    def test_closed_after_deadline(self, invited, supplier_user):
        rfp, _ = invited(submission_end=NOW - timedelta(minutes=1))
        assert submissions_closed(rfp, NOW) is True
        with pytest.raises(SubmissionsClosedError):
            save_response(rfp.id, {"structured_data": DRAFT}, user=supplier_user, now=NOW)

    def test_deadline_itself_is_still_open(self, invited):
        rfp, _ = invited(submission_end=NOW)
        assert submissions_closed(rfp, NOW) is False

    def test_closed_when_locked(self, invited, supplier_user):
        rfp, _ = invited(submissions_locked_at=NOW - timedelta(hours=1))
        with pytest.raises(SubmissionsClosedError):
            save_response(rfp.id, {"structured_data": DRAFT}, user=supplier_user, now=NOW)

    def test_archived_rfp_is_read_only(self, invited, supplier_user, buyer):
        rfp, _ = invited()
        archive_rfp(rfp.id, actor=buyer)
        with pytest.raises(ArchivedReadOnlyError):
            save_response(rfp.id, {"structured_data": DRAFT}, user=supplier_user, now=NOW)
