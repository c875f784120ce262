"""
RFP Platform
Supplier service — invitations and supplier responses.

Buyers invite supplier contacts to an RFP; a supplier portal user bound to
the invitation edits one response (DRAFT) and submits it once.  Edits and
submission are rejected on archived RFPs and once submissions are closed
(the timeline locked them or the submission deadline passed).
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from rfp_platform.core.exceptions import (
    ConflictError,
    ForbiddenError,
    SubmissionsClosedError,
    ValidationError,
)
from rfp_platform.models import db
from rfp_platform.models.activity import log_activity
from rfp_platform.models.auth import User
from rfp_platform.models.rfp import RFP
from rfp_platform.models.supplier import SupplierContact, SupplierResponse
from rfp_platform.services.readiness import (
    dump_structured_data,
    load_structured_data,
    update_response_readiness,
)
from rfp_platform.services.rfp_service import actor_role_of, ensure_mutable
from rfp_platform.services.supplier_outcomes import invalidate_rfp_insights
from rfp_platform.utils.helpers import as_utc, get_or_raise

logger = logging.getLogger(__name__)


# ── Invitations ──────────────────────────────────────────────────────────────


def invite_supplier(rfp_id, data, *, actor, now=None, session=None):
    """Invite a supplier contact; binds an existing supplier user by email."""
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)

    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    errors = {}
    if not name:
        errors["name"] = "required"
    if not email or "@" not in email:
        errors["email"] = "a valid email is required"
    if errors:
        raise ValidationError("Invalid supplier contact", details=errors)

    portal_user = User.query.filter_by(email=email, role="supplier").first()
    contact = SupplierContact(
        rfp_id=rfp.id,
        name=name,
        email=email,
        organization=(data.get("organization") or "").strip(),
        invitation_status="SENT",
        invited_at=now,
        portal_user_id=portal_user.id if portal_user else None,
    )
    try:
        with session.begin_nested():
            session.add(contact)
    except IntegrityError:
        raise ConflictError("SupplierContact", "email", email)

    log_activity(
        event_type="SUPPLIER_INVITED", actor_role=actor_role_of(actor), session=session,
        summary=f"Supplier {email} invited", rfp_id=rfp.id, user_id=actor.id,
        supplier_contact_id=contact.id,
    )
    return contact


def list_contacts(rfp_id):
    return SupplierContact.query.filter_by(rfp_id=rfp_id).order_by(SupplierContact.id).all()


def list_responses(rfp_id):
    return (
        SupplierResponse.query.filter_by(rfp_id=rfp_id)
        .order_by(SupplierResponse.id)
        .all()
    )


def response_for_contact(rfp_id, contact_id, session=None):
    """(contact, response-or-None) for a contact of the RFP."""
    session = session or db.session
    contact = get_or_raise(SupplierContact, contact_id, label="SupplierContact", session=session)
    if contact.rfp_id != rfp_id:
        raise ForbiddenError("Supplier contact does not belong to this RFP")
    return contact, contact.response


# ── Supplier portal ──────────────────────────────────────────────────────────


def _contact_for_user(rfp_id, user):
    contact = SupplierContact.query.filter_by(rfp_id=rfp_id, portal_user_id=user.id).first()
    if contact is None:
        raise ForbiddenError("Supplier is not invited to this RFP")
    return contact


def submissions_closed(rfp, now):
    deadline = as_utc(rfp.submission_end)
    return bool(rfp.submissions_locked_at) or bool(deadline and now > deadline)


def _ensure_editable(rfp, response, now):
    ensure_mutable(rfp)
    if submissions_closed(rfp, now):
        raise SubmissionsClosedError()
    if response is not None and response.status == "SUBMITTED":
        raise SubmissionsClosedError("Response has already been submitted")


def get_own_response(rfp_id, user):
    """The supplier's response as a dict (an empty draft when none exists yet)."""
    contact = _contact_for_user(rfp_id, user)
    if contact.response is None:
        return {
            "id": None,
            "supplier_contact_id": contact.id,
            "rfp_id": rfp_id,
            "status": "DRAFT",
            "structured_data": {},
        }
    d = contact.response.to_dict()
    d["structured_data"] = load_structured_data(contact.response.structured_data_json)
    return d


def save_response(rfp_id, data, *, user, now=None, session=None):
    """Merge ``data["structured_data"]`` into the supplier's draft response."""
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)
    contact = _contact_for_user(rfp_id, user)
    response = contact.response
    _ensure_editable(rfp, response, as_utc(now))

    incoming = data.get("structured_data")
    if not isinstance(incoming, dict):
        raise ValidationError("structured_data must be an object", details={"structured_data": "invalid"})

    if response is None:
        response = SupplierResponse(supplier_contact_id=contact.id, rfp_id=rfp.id, status="DRAFT")
        session.add(response)
        contact.response = response

    merged = load_structured_data(response.structured_data_json)
    merged.update(incoming)
    response.structured_data_json = dump_structured_data(merged)
    if contact.invitation_status in ("PENDING", "SENT"):
        contact.invitation_status = "ACCEPTED"
    session.flush()

    log_activity(
        event_type="SUPPLIER_RESPONSE_SAVED", actor_role=actor_role_of(user), session=session,
        summary="Supplier response draft saved", rfp_id=rfp.id, user_id=user.id,
        supplier_contact_id=contact.id, supplier_response_id=response.id,
        details={"fields": sorted(incoming)},
    )
    return response


def submit_response(rfp_id, *, user, now=None, session=None):
    """Submit the supplier's response and compute its readiness."""
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)
    contact = _contact_for_user(rfp_id, user)
    response = contact.response
    _ensure_editable(rfp, response, as_utc(now))
    if response is None:
        raise ValidationError("Nothing to submit; save a draft first", details={"response": "missing"})

    response.status = "SUBMITTED"
    response.submitted_at = now
    session.flush()

    log_activity(
        event_type="SUPPLIER_RESPONSE_SUBMITTED", actor_role=actor_role_of(user), session=session,
        summary=f"Supplier {contact.email} submitted a response", rfp_id=rfp.id, user_id=user.id,
        supplier_contact_id=contact.id, supplier_response_id=response.id,
    )
    readiness = update_response_readiness(response.id, now=now, actor=user, session=session)
    invalidate_rfp_insights(rfp.id, session=session)
    logger.info("Response %d submitted for RFP %d", response.id, rfp.id, extra={"rfp_id": rfp.id})
    return response, readiness
