"""
RFP Platform
Supplier outcome composer — per-supplier outcome board of one RFP.

Every invited contact appears once with an outcome:

    declined          the contact declined the invitation
    pending           no submitted response yet
    recommended       top-ranked response of a brief recommending award
    shortlisted       submitted and classified READY or CONDITIONAL
    not_shortlisted   submitted but NOT_READY (or not yet classified)

Strengths and weaknesses come from the stored readiness categories.
Cached per RFP through ``snapshot_cache`` (kind ``supplier_outcomes``).
"""

import logging
from datetime import datetime, timezone

from rfp_platform.models import db
from rfp_platform.models.rfp import RFP
from rfp_platform.models.supplier import SupplierContact
from rfp_platform.services import decision_brief
from rfp_platform.services.readiness import readiness_payload
from rfp_platform.services.snapshot_cache import get_or_compute, invalidate
from rfp_platform.utils.helpers import as_utc, get_or_raise

logger = logging.getLogger(__name__)

SNAPSHOT_KIND = "supplier_outcomes"
SNAPSHOT_VERSION = 1

STRENGTH_THRESHOLD = 80
WEAKNESS_THRESHOLD = 60
MAX_POINTS = 6


def strengths_and_weaknesses(categories):
    strengths = [
        f"Strong {c['category']}: {c['score']}%" for c in categories if c["score"] >= STRENGTH_THRESHOLD
    ]
    weaknesses = [
        f"Weak {c['category']}: {c['score']}%" for c in categories if c["score"] <= WEAKNESS_THRESHOLD
    ]
    return strengths[:MAX_POINTS], weaknesses[:MAX_POINTS]


def _outcome(contact, response, recommended_id):
    if contact.invitation_status == "DECLINED":
        return "declined"
    if response is None or response.status != "SUBMITTED":
        return "pending"
    if contact.id == recommended_id:
        return "recommended"
    if response.readiness_indicator in ("READY", "CONDITIONAL"):
        return "shortlisted"
    return "not_shortlisted"


def build_supplier_outcomes(rfp_id, now=None, session=None):
    """Compute the supplier outcome board of *rfp_id* (no caching)."""
    session = session or db.session
    now = as_utc(now) or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)

    ranked, _ = decision_brief.rank_submitted_responses(rfp.id, session)
    recommendation = decision_brief.core_recommendation(ranked)
    recommended_id = None
    if recommendation["recommendation_type"] == "recommend_award":
        recommended_id = recommendation["recommended_supplier_contact_id"]

    contacts = session.execute(
        db.select(SupplierContact).where(SupplierContact.rfp_id == rfp.id).order_by(SupplierContact.id)
    ).scalars().all()

    suppliers = []
    for contact in contacts:
        response = contact.response
        submitted = response is not None and response.status == "SUBMITTED"
        categories = readiness_payload(response)["categories"] if submitted else []
        strengths, weaknesses = strengths_and_weaknesses(categories)
        compliance = next((c["score"] for c in categories if c["key"] == "compliance"), None)
        suppliers.append({
            "supplier_contact_id": contact.id,
            "supplier_name": contact.name or contact.organization or "Unknown Supplier",
            "contact_email": contact.email,
            "invitation_status": contact.invitation_status,
            "response_status": response.status if response is not None else None,
            "outcome": _outcome(contact, response, recommended_id),
            "overall_score": response.readiness_score if submitted else None,
            "compliance_score": compliance,
            "strengths": strengths,
            "weaknesses": weaknesses,
        })

    scores = [s["overall_score"] for s in suppliers if s["overall_score"] is not None]
    winner = next((s for s in suppliers if s["outcome"] == "recommended"), None)
    return {
        "rfp_id": rfp.id,
        "rfp_title": rfp.title,
        "as_of": now.isoformat(),
        "version": SNAPSHOT_VERSION,
        "suppliers": suppliers,
        "high_level": {
            "total_suppliers": len(suppliers),
            "total_submitted": sum(1 for s in suppliers if s["response_status"] == "SUBMITTED"),
            "total_shortlisted": sum(1 for s in suppliers if s["outcome"] in ("shortlisted", "recommended")),
            "total_declined": sum(1 for s in suppliers if s["outcome"] == "declined"),
            "total_recommended": 1 if winner else 0,
            "winner_name": winner["supplier_name"] if winner else None,
            "average_score": round(sum(scores) / len(scores)) if scores else None,
        },
    }


def compose_supplier_outcomes(rfp_id, *, max_age_minutes=60, force=False, now=None, session=None):
    """Cached supplier outcome board of *rfp_id*; returns (board, meta)."""
    session = session or db.session
    get_or_raise(RFP, rfp_id, session=session)
    return get_or_compute(
        rfp_id, SNAPSHOT_KIND,
        lambda: build_supplier_outcomes(rfp_id, now=now, session=session),
        max_age_seconds=max_age_minutes * 60,
        now=now, force=force, session=session,
    )


def invalidate_rfp_insights(rfp_id, session=None):
    """Drop the cached decision brief and outcome board of *rfp_id*."""
    invalidate(rfp_id, decision_brief.SNAPSHOT_KIND, session=session)
    invalidate(rfp_id, SNAPSHOT_KIND, session=session)
