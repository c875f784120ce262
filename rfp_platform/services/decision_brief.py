"""
RFP Platform
Decision brief composer — per-RFP executive snapshot of submitted responses.

The brief ranks submitted supplier responses by readiness, derives a core
recommendation (award / negotiate / rebid), aggregates supplier risk flags
and summarises the RFP's stage, SLA and upcoming milestones.  It is a
read model: nothing is decided or written except the cache entry.

Cached per RFP through ``snapshot_cache`` (kind ``decision_brief``).
"""

import logging
import math
from datetime import datetime, timezone

from rfp_platform.models import db
from rfp_platform.models.auth import User
from rfp_platform.models.rfp import RFP, STAGE_LABELS
from rfp_platform.models.supplier import SupplierResponse
from rfp_platform.services.readiness import load_structured_data, readiness_payload
from rfp_platform.services.snapshot_cache import get_or_compute
from rfp_platform.services.stage_sla import get_sla_status
from rfp_platform.services.timeline_engine import compute_timeline_state, normalize_timeline_config
from rfp_platform.utils.helpers import as_utc, get_or_raise

logger = logging.getLogger(__name__)

SNAPSHOT_KIND = "decision_brief"
SNAPSHOT_VERSION = 1

AWARD_SCORE_THRESHOLD = 70
REBID_TOP_SCORE = 50
REBID_FIELD_SCORE = 60
MAX_RISKS = 5

BRIEF_MILESTONES = (
    ("submission_end", "Submission Deadline"),
    ("demo_window_start", "Demo Window Opens"),
    ("award_date", "Award Date"),
)

NEXT_STEPS = {
    "SUBMISSION": [
        "Review all submitted supplier responses",
        "Schedule technical evaluation sessions",
        "Prepare for demo presentations if applicable",
    ],
    "EXEC_REVIEW": [
        "Present findings to executive stakeholders",
        "Obtain necessary approvals for next phase",
        "Plan negotiation strategy with top candidates",
    ],
    "DEBRIEF": [
        "Notify successful and unsuccessful suppliers",
        "Schedule contract negotiation",
        "Begin onboarding preparation",
    ],
}
DEFAULT_NEXT_STEPS = [
    "Continue monitoring RFP progress",
    "Engage with suppliers as needed",
    "Update stakeholders on timeline",
]


# ── Supplier summaries ───────────────────────────────────────────────────────


def readiness_tier(score):
    if score is None:
        return None
    if score >= 80:
        return "Ready"
    if score >= 60:
        return "Conditional"
    return "Not Ready"


def risk_flags_of(response):
    """Dict-shaped risk flags from a response's structured data."""
    flags = load_structured_data(response.structured_data_json).get("risk_flags")
    if not isinstance(flags, list):
        return []
    return [f for f in flags if isinstance(f, dict)]


def headline_risk_level(flags):
    high = sum(1 for f in flags if f.get("severity") == "HIGH")
    medium = sum(1 for f in flags if f.get("severity") == "MEDIUM")
    if high >= 2:
        return "high"
    if high == 1 or medium >= 3:
        return "medium"
    return "low"


def _compliance_score(response):
    for category in readiness_payload(response)["categories"]:
        if category.get("key") == "compliance":
            return category.get("score")
    return None


def _supplier_summary(response):
    contact = response.supplier_contact
    score = response.readiness_score
    compliance = _compliance_score(response)

    speed = None
    invited_at, submitted_at = as_utc(contact.invited_at), as_utc(response.submitted_at)
    if invited_at and submitted_at:
        speed = round((submitted_at - invited_at).total_seconds() / 86400)

    known = [s for s in (score, compliance) if s is not None]
    return {
        "supplier_contact_id": contact.id,
        "response_id": response.id,
        "supplier_name": contact.name,
        "organization": contact.organization or None,
        "readiness_score": score,
        "readiness_tier": readiness_tier(score),
        "readiness_indicator": response.readiness_indicator,
        "compliance_score": compliance,
        "submission_speed_days": speed,
        "reliability_index": round(sum(known) / len(known)) if known else None,
        "headline_risk_level": headline_risk_level(risk_flags_of(response)),
    }


def rank_submitted_responses(rfp_id, session=None):
    """Supplier summaries of submitted responses, best readiness first."""
    session = session or db.session
    responses = session.execute(
        db.select(SupplierResponse)
        .where(SupplierResponse.rfp_id == rfp_id, SupplierResponse.status == "SUBMITTED")
        .order_by(SupplierResponse.id)
    ).scalars().all()
    summaries = [_supplier_summary(r) for r in responses]
    summaries.sort(key=lambda s: (-(s["readiness_score"] or 0), s["supplier_contact_id"]))
    return summaries, responses


# ── Recommendation ───────────────────────────────────────────────────────────


def core_recommendation(summaries):
    """
    Award / negotiation / rebid recommendation from ranked summaries.

    Never decides: the buyer still awards.  ``summaries`` must be sorted
    best first (see ``rank_submitted_responses``).
    """
    if not summaries:
        return {
            "recommended_supplier_contact_id": None,
            "recommended_supplier_name": None,
            "recommendation_type": "no_recommendation",
            "confidence_score": 0,
            "rationale": ["No supplier responses have been submitted yet."],
        }

    top = summaries[0]
    score = top["readiness_score"] or 0
    good_score = score >= AWARD_SCORE_THRESHOLD
    good_readiness = top["readiness_indicator"] in ("READY", "CONDITIONAL")
    low_risk = top["headline_risk_level"] != "high"

    if good_score and good_readiness and low_risk:
        kind, confidence = "recommend_award", min(90, score)
        rationale = [
            f"{top['supplier_name']} leads with a readiness score of {score}.",
            f"Readiness tier: {top['readiness_tier']}, indicating capability to deliver.",
        ]
    elif good_score and good_readiness:
        kind, confidence = "recommend_negotiation", 65
        rationale = [
            f"{top['supplier_name']} shows strong potential but has {top['headline_risk_level']} risk level.",
            "Recommend further negotiation to address risk concerns before award.",
        ]
    elif score < REBID_TOP_SCORE or all((s["readiness_score"] or 0) < REBID_FIELD_SCORE for s in summaries):
        kind, confidence = "recommend_rebid", 40
        rationale = [
            "No suppliers meet the minimum quality threshold.",
            "Consider rebidding with revised requirements or expanded supplier pool.",
        ]
    else:
        kind, confidence = "recommend_negotiation", 55
        rationale = [
            f"{top['supplier_name']} is the leading candidate but requires additional evaluation.",
            "Readiness or risk factors require clarification before final decision.",
        ]

    return {
        "recommended_supplier_contact_id": top["supplier_contact_id"],
        "recommended_supplier_name": top["supplier_name"],
        "recommendation_type": kind,
        "confidence_score": confidence,
        "rationale": rationale,
    }


def _risk_summary(responses):
    risks, mitigations = [], []
    high_suppliers = 0
    for response in responses:
        flags = risk_flags_of(response)
        if any(f.get("severity") == "HIGH" for f in flags):
            high_suppliers += 1
        for flag in flags:
            if flag.get("severity") not in ("HIGH", "MEDIUM"):
                continue
            what = flag.get("description") or flag.get("category") or "unspecified risk"
            risks.append(f"{response.supplier_contact.name}: {what}")
            if flag.get("mitigation"):
                mitigations.append(str(flag["mitigation"]))

    if high_suppliers >= 2:
        level = "high"
    elif high_suppliers == 1 or len(risks) >= 3:
        level = "medium"
    else:
        level = "low"
    return {
        "overall_risk_level": level,
        "key_risks": risks[:MAX_RISKS],
        "mitigation_actions": list(dict.fromkeys(mitigations))[:MAX_RISKS],
    }


# ── Timeline ─────────────────────────────────────────────────────────────────


def _timeline_summary(rfp, now):
    milestones = []
    for field, label in BRIEF_MILESTONES:
        at = as_utc(getattr(rfp, field))
        if at is None:
            continue
        milestones.append({
            "label": label,
            "date": at.isoformat(),
            "days_remaining": math.ceil((at - now).total_seconds() / 86400),
        })
    milestones.sort(key=lambda m: m["days_remaining"])

    state = compute_timeline_state(rfp, normalize_timeline_config(rfp), now)
    if rfp.stage == "SUBMISSION" and not milestones:
        steps = DEFAULT_NEXT_STEPS
    else:
        steps = NEXT_STEPS.get(rfp.stage, DEFAULT_NEXT_STEPS)
    return {
        "current_stage": rfp.stage,
        "current_phase": state["current_phase"],
        "is_submissions_locked": state["is_submissions_locked"],
        "upcoming_milestones": milestones[:3],
        "suggested_next_steps": list(steps),
    }


# ── Composer ─────────────────────────────────────────────────────────────────


def build_decision_brief(rfp_id, now=None, session=None):
    """Compute the decision brief of *rfp_id* from current rows (no caching)."""
    session = session or db.session
    now = as_utc(now) or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)
    owner = session.get(User, rfp.user_id) if rfp.user_id else None

    summaries, responses = rank_submitted_responses(rfp.id, session)
    return {
        "rfp_id": rfp.id,
        "rfp_title": rfp.title,
        "rfp_owner_name": owner.full_name if owner else None,
        "rfp_budget": rfp.budget,
        "rfp_status": rfp.status,
        "rfp_stage": rfp.stage,
        "stage_label": STAGE_LABELS.get(rfp.stage, rfp.stage),
        "is_archived": rfp.is_archived,
        "sla": get_sla_status(rfp, now),
        "core_recommendation": core_recommendation(summaries),
        "supplier_summaries": summaries,
        "risk_summary": _risk_summary(responses),
        "timeline_summary": _timeline_summary(rfp, now),
        "as_of": now.isoformat(),
        "version": SNAPSHOT_VERSION,
    }


def compose_decision_brief(rfp_id, *, max_age_minutes=60, force=False, now=None, session=None):
    """
    Cached decision brief of *rfp_id*.

    Returns:
        (brief, meta); meta carries generated_at, age_seconds, from_cache.
    """
    session = session or db.session
    get_or_raise(RFP, rfp_id, session=session)
    return get_or_compute(
        rfp_id, SNAPSHOT_KIND,
        lambda: build_decision_brief(rfp_id, now=now, session=session),
        max_age_seconds=max_age_minutes * 60,
        now=now, force=force, session=session,
    )
