"""
RFP Platform
Opportunity scoring — internal qualification score of an RFP.

Eight dimensions scored 0-100 with a rationale each.  The weighted score
clamps every dimension to 0-100 and inverts ``risk_score`` (higher risk
lowers the opportunity).
"""

import logging

from rfp_platform.core.exceptions import ValidationError
from rfp_platform.models import db
from rfp_platform.models.activity import log_activity
from rfp_platform.models.rfp import RFP
from rfp_platform.services.rfp_service import actor_role_of, ensure_mutable
from rfp_platform.utils.helpers import get_or_raise
from rfp_platform.utils.json_records import dump_record, load_record, strip_version

logger = logging.getLogger(__name__)

OPPORTUNITY_BREAKDOWN_VERSION = 1

WEIGHTS = {
    "strategic_fit": 0.15,
    "solution_fit": 0.15,
    "competitive_advantage": 0.15,
    "budget_alignment": 0.10,
    "timeline_feasibility": 0.10,
    "win_probability": 0.20,
    "internal_readiness": 0.10,
    "risk_score": 0.05,
}
DIMENSIONS = tuple(WEIGHTS)

DIMENSION_LABELS = {
    "strategic_fit": "Strategic Fit",
    "solution_fit": "Solution Fit",
    "competitive_advantage": "Competitive Advantage",
    "budget_alignment": "Budget Alignment",
    "timeline_feasibility": "Timeline Feasibility",
    "win_probability": "Win Probability",
    "internal_readiness": "Internal Readiness",
    "risk_score": "Risk Score",
}

INVERTED_DIMENSIONS = {"risk_score"}

_CAMEL_DIMENSIONS = {
    "strategicFit": "strategic_fit",
    "solutionFit": "solution_fit",
    "competitiveAdvantage": "competitive_advantage",
    "budgetAlignment": "budget_alignment",
    "timelineFeasibility": "timeline_feasibility",
    "winProbability": "win_probability",
    "internalReadiness": "internal_readiness",
    "riskScore": "risk_score",
    "overallComment": "overall_comment",
}


def _upgrade_breakdown_v0(record):
    return {_CAMEL_DIMENSIONS.get(k, k): v for k, v in record.items()}


_BREAKDOWN_UPGRADERS = {0: _upgrade_breakdown_v0}


def load_breakdown(raw):
    if not raw:
        return None
    return strip_version(load_record(
        raw, current_version=OPPORTUNITY_BREAKDOWN_VERSION, upgraders=_BREAKDOWN_UPGRADERS,
    ))


def _clamp(value, low=0, high=100):
    return max(low, min(high, value))


def breakdown_errors(breakdown):
    """Field errors of *breakdown*; empty when every dimension is well formed."""
    if not isinstance(breakdown, dict):
        return {"breakdown": "must be an object"}
    errors = {}
    for dim in DIMENSIONS:
        entry = breakdown.get(dim)
        if not isinstance(entry, dict):
            errors[dim] = "required"
            continue
        score = entry.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            errors[f"{dim}.score"] = "must be a number"
        if not isinstance(entry.get("rationale"), str):
            errors[f"{dim}.rationale"] = "must be a string"
    return errors


def validate_breakdown(breakdown):
    """True when all eight dimensions carry a numeric score and a rationale."""
    return not breakdown_errors(breakdown)


def calculate_weighted_opportunity_score(breakdown):
    """Weighted 0-100 score, rounded to the nearest integer."""
    total = 0.0
    for dim in DIMENSIONS:
        score = _clamp(breakdown[dim]["score"])
        if dim in INVERTED_DIMENSIONS:
            score = 100 - score
        total += score * WEIGHTS[dim]
    return int(round(total))


def get_opportunity_rating(score):
    if score >= 80:
        return {"rating": "high", "label": "High Opportunity"}
    if score >= 50:
        return {"rating": "medium", "label": "Medium Opportunity"}
    return {"rating": "low", "label": "Low Opportunity"}


def opportunity_payload(rfp):
    breakdown = load_breakdown(rfp.opportunity_breakdown_json)
    score = rfp.opportunity_score
    return {
        "rfp_id": rfp.id,
        "score": score,
        "rating": get_opportunity_rating(score) if score is not None else None,
        "breakdown": breakdown,
        "weights": WEIGHTS,
        "labels": DIMENSION_LABELS,
    }


def score_rfp_opportunity(rfp_id, breakdown, *, actor=None, session=None):
    """
    Validate *breakdown*, compute the weighted score and persist both.

    Raises:
        ValidationError: malformed breakdown.
        ArchivedReadOnlyError: the RFP is archived.
    """
    session = session or db.session
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)

    errors = breakdown_errors(breakdown)
    if errors:
        raise ValidationError("Invalid opportunity breakdown", details=errors)

    stored = {dim: {"score": breakdown[dim]["score"], "rationale": breakdown[dim]["rationale"]}
              for dim in DIMENSIONS}
    if isinstance(breakdown.get("overall_comment"), str):
        stored["overall_comment"] = breakdown["overall_comment"]

    score = calculate_weighted_opportunity_score(stored)
    rfp.opportunity_score = score
    rfp.opportunity_breakdown_json = dump_record(stored, OPPORTUNITY_BREAKDOWN_VERSION)
    session.flush()

    log_activity(
        event_type="RFP_OPPORTUNITY_SCORED", actor_role=actor_role_of(actor), session=session,
        summary=f"Opportunity scored {score}", rfp_id=rfp.id,
        user_id=actor.id if actor is not None else None,
        details={"score": score, "rating": get_opportunity_rating(score)["rating"]},
    )
    return opportunity_payload(rfp)
