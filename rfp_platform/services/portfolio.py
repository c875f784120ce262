"""
RFP Platform
Portfolio composer — company-wide read model of all RFPs.

The snapshot is cached per company through ``snapshot_cache`` and
regenerated once older than ``max_age_minutes``.
"""

import logging
from datetime import datetime, timedelta, timezone

from rfp_platform.models import db
from rfp_platform.models.rfp import MILESTONE_FIELDS, RFP, STAGE_LABELS, STAGE_ORDER
from rfp_platform.models.supplier import SupplierResponse
from rfp_platform.services.snapshot_cache import get_or_compute
from rfp_platform.services.stage_sla import get_sla_status
from rfp_platform.utils.helpers import as_utc

logger = logging.getLogger(__name__)

SNAPSHOT_KIND = "portfolio_overview"
SNAPSHOT_VERSION = 1
UPCOMING_WINDOW_DAYS = 30

MILESTONE_LABELS = {
    "ask_questions_start": "Q&A opens",
    "ask_questions_end": "Q&A closes",
    "submission_start": "Submissions open",
    "submission_end": "Submission deadline",
    "demo_window_start": "Demo window opens",
    "demo_window_end": "Demo window closes",
    "award_date": "Award target",
}


def readiness_band(score):
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "moderate"
    return "low"


def _readiness_distribution(responses):
    counts = {"excellent": 0, "good": 0, "moderate": 0, "low": 0}
    for resp in responses:
        counts[readiness_band(resp.readiness_score)] += 1
    scores = [r.readiness_score for r in responses]
    return {
        "excellent_count": counts["excellent"],
        "good_count": counts["good"],
        "moderate_count": counts["moderate"],
        "low_count": counts["low"],
        "average_readiness": round(sum(scores) / len(scores), 1) if scores else None,
        "sample_rfp_ids": sorted({r.rfp_id for r in responses})[:5],
    }


def _upcoming_milestones(rfps, now):
    horizon = now + timedelta(days=UPCOMING_WINDOW_DAYS)
    items = []
    for rfp in rfps:
        for field in MILESTONE_FIELDS:
            at = as_utc(getattr(rfp, field))
            if at and now <= at <= horizon:
                items.append({
                    "rfp_id": rfp.id,
                    "rfp_title": rfp.title,
                    "milestone": field,
                    "label": MILESTONE_LABELS.get(field, field),
                    "date": at.isoformat(),
                    "days_until": (at - now).days,
                })
    items.sort(key=lambda m: (m["date"], m["rfp_id"]))
    return items


def build_portfolio_snapshot(company_id, now=None, session=None):
    """Compute the portfolio snapshot from current rows (no caching)."""
    session = session or db.session
    now = as_utc(now) or datetime.now(timezone.utc)

    rfps = RFP.query.filter_by(company_id=company_id).order_by(RFP.id).all()
    active = [r for r in rfps if not r.is_archived]

    sla_counts = {"ok": 0, "warning": 0, "breached": 0}
    breached = []
    for rfp in active:
        sla = get_sla_status(rfp, now)
        sla_counts[sla["status"]] += 1
        if sla["status"] == "breached":
            breached.append({
                "rfp_id": rfp.id,
                "rfp_title": rfp.title,
                "stage": rfp.stage,
                "days_in_stage": sla["days_in_stage"],
                "sla": sla["sla"],
            })

    stage_counts = {s: 0 for s in STAGE_ORDER}
    for rfp in rfps:
        stage_counts[rfp.stage] = stage_counts.get(rfp.stage, 0) + 1

    responses = (
        SupplierResponse.query
        .join(RFP, RFP.id == SupplierResponse.rfp_id)
        .filter(RFP.company_id == company_id, SupplierResponse.readiness_score.isnot(None))
        .all()
    )
    readiness = _readiness_distribution(responses)

    budgets = [r.budget for r in rfps if r.budget is not None]
    in_flight = [r.budget for r in active if r.budget is not None]

    return {
        "company_id": company_id,
        "as_of": now.isoformat(),
        "version": SNAPSHOT_VERSION,
        "kpis": {
            "total_rfps": len(rfps),
            "active_rfps": len(active),
            "archived_rfps": len(rfps) - len(active),
            "average_readiness": readiness["average_readiness"],
            "sla_breach_count": sla_counts["breached"],
        },
        "stages": [
            {"stage": s, "label": STAGE_LABELS[s], "count": stage_counts[s]} for s in STAGE_ORDER
        ],
        "sla_summary": {**sla_counts, "breached_rfps": breached},
        "readiness_distribution": readiness,
        "upcoming_milestones": _upcoming_milestones(active, now),
        "spend_summary": {
            "total_budget_all_rfps": round(sum(budgets), 2),
            "in_flight_budget": round(sum(in_flight), 2),
            "in_flight_count": len(active),
        },
    }


def compose_portfolio_snapshot(company_id, *, max_age_minutes=60, force=False, now=None, session=None):
    """
    Cached portfolio snapshot of *company_id*.

    Returns:
        (snapshot, meta); meta carries generated_at, age_seconds, from_cache.
    """
    session = session or db.session
    return get_or_compute(
        company_id, SNAPSHOT_KIND,
        lambda: build_portfolio_snapshot(company_id, now=now, session=session),
        max_age_seconds=max_age_minutes * 60,
        now=now, force=force, session=session,
    )
