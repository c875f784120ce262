"""
RFP Platform
Timeline automation — company-wide sweep over active RFPs.

For every non-archived RFP of the company:
    1. run the timeline tick
    2. auto-advance one stage when the stage's milestone has passed
    3. collect buyer reminders (deadlines, SLA breach, missing submissions)

Each RFP is processed inside its own savepoint; a failure is recorded in
``errors`` and the sweep moves on.  The caller commits.
"""

import logging
import math
import time
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from rfp_platform.core.exceptions import InvalidTransitionError, RfpPlatformError
from rfp_platform.models import db
from rfp_platform.models.rfp import RFP
from rfp_platform.services.rfp_service import change_stage
from rfp_platform.services.stage_sla import get_sla_status
from rfp_platform.services.stage_transition import validate_stage_transition
from rfp_platform.services.timeline_engine import run_rfp_timeline_tick
from rfp_platform.utils.helpers import as_utc, isoformat

logger = logging.getLogger(__name__)

SUBMISSION_SOON_DAYS = 3
QA_CLOSING_HOURS = 48
NON_SUBMISSION_HOURS = 48

# stage → (milestone column, next stage, inclusive, reason label)
AUTO_ADVANCE_RULES = {
    "QUALIFICATION": ("ask_questions_start", "DISCOVERY", True, "Q&A window start date reached"),
    "DISCOVERY": ("ask_questions_end", "DRAFTING", False, "Q&A window closed"),
    "DRAFTING": ("submission_end", "PRICING_LEGAL_REVIEW", False, "Submission deadline passed"),
    "PRICING_LEGAL_REVIEW": ("demo_window_start", "EXEC_REVIEW", True, "Demo window start date reached"),
    "EXEC_REVIEW": ("demo_window_end", "SUBMISSION", False, "Demo window closed"),
}


def _days_between(a, b):
    return math.ceil(abs((b - a).total_seconds()) / 86400)


def _hours_between(a, b):
    return math.floor(abs((b - a).total_seconds()) / 3600)


def _milestone_passed(rfp, now):
    """(next_stage, reason) when the current stage's milestone has passed."""
    rule = AUTO_ADVANCE_RULES.get(rfp.stage)
    if rule is None:
        return None
    column, next_stage, inclusive, label = rule
    at = as_utc(getattr(rfp, column))
    if at is None:
        return None
    if at < now or (inclusive and at == now):
        return next_stage, f"{label} ({at.date().isoformat()})"
    return None


def _reminder(rfp, reminder_type, message, urgency, due=None, **metadata):
    entry = {
        "rfp_id": rfp.id,
        "rfp_title": rfp.title,
        "reminder_type": reminder_type,
        "message": message,
        "urgency": urgency,
        "due_date": isoformat(due),
    }
    if metadata:
        entry["metadata"] = metadata
    return entry


def buyer_reminders_for(rfp, now):
    """Buyer-facing reminders for one RFP at *now*."""
    reminders = []

    sla = get_sla_status(rfp, now)
    if sla["status"] == "breached":
        reminders.append(_reminder(
            rfp, "SLA_BREACHED",
            f"RFP in {rfp.stage} for {sla['days_in_stage']} days (SLA {sla['sla']}): {rfp.title}",
            "HIGH", days_in_stage=sla["days_in_stage"], sla=sla["sla"],
        ))

    submission_end = as_utc(rfp.submission_end)
    if submission_end and submission_end > now:
        days = _days_between(now, submission_end)
        if days <= SUBMISSION_SOON_DAYS:
            reminders.append(_reminder(
                rfp, "SUBMISSION_DEADLINE_SOON",
                f"Submission deadline in {days} days for RFP: {rfp.title}",
                "HIGH", submission_end,
            ))
        if _hours_between(now, submission_end) <= NON_SUBMISSION_HOURS:
            pending = [
                c for c in rfp.supplier_contacts
                if c.invitation_status in ("SENT", "ACCEPTED")
                and (c.response is None or c.response.status != "SUBMITTED")
            ]
            if pending:
                reminders.append(_reminder(
                    rfp, "SUPPLIER_NON_SUBMISSIONS",
                    f"{len(pending)} suppliers have not submitted for RFP: {rfp.title}",
                    "HIGH", submission_end,
                    non_submitted_count=len(pending), suppliers=[c.name for c in pending],
                ))

    qa_end = as_utc(rfp.ask_questions_end)
    if qa_end and qa_end > now:
        hours = _hours_between(now, qa_end)
        if hours <= QA_CLOSING_HOURS:
            reminders.append(_reminder(
                rfp, "QA_CLOSING_SOON",
                f"Q&A window closing in {hours} hours for RFP: {rfp.title}",
                "HIGH", qa_end,
            ))

    award = as_utc(rfp.award_date)
    if rfp.stage == "DEBRIEF" and award and award < now:
        days = _days_between(award, now)
        reminders.append(_reminder(
            rfp, "AWARD_DECISION_OVERDUE",
            f"Award decision overdue by {days} days for RFP: {rfp.title}",
            "CRITICAL", award,
        ))
    return reminders


def _auto_advance(rfp, now, dry_run, session):
    """Advance *rfp* one stage if its milestone passed.  Returns the log entry or None."""
    candidate = _milestone_passed(rfp, now)
    if candidate is None:
        return None
    next_stage, reason = candidate
    from_stage = rfp.stage

    if dry_run:
        result = validate_stage_transition(from_stage, next_stage, rfp.id, session=session)
        if not result["valid"]:
            raise InvalidTransitionError(from_stage, next_stage, result["reason"], result)
    else:
        change_stage(rfp.id, next_stage, now=now, session=session, source="automation")

    return {
        "rfp_id": rfp.id,
        "rfp_title": rfp.title,
        "from_stage": from_stage,
        "to_stage": next_stage,
        "timestamp": now.isoformat(),
        "reason": reason,
    }


def run_timeline_automation(company_id, *, now=None, dry_run=False, session=None):
    """
    Sweep every active RFP of *company_id*.

    Returns:
        {
            "auto_advanced": [...],
            "buyer_reminders": [...],
            "timeline_actions": {rfp_id: [action_id, ...]},
            "errors": [{"rfp_id", "rfp_title", "error", "message", "severity"}],
            "metadata": {"executed_at", "company_id", "total_rfps_processed",
                         "execution_time_ms", "dry_run"},
        }
    """
    session = session or db.session
    now = as_utc(now) or datetime.now(timezone.utc)
    started = time.monotonic()

    auto_advanced, reminders, errors = [], [], []
    timeline_actions = {}

    rfps = (
        RFP.query.filter_by(company_id=company_id, is_archived=False)
        .filter(RFP.stage != "ARCHIVED")
        .order_by(RFP.id)
        .all()
    )

    for rfp in rfps:
        rfp_id, rfp_title = rfp.id, rfp.title
        try:
            with session.begin_nested():
                tick = run_rfp_timeline_tick(rfp_id, dry_run=dry_run, now=now, session=session)
                if tick["actions_applied"]:
                    timeline_actions[rfp_id] = tick["actions_applied"]
                try:
                    advanced = _auto_advance(rfp, now, dry_run, session)
                except InvalidTransitionError as exc:
                    errors.append({
                        "rfp_id": rfp_id,
                        "rfp_title": rfp_title,
                        "error": "AUTO_ADVANCE_BLOCKED",
                        "message": f"Cannot auto-advance to {exc.to_stage}: {exc.reason}",
                        "severity": "WARNING",
                    })
                else:
                    if advanced:
                        auto_advanced.append(advanced)
                reminders.extend(buyer_reminders_for(rfp, now))
        except (RfpPlatformError, SQLAlchemyError) as exc:
            logger.exception("Timeline automation failed for RFP %s", rfp_id, extra={"rfp_id": rfp_id})
            errors.append({
                "rfp_id": rfp_id,
                "rfp_title": rfp_title,
                "error": "RFP_PROCESSING_FAILED",
                "message": str(exc),
                "severity": "ERROR",
            })

    elapsed_ms = round((time.monotonic() - started) * 1000, 1)
    logger.info(
        "Timeline automation for company %s: %d RFP(s), %d advanced, %d reminder(s), %d error(s)%s",
        company_id, len(rfps), len(auto_advanced), len(reminders), len(errors),
        " [dry-run]" if dry_run else "",
        extra={"company_id": company_id},
    )
    return {
        "auto_advanced": auto_advanced,
        "buyer_reminders": reminders,
        "timeline_actions": timeline_actions,
        "errors": errors,
        "metadata": {
            "executed_at": now.isoformat(),
            "company_id": company_id,
            "total_rfps_processed": len(rfps),
            "execution_time_ms": elapsed_ms,
            "dry_run": dry_run,
        },
    }
