"""
RFP Platform
Stage-entry automation and stage task templates.

Entering a stage seeds that stage's automated checklist task(s).  Seeding
is idempotent: a title already present for (rfp, stage), compared
case-insensitively after trimming, is never inserted twice.  The
``uq_stage_task_title`` constraint backs the check; a unique violation
raised by a concurrent run counts as "already present".
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from rfp_platform.models import db
from rfp_platform.models.rfp import StageTask, normalize_task_title

logger = logging.getLogger(__name__)


# Tasks created automatically when an RFP enters the stage
STAGE_AUTOMATION_TASKS = {
    "INTAKE": [],
    "QUALIFICATION": ["Prepare Qualification Briefing Notes"],
    "DISCOVERY": ["Set up Discovery Workshop"],
    "DRAFTING": ["Assemble Drafting Team"],
    "PRICING_LEGAL_REVIEW": [],
    "EXEC_REVIEW": ["Prepare Executive Review Packet"],
    "SUBMISSION": ["Verify Final Submission Checklist"],
    "DEBRIEF": [],
    "ARCHIVED": [],
}

# Baseline checklist a buyer can generate on demand for a stage
STAGE_TASK_TEMPLATES = {
    "INTAKE": [
        "Confirm RFP owner and internal sponsor",
        "Log RFP with basic metadata",
        "Attach original RFP documents",
        "Review submission deadline and key dates",
    ],
    "QUALIFICATION": [
        "Identify decision maker and economic buyer",
        "Confirm budget range and funding approval path",
        "Validate fit against solution capabilities",
        "Assess win probability and strategic value",
    ],
    "DISCOVERY": [
        "Gather detailed requirements from stakeholders",
        "Identify key risks and dependencies",
        "Map current-state vs target-state process",
        "Document client pain points and success criteria",
    ],
    "DRAFTING": [
        "Assign authors for each RFP section",
        "Draft initial responses for technical requirements",
        "Review alignment with internal standards and policies",
        "Compile supporting documentation and case studies",
    ],
    "PRICING_LEGAL_REVIEW": [
        "Prepare draft pricing and discount structure",
        "Obtain legal review of terms and conditions",
        "Align proposal with commercial policy and guardrails",
        "Finalize contract language and liability clauses",
    ],
    "EXEC_REVIEW": [
        "Schedule executive review session",
        "Incorporate feedback from leadership",
        "Confirm final go/no-go decision",
        "Secure executive sponsor approval",
    ],
    "SUBMISSION": [
        "Validate all required documents are included",
        "Confirm submission method and deadline",
        "Submit final RFP response and capture confirmation",
        "Notify stakeholders of successful submission",
    ],
    "DEBRIEF": [
        "Capture client feedback and outcome",
        "Document lessons learned and gaps",
        "Update win/loss analysis",
        "Share insights with team and archive records",
    ],
    "ARCHIVED": [
        "Ensure all final documents are stored centrally",
        "Close out internal tasks and trackers",
        "Archive communication history and artifacts",
    ],
}


def get_automation_tasks_for_stage(stage):
    return list(STAGE_AUTOMATION_TASKS.get(stage, []))


def is_automation_task(title, stage):
    """True when *title* is one of the automated tasks of *stage*."""
    key = normalize_task_title(title)
    return any(normalize_task_title(t) == key for t in STAGE_AUTOMATION_TASKS.get(stage, []))


def _existing_titles(session, rfp_id, stage):
    rows = session.execute(
        select(StageTask.normalized_title).where(
            StageTask.rfp_id == rfp_id, StageTask.stage == stage,
        )
    ).scalars().all()
    return set(rows)


def insert_missing_tasks(session, rfp_id, stage, titles, *, automated):
    """
    Insert the *titles* not yet present for (rfp_id, stage) as incomplete tasks.

    Each insert runs in its own savepoint so one unique violation does not
    undo the others.  Returns the newly created tasks.
    """
    existing = _existing_titles(session, rfp_id, stage)
    created = []
    for title in titles:
        key = normalize_task_title(title)
        if not key or key in existing:
            continue
        task = StageTask(rfp_id=rfp_id, stage=stage, title=title.strip(),
                         completed=False, is_automated=automated)
        try:
            with session.begin_nested():
                session.add(task)
        except IntegrityError:
            logger.info("Stage task %r for RFP %s/%s inserted concurrently; skipping",
                        title, rfp_id, stage)
            existing.add(key)
            continue
        existing.add(key)
        created.append(task)
    return created


def run_stage_automations(rfp_id, new_stage, session=None):
    """
    Seed the automated tasks of *new_stage* for the RFP.

    Running twice for the same (rfp, stage) leaves the same rows as
    running once.  Returns the tasks created by this call.
    """
    session = session or db.session
    titles = get_automation_tasks_for_stage(new_stage)
    if not titles:
        return []
    created = insert_missing_tasks(session, rfp_id, new_stage, titles, automated=True)
    if created:
        logger.info("Stage automation created %d task(s) for RFP %s entering %s",
                    len(created), rfp_id, new_stage, extra={"rfp_id": rfp_id})
    return created


def generate_stage_tasks(rfp_id, stage, session=None):
    """Seed the template checklist of *stage* (same dedupe rules as automation)."""
    session = session or db.session
    return insert_missing_tasks(session, rfp_id, stage, STAGE_TASK_TEMPLATES.get(stage, []), automated=False)
