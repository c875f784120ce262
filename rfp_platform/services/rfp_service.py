"""
RFP Platform
RFP service — RFP lifecycle, stage changes, archive and stage tasks.

Functions here flush but never commit: the caller (route handler or
automation sweep) owns the transaction.  Every mutation of an RFP or its
children goes through ``ensure_mutable`` first.
"""

import logging
from datetime import datetime, timezone

from rfp_platform.core.exceptions import (
    ArchivedReadOnlyError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from rfp_platform.models import db
from rfp_platform.models.activity import log_activity
from rfp_platform.models.rfp import (
    MILESTONE_FIELDS,
    RFP,
    RFP_PRIORITIES,
    RFP_STAGES,
    RFP_STATUSES,
    StageTask,
    normalize_task_title,
)
from rfp_platform.services.stage_automation import (
    generate_stage_tasks,
    insert_missing_tasks,
    run_stage_automations,
)
from rfp_platform.services.stage_transition import validate_stage_transition
from rfp_platform.utils.helpers import as_utc, get_or_raise, parse_datetime

logger = logging.getLogger(__name__)


def actor_role_of(actor):
    """Activity-log actor role for a User (or None for the system)."""
    if actor is None:
        return "SYSTEM"
    return "BUYER" if actor.role == "buyer" else "SUPPLIER"


def ensure_mutable(rfp):
    """Raise ArchivedReadOnlyError when *rfp* is archived."""
    if rfp.is_archived:
        raise ArchivedReadOnlyError(rfp.id)


# ── RFP CRUD ─────────────────────────────────────────────────────────────────


def _apply_fields(rfp, data, errors):
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            errors["title"] = "title is required"
        elif len(title) > 300:
            errors["title"] = "title must be at most 300 characters"
        else:
            rfp.title = title
    if "description" in data:
        rfp.description = data.get("description") or ""
    if "status" in data:
        if data["status"] not in RFP_STATUSES:
            errors["status"] = f"must be one of {sorted(RFP_STATUSES)}"
        else:
            rfp.status = data["status"]
    if "priority" in data:
        if data["priority"] not in RFP_PRIORITIES:
            errors["priority"] = f"must be one of {sorted(RFP_PRIORITIES)}"
        else:
            rfp.priority = data["priority"]
    if "budget" in data:
        budget = data["budget"]
        if budget is None:
            rfp.budget = None
        else:
            try:
                rfp.budget = float(budget)
            except (TypeError, ValueError):
                errors["budget"] = "must be a number"
            else:
                if rfp.budget < 0:
                    errors["budget"] = "must not be negative"
    if "stage_sla_days" in data:
        sla = data["stage_sla_days"]
        if sla is None:
            rfp.stage_sla_days = None
        elif isinstance(sla, bool) or not isinstance(sla, int) or sla < 0:
            errors["stage_sla_days"] = "must be a non-negative integer"
        else:
            rfp.stage_sla_days = sla
    for field in MILESTONE_FIELDS:
        if field not in data:
            continue
        raw = data[field]
        if raw in (None, ""):
            setattr(rfp, field, None)
            continue
        parsed = parse_datetime(raw)
        if parsed is None:
            errors[field] = "must be an ISO-8601 date or datetime"
        else:
            setattr(rfp, field, parsed)


def reopen_submissions_if_extended(rfp, *, actor=None, now=None, session=None):
    """
    Lift the submission lock when the deadline no longer lies in the past.

    Called after ``submission_end`` changes.  The timeline tick re-arms
    ``lock_submissions`` for the new deadline once the lock is cleared.
    Returns True when the lock was lifted.
    """
    if rfp.submissions_locked_at is None:
        return False
    now = as_utc(now) or datetime.now(timezone.utc)
    deadline = as_utc(rfp.submission_end)
    if deadline is not None and deadline < now:
        return False

    rfp.submissions_locked_at = None
    log_activity(
        event_type="RFP_SUBMISSIONS_REOPENED", actor_role=actor_role_of(actor), session=session or db.session,
        summary="Submissions reopened after the deadline moved",
        rfp_id=rfp.id, user_id=actor.id if actor else None,
        details={"submission_end": deadline.isoformat() if deadline else None},
    )
    logger.info("Submissions reopened for RFP %d", rfp.id, extra={"rfp_id": rfp.id})
    return True


def create_rfp(data, *, actor, now=None, session=None):
    """Create an RFP in INTAKE for the actor's company."""
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required", details={"title": "required"})

    rfp = RFP(
        company_id=actor.company_id,
        user_id=actor.id,
        stage="INTAKE",
        entered_stage_at=now,
        status="draft",
        priority="MEDIUM",
    )
    errors = {}
    _apply_fields(rfp, data, errors)
    if errors:
        raise ValidationError("Invalid RFP data", details=errors)

    session.add(rfp)
    session.flush()
    log_activity(
        event_type="RFP_CREATED", actor_role=actor_role_of(actor), session=session,
        summary=f"RFP '{rfp.title}' created", rfp_id=rfp.id, user_id=actor.id,
    )
    logger.info("RFP %d created by user %d", rfp.id, actor.id, extra={"rfp_id": rfp.id})
    return rfp


def update_rfp(rfp_id, data, *, actor, now=None, session=None):
    """Update editable RFP fields.  ``stage`` is changed only via change_stage."""
    session = session or db.session
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)
    if "stage" in data:
        raise ValidationError("Use the stage endpoint to change stages", details={"stage": "read-only"})

    errors = {}
    _apply_fields(rfp, data, errors)
    if errors:
        raise ValidationError("Invalid RFP data", details=errors)

    if "submission_end" in data:
        reopen_submissions_if_extended(rfp, actor=actor, now=now, session=session)
    session.flush()
    log_activity(
        event_type="RFP_UPDATED", actor_role=actor_role_of(actor), session=session,
        summary=f"RFP '{rfp.title}' updated", rfp_id=rfp.id, user_id=actor.id,
        details={"fields": sorted(k for k in data if k != "version")},
    )
    return rfp


# ── Stage changes ────────────────────────────────────────────────────────────


def change_stage(rfp_id, new_stage, *, actor=None, now=None, session=None, source="manual"):
    """
    Move the RFP to *new_stage*.

    Raises:
        ArchivedReadOnlyError: the RFP is archived.
        InvalidTransitionError: the move is not allowed (reason attached).

    Returns:
        {"rfp": RFP, "transition": dict, "automated_tasks": [StageTask, ...]}
    """
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)

    result = validate_stage_transition(rfp.stage, new_stage, rfp.id, session=session)
    if not result["valid"]:
        raise InvalidTransitionError(rfp.stage, new_stage, result["reason"], result)

    old_stage = rfp.stage
    rfp.stage = new_stage
    rfp.entered_stage_at = now
    rfp.stage_sla_days = None
    if new_stage == "ARCHIVED":
        rfp.is_archived = True
        rfp.archived_at = now
        rfp.archived_by_id = actor.id if actor is not None else None
    session.flush()

    created = run_stage_automations(rfp.id, new_stage, session=session)

    log_activity(
        event_type="RFP_STAGE_CHANGED" if source == "manual" else "RFP_AUTO_ADVANCED",
        actor_role=actor_role_of(actor), session=session,
        summary=f"Stage changed from {old_stage} to {new_stage}",
        rfp_id=rfp.id, user_id=actor.id if actor is not None else None,
        details={
            "from": old_stage,
            "to": new_stage,
            "warning": result["warning"],
            "source": source,
            "automated_tasks": [t.title for t in created],
        },
    )
    logger.info("RFP %d stage %s → %s (%s)", rfp.id, old_stage, new_stage, source,
                extra={"rfp_id": rfp.id})
    return {"rfp": rfp, "transition": result, "automated_tasks": created}


def archive_rfp(rfp_id, *, actor, now=None, session=None):
    """Mark the RFP archived (read-only from now on)."""
    session = session or db.session
    now = now or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)

    rfp.is_archived = True
    rfp.archived_at = now
    rfp.archived_by_id = actor.id
    session.flush()
    log_activity(
        event_type="RFP_ARCHIVED", actor_role=actor_role_of(actor), session=session,
        summary=f"RFP '{rfp.title}' archived", rfp_id=rfp.id, user_id=actor.id,
        details={"stage": rfp.stage},
    )
    return rfp


# ── Stage tasks ──────────────────────────────────────────────────────────────


def list_tasks(rfp_id, stage=None, session=None):
    session = session or db.session
    q = StageTask.query.filter_by(rfp_id=rfp_id)
    if stage:
        q = q.filter_by(stage=stage)
    return q.order_by(StageTask.id).all()


def create_task(rfp_id, data, *, actor, session=None):
    """Add a manual task to a stage of the RFP (defaults to the current stage)."""
    session = session or db.session
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    stage = data.get("stage") or rfp.stage
    if stage not in RFP_STAGES:
        raise ValidationError(f"Unknown stage: {stage!r}", details={"stage": "invalid"})

    created = insert_missing_tasks(session, rfp.id, stage, [title], automated=False)
    if not created:
        raise ConflictError("StageTask", "title", title)
    task = created[0]
    log_activity(
        event_type="STAGE_TASK_CREATED", actor_role=actor_role_of(actor), session=session,
        summary=f"Task '{title}' added to {stage}", rfp_id=rfp.id, user_id=actor.id,
    )
    return task


def generate_tasks(rfp_id, stage=None, *, actor, session=None):
    """Seed the template checklist for *stage* (defaults to the current stage)."""
    session = session or db.session
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)
    stage = stage or rfp.stage
    if stage not in RFP_STAGES:
        raise ValidationError(f"Unknown stage: {stage!r}", details={"stage": "invalid"})

    created = generate_stage_tasks(rfp.id, stage, session=session)
    if created:
        log_activity(
            event_type="STAGE_TASKS_GENERATED", actor_role=actor_role_of(actor), session=session,
            summary=f"{len(created)} template task(s) added to {stage}",
            rfp_id=rfp.id, user_id=actor.id,
        )
    return created


def update_task(task_id, data, *, actor, now=None, session=None):
    """
    Toggle completion and/or rename a task.  Rejected on archived RFPs.

    Raises:
        ConflictError: the new title matches another task of the same stage.
    """
    session = session or db.session
    task = session.get(StageTask, task_id)
    if task is None:
        raise NotFoundError(resource="StageTask", resource_id=task_id)
    ensure_mutable(task.rfp)

    errors = {}
    if "completed" in data and not isinstance(data["completed"], bool):
        errors["completed"] = "must be a boolean"
    title = None
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            errors["title"] = "title is required"
    if errors:
        raise ValidationError("Invalid task data", details=errors)

    if title is not None:
        clash = session.execute(
            db.select(StageTask.id).where(
                StageTask.rfp_id == task.rfp_id,
                StageTask.stage == task.stage,
                StageTask.normalized_title == normalize_task_title(title),
                StageTask.id != task.id,
            )
        ).first()
        if clash is not None:
            raise ConflictError("StageTask", "title", title)
        task.title = title
    if "completed" in data:
        task.set_completed(data["completed"], now=now)

    session.flush()
    log_activity(
        event_type="STAGE_TASK_UPDATED", actor_role=actor_role_of(actor), session=session,
        summary=f"Task '{task.title}' {'completed' if task.completed else 'updated'}",
        rfp_id=task.rfp_id, user_id=actor.id,
        details={"task_id": task.id, "completed": task.completed},
    )
    return task
