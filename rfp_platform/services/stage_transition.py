"""
RFP Platform
Stage transition validation.

``validate_stage_transition`` is total: every (current, requested) pair,
including unknown stage names, yields a result dict and never raises for
a disallowed move.

    {
        "valid": bool,
        "from": str,
        "to": str,
        "reason": str | None,        # why the move is rejected
        "warning": str | None,       # allowed, but worth confirming (rework)
        "required_tasks_incomplete": [str, ...],
    }

Guards run only on forward moves.  Each guard returns None when satisfied
or a reason string.
"""

import logging

from sqlalchemy import select

from rfp_platform.models import db
from rfp_platform.models.rfp import RFP, RFP_STAGES, STAGE_LABELS, STAGE_TRANSITIONS, StageTask, stage_index

logger = logging.getLogger(__name__)


def _result(current, requested, *, valid, reason=None, warning=None, incomplete=None):
    return {
        "valid": valid,
        "from": current,
        "to": requested,
        "reason": reason,
        "warning": warning,
        "required_tasks_incomplete": incomplete or [],
    }


def _label(stage):
    return STAGE_LABELS.get(stage, stage)


def is_forward_move(current, requested):
    return stage_index(requested) > stage_index(current)


# ── Guards ───────────────────────────────────────────────────────────────────


def incomplete_stage_tasks(session, rfp_id, stage):
    """Titles of the stage's tasks that are not completed yet, oldest first."""
    if rfp_id is None:
        return []
    rows = session.execute(
        select(StageTask.title)
        .where(
            StageTask.rfp_id == rfp_id,
            StageTask.stage == stage,
            StageTask.completed.is_(False),
        )
        .order_by(StageTask.id)
    ).scalars().all()
    return list(rows)


def guard_stage_tasks_complete(rfp, current, requested, session):
    """All tasks of the current stage must be completed before moving forward."""
    pending = incomplete_stage_tasks(session, rfp.id if rfp is not None else None, current)
    if pending:
        return f"{len(pending)} task(s) in {_label(current)} must be completed first"
    return None


def guard_submission_window_configured(rfp, current, requested, session):
    """SUBMISSION needs a submission deadline on the RFP."""
    if requested != "SUBMISSION" or rfp is None:
        return None
    if rfp.submission_end is None:
        return "Submission deadline must be configured before entering Submission"
    return None


FORWARD_GUARDS = (
    guard_stage_tasks_complete,
    guard_submission_window_configured,
)


# ── Validation ───────────────────────────────────────────────────────────────


def validate_stage_transition(current_stage, requested_stage, rfp_id=None, session=None):
    """Decide whether *rfp_id* may move from *current_stage* to *requested_stage*."""
    session = session or db.session

    if not isinstance(current_stage, str) or current_stage not in RFP_STAGES:
        return _result(current_stage, requested_stage, valid=False,
                       reason=f"Unknown current stage: {current_stage!r}")
    if not isinstance(requested_stage, str) or requested_stage not in RFP_STAGES:
        return _result(current_stage, requested_stage, valid=False,
                       reason=f"Unknown stage: {requested_stage!r}")
    if requested_stage == current_stage:
        return _result(current_stage, requested_stage, valid=False,
                       reason=f"RFP is already in {_label(current_stage)}")

    allowed = STAGE_TRANSITIONS.get(current_stage, [])
    if requested_stage not in allowed:
        if not allowed:
            reason = f"{_label(current_stage)} is a terminal stage"
        else:
            reason = (
                f"Cannot move from {_label(current_stage)} to {_label(requested_stage)}; "
                f"allowed: {', '.join(_label(s) for s in allowed)}"
            )
        return _result(current_stage, requested_stage, valid=False, reason=reason)

    if not is_forward_move(current_stage, requested_stage):
        return _result(
            current_stage, requested_stage, valid=True,
            warning=(
                f"Moving back from {_label(current_stage)} to {_label(requested_stage)} "
                "reopens earlier work"
            ),
        )

    rfp = session.get(RFP, rfp_id) if rfp_id is not None else None
    incomplete = incomplete_stage_tasks(session, rfp_id, current_stage)
    for guard in FORWARD_GUARDS:
        reason = guard(rfp, current_stage, requested_stage, session)
        if reason:
            logger.debug("Transition %s → %s blocked for RFP %s: %s",
                         current_stage, requested_stage, rfp_id, reason)
            return _result(current_stage, requested_stage, valid=False,
                           reason=reason, incomplete=incomplete)

    return _result(current_stage, requested_stage, valid=True)


def allowed_next_stages(current_stage):
    return list(STAGE_TRANSITIONS.get(current_stage, []))
