"""
RFP Platform
Timeline Engine — Q&A windows, submission deadline, demo window, award target.

Steps of a tick (``run_rfp_timeline_tick``):
    1. Load the RFP and normalise its timeline config
    2. Compute the timeline state snapshot at ``now``
    3. Derive the due actions: trigger <= now, enabled by config, not yet
       recorded as an RfpTimelineEvent, in chronological order
    4. Unless dry-run: apply action effects, persist the snapshot and
       record one RfpTimelineEvent per action

Steps 1-3 are identical in dry-run and real mode; dry-run only skips step 4.
Bad timestamps never raise: they degrade the snapshot and are listed in
``snapshot["issues"]``.  Inconsistent windows (close before open) are
reported there too and their actions are suppressed, never auto-corrected.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select

from rfp_platform.core.exceptions import ArchivedReadOnlyError, ValidationError
from rfp_platform.models import db
from rfp_platform.models.activity import log_activity
from rfp_platform.models.rfp import MILESTONE_FIELDS, RFP
from rfp_platform.models.timeline import RfpTimelineEvent
from rfp_platform.services.notification import NotificationService
from rfp_platform.services.rfp_service import actor_role_of, ensure_mutable, reopen_submissions_if_extended
from rfp_platform.utils.helpers import as_utc, get_or_raise, isoformat, parse_datetime
from rfp_platform.utils.json_records import dump_record, load_record

logger = logging.getLogger(__name__)

TIMELINE_CONFIG_VERSION = 1
TIMELINE_SNAPSHOT_VERSION = 1
DEFAULT_TIMEZONE = "America/New_York"

KEY_DATES = (
    "invitation_sent_at",
    "qa_open_at",
    "qa_close_at",
    "submission_deadline_at",
    "evaluation_start_at",
    "demo_window_start_at",
    "demo_window_end_at",
    "award_target_at",
)

# key date → RFP column it defaults from
_KEY_DATE_COLUMNS = {
    "qa_open_at": "ask_questions_start",
    "qa_close_at": "ask_questions_end",
    "submission_deadline_at": "submission_end",
    "evaluation_start_at": "submission_end",
    "demo_window_start_at": "demo_window_start",
    "demo_window_end_at": "demo_window_end",
    "award_target_at": "award_date",
}

AUTOMATION_FLAGS = (
    "enable_qa_window_auto_toggle",
    "enable_submission_auto_lock",
    "enable_demo_auto_window",
    "enable_award_target_reminder",
)
REMINDER_RULES = ("submission_reminder_days_before", "demo_reminder_days_before")

# Fixed order; also the tie-break for actions sharing a trigger time
TIMELINE_ACTIONS = (
    "open_q_and_a",
    "close_q_and_a",
    "send_submission_reminder",
    "lock_submissions",
    "send_demo_reminder",
    "open_demo_window",
    "close_demo_window",
    "award_target_reached",
)

ACTION_LABELS = {
    "open_q_and_a": ("Q&A Opens", "Question and answer window opens for suppliers"),
    "close_q_and_a": ("Q&A Closes", "Question and answer window closes"),
    "send_submission_reminder": ("Submission Reminder", "Suppliers are reminded of the submission deadline"),
    "lock_submissions": ("Submission Deadline", "Supplier responses are locked after this date"),
    "send_demo_reminder": ("Demo Reminder", "Suppliers are reminded of the upcoming demo window"),
    "open_demo_window": ("Demo Window Opens", "Demonstration window begins"),
    "close_demo_window": ("Demo Window Closes", "Demonstration window ends"),
    "award_target_reached": ("Award Target", "Target date for award decision"),
}

PHASES = (
    ("planning", "Planning"),
    ("invitation", "Invitation"),
    ("q_and_a", "Q&A"),
    ("submission", "Submission"),
    ("evaluation", "Evaluation"),
    ("demo", "Demo"),
    ("award", "Award"),
)


# ═════════════════════════════════════════════════════════════════════════════
# Config
# ═════════════════════════════════════════════════════════════════════════════

_CAMEL_KEYS = {
    "invitationSentAt": "invitation_sent_at",
    "qaOpenAt": "qa_open_at",
    "qaCloseAt": "qa_close_at",
    "submissionDeadlineAt": "submission_deadline_at",
    "evaluationStartAt": "evaluation_start_at",
    "demoWindowStartAt": "demo_window_start_at",
    "demoWindowEndAt": "demo_window_end_at",
    "awardTargetAt": "award_target_at",
    "enableQaWindowAutoToggle": "enable_qa_window_auto_toggle",
    "enableSubmissionAutoLock": "enable_submission_auto_lock",
    "enableDemoAutoWindow": "enable_demo_auto_window",
    "enableAwardTargetReminder": "enable_award_target_reminder",
    "submissionReminderDaysBefore": "submission_reminder_days_before",
    "demoReminderDaysBefore": "demo_reminder_days_before",
}


def _snake_keys(d):
    return {_CAMEL_KEYS.get(k, k): v for k, v in (d or {}).items()}


def _upgrade_config_v0(record):
    """Untagged records used camelCase keys (keyDates / reminderRules)."""
    automation = dict(record.get("automation") or {})
    rules = automation.pop("reminderRules", None) or automation.pop("reminder_rules", None) or {}
    upgraded = {
        "timezone": record.get("timezone"),
        "key_dates": _snake_keys(record.get("keyDates") or record.get("key_dates")),
        "automation": _snake_keys(automation),
    }
    upgraded["automation"]["reminder_rules"] = _snake_keys(rules)
    return upgraded


_CONFIG_UPGRADERS = {0: _upgrade_config_v0}


def _stored_config(rfp):
    return load_record(
        rfp.timeline_config_json,
        current_version=TIMELINE_CONFIG_VERSION,
        upgraders=_CONFIG_UPGRADERS,
    )


def _positive_days(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return value


def normalize_timeline_config(rfp):
    """
    Fully populated timeline config for *rfp*.

    Stored key dates win over the RFP milestone columns.  Key dates are ISO
    strings (or whatever unparseable text was stored; the state computation
    reports those).
    """
    stored = _stored_config(rfp)
    stored_dates = stored.get("key_dates") or {}
    stored_automation = stored.get("automation") or {}
    stored_rules = stored_automation.get("reminder_rules") or {}

    key_dates = {}
    for key in KEY_DATES:
        value = stored_dates.get(key)
        if not value:
            if key == "invitation_sent_at":
                value = isoformat(rfp.created_at)
            else:
                value = isoformat(getattr(rfp, _KEY_DATE_COLUMNS[key]))
        key_dates[key] = value

    automation = {flag: bool(stored_automation.get(flag, False)) for flag in AUTOMATION_FLAGS}
    automation["reminder_rules"] = {rule: _positive_days(stored_rules.get(rule)) for rule in REMINDER_RULES}

    return {
        "version": TIMELINE_CONFIG_VERSION,
        "timezone": stored.get("timezone") or DEFAULT_TIMEZONE,
        "key_dates": key_dates,
        "automation": automation,
    }


# ═════════════════════════════════════════════════════════════════════════════
# State
# ═════════════════════════════════════════════════════════════════════════════


def _parse_key_dates(config, issues):
    parsed = {}
    for key in KEY_DATES:
        raw = (config.get("key_dates") or {}).get(key)
        value = parse_datetime(raw)
        if raw and value is None:
            issues.append({"code": "unparseable_date", "field": key, "value": str(raw)[:80]})
        parsed[key] = value
    return parsed


def _window_issues(d, issues):
    """Append window-order issues; return the set of suppressed windows."""
    inverted = set()
    checks = (
        ("qa", "qa_open_at", "qa_close_at", "qa_window_inverted"),
        ("demo", "demo_window_start_at", "demo_window_end_at", "demo_window_inverted"),
    )
    for window, start_key, end_key, code in checks:
        start, end = d[start_key], d[end_key]
        if start and end and end < start:
            inverted.add(window)
            issues.append({
                "code": code,
                "field": end_key,
                "message": f"{end_key} ({end.isoformat()}) is before {start_key} ({start.isoformat()})",
            })
    if d["qa_close_at"] and d["submission_deadline_at"] and d["submission_deadline_at"] < d["qa_close_at"]:
        issues.append({
            "code": "submission_before_qa_close",
            "field": "submission_deadline_at",
            "message": "Submission deadline is before the Q&A window closes",
        })
    return inverted


def _between(now, start, end):
    return bool(start and end and start <= now <= end)


def _current_phase(d, now):
    invited, qa_open, qa_close = d["invitation_sent_at"], d["qa_open_at"], d["qa_close_at"]
    deadline = d["submission_deadline_at"]
    demo_start, demo_end = d["demo_window_start_at"], d["demo_window_end_at"]

    if not invited or now < invited:
        return "planning"
    if _between(now, qa_open, qa_close):
        return "q_and_a"
    if deadline and now < deadline:
        if (qa_close and now > qa_close) or not qa_open:
            return "submission"
        return "invitation"
    if _between(now, demo_start, demo_end):
        return "demo"
    if deadline and now > deadline:
        if demo_start and now < demo_start:
            return "evaluation"
        if demo_end and now > demo_end:
            return "award"
        if not demo_start:
            return "evaluation"
    return "award"


def _phase_bounds(d):
    return {
        "planning": (None, d["invitation_sent_at"]),
        "invitation": (d["invitation_sent_at"], d["qa_open_at"] or d["submission_deadline_at"]),
        "q_and_a": (d["qa_open_at"], d["qa_close_at"]),
        "submission": (d["qa_close_at"] or d["invitation_sent_at"], d["submission_deadline_at"]),
        "evaluation": (d["evaluation_start_at"] or d["submission_deadline_at"],
                       d["demo_window_start_at"] or d["award_target_at"]),
        "demo": (d["demo_window_start_at"], d["demo_window_end_at"]),
        "award": (d["demo_window_end_at"] or d["award_target_at"], None),
    }


def _action_triggers(config, d):
    """Trigger time per enabled action (None when not configured)."""
    automation = config.get("automation") or {}
    rules = automation.get("reminder_rules") or {}
    triggers = {}
    if automation.get("enable_qa_window_auto_toggle"):
        triggers["open_q_and_a"] = d["qa_open_at"]
        triggers["close_q_and_a"] = d["qa_close_at"]
    if automation.get("enable_submission_auto_lock"):
        triggers["lock_submissions"] = d["submission_deadline_at"]
    if rules.get("submission_reminder_days_before") and d["submission_deadline_at"]:
        triggers["send_submission_reminder"] = (
            d["submission_deadline_at"] - timedelta(days=rules["submission_reminder_days_before"])
        )
    if automation.get("enable_demo_auto_window"):
        triggers["open_demo_window"] = d["demo_window_start_at"]
        triggers["close_demo_window"] = d["demo_window_end_at"]
    if rules.get("demo_reminder_days_before") and d["demo_window_start_at"]:
        triggers["send_demo_reminder"] = (
            d["demo_window_start_at"] - timedelta(days=rules["demo_reminder_days_before"])
        )
    if automation.get("enable_award_target_reminder"):
        triggers["award_target_reached"] = d["award_target_at"]
    return {k: v for k, v in triggers.items() if v is not None}


def compute_timeline_state(rfp, config, now=None):
    """
    Timeline snapshot of *rfp* at *now*.  Never raises on bad or missing dates.
    """
    now = as_utc(now) or datetime.now(timezone.utc)
    issues = []
    d = _parse_key_dates(config, issues)
    _window_issues(d, issues)

    current = _current_phase(d, now)
    bounds = _phase_bounds(d)
    phases = []
    for phase_id, label in PHASES:
        start, end = bounds[phase_id]
        phases.append({
            "phase_id": phase_id,
            "label": label,
            "starts_at": isoformat(start),
            "ends_at": isoformat(end),
            "is_current": phase_id == current,
            "is_completed": bool(end and now > end),
            "is_upcoming": bool(start and now < start),
        })

    next_events = []
    for action_id in TIMELINE_ACTIONS:
        at = _event_time(action_id, d)
        if at and at > now:
            label, description = ACTION_LABELS[action_id]
            next_events.append({
                "timestamp": at.isoformat(),
                "label": label,
                "action_id": action_id,
                "description": description,
            })
    next_events.sort(key=lambda e: (e["timestamp"], TIMELINE_ACTIONS.index(e["action_id"])))

    deadline = d["submission_deadline_at"]
    award = d["award_target_at"]
    if award is None:
        award_status = "not_set"
    elif now < award:
        award_status = "upcoming"
    else:
        award_status = "past_due"

    return {
        "rfp_id": rfp.id,
        "generated_at": now.isoformat(),
        "timezone": config.get("timezone") or DEFAULT_TIMEZONE,
        "current_phase": current,
        "phases": phases,
        "next_events": next_events,
        "is_qa_open": _between(now, d["qa_open_at"], d["qa_close_at"]),
        "is_submissions_locked": bool((deadline and now > deadline) or rfp.submissions_locked_at),
        "is_demo_window_open": _between(now, d["demo_window_start_at"], d["demo_window_end_at"]),
        "award_target_status": award_status,
        "issues": issues,
    }


def _event_time(action_id, d):
    """Milestone time shown in next_events (reminders excluded)."""
    return {
        "open_q_and_a": d["qa_open_at"],
        "close_q_and_a": d["qa_close_at"],
        "lock_submissions": d["submission_deadline_at"],
        "open_demo_window": d["demo_window_start_at"],
        "close_demo_window": d["demo_window_end_at"],
        "award_target_reached": d["award_target_at"],
    }.get(action_id)


# ═════════════════════════════════════════════════════════════════════════════
# Actions
# ═════════════════════════════════════════════════════════════════════════════


def compute_due_actions(config, snapshot, applied, now=None):
    """
    Actions due at *now*, chronologically ordered.

    Args:
        config: normalised timeline config.
        snapshot: state from ``compute_timeline_state`` (its issues suppress
            actions of inverted windows).
        applied: action ids already recorded for the RFP.

    Returns:
        list of {"action_id", "trigger_at"} dicts.
    """
    now = as_utc(now) or datetime.now(timezone.utc)
    d = _parse_key_dates(config, [])
    codes = {i["code"] for i in snapshot.get("issues", [])}
    suppressed = set()
    if "qa_window_inverted" in codes:
        suppressed |= {"open_q_and_a", "close_q_and_a"}
    if "demo_window_inverted" in codes:
        suppressed |= {"open_demo_window", "close_demo_window", "send_demo_reminder"}

    # Reminders only make sense before their target
    if d["submission_deadline_at"] and now >= d["submission_deadline_at"]:
        suppressed.add("send_submission_reminder")
    if d["demo_window_start_at"] and now >= d["demo_window_start_at"]:
        suppressed.add("send_demo_reminder")

    due = []
    for action_id, trigger_at in _action_triggers(config, d).items():
        if action_id in suppressed or action_id in applied:
            continue
        if trigger_at <= now:
            due.append({"action_id": action_id, "trigger_at": trigger_at})
    due.sort(key=lambda a: (a["trigger_at"], TIMELINE_ACTIONS.index(a["action_id"])))
    return due


def applied_action_ids(rfp_id, session=None):
    """Action ids already recorded as RfpTimelineEvents for the RFP."""
    session = session or db.session
    rows = session.execute(
        select(RfpTimelineEvent.event_type).where(RfpTimelineEvent.rfp_id == rfp_id)
    ).scalars().all()
    known = {a.upper(): a for a in TIMELINE_ACTIONS}
    return {known[r] for r in rows if r in known}


def _notify(rfp, action_id, trigger_at, session):
    label, description = ACTION_LABELS[action_id]
    severity = "warning" if action_id in ("lock_submissions", "award_target_reached") else "info"
    NotificationService.create(
        company_id=rfp.company_id,
        user_id=rfp.user_id,
        rfp_id=rfp.id,
        title=f"{label}: {rfp.title}",
        message=f"{description} ({trigger_at.isoformat()})",
        category="timeline",
        severity=severity,
        session=session,
    )


def _apply_action(rfp, action_id, now):
    if action_id == "lock_submissions" and rfp.submissions_locked_at is None:
        rfp.submissions_locked_at = now


def run_rfp_timeline_tick(rfp_id, *, dry_run=False, triggered_by_user_id=None, now=None, session=None):
    """
    Evaluate the RFP's timeline at *now* and apply due actions.

    Returns:
        {"snapshot": dict, "actions_applied": [action_id, ...]}

    Raises:
        NotFoundError: unknown RFP.
        ArchivedReadOnlyError: non-dry-run tick on an archived RFP.
    """
    session = session or db.session
    now = as_utc(now) or datetime.now(timezone.utc)
    rfp = get_or_raise(RFP, rfp_id, session=session)

    config = normalize_timeline_config(rfp)
    snapshot = compute_timeline_state(rfp, config, now)
    applied = applied_action_ids(rfp.id, session)
    # A lock lifted by a deadline extension re-arms for the new deadline
    if rfp.submissions_locked_at is None:
        applied.discard("lock_submissions")
    due = compute_due_actions(config, snapshot, applied, now)
    actions = [a["action_id"] for a in due]

    if dry_run:
        return {"snapshot": snapshot, "actions_applied": actions}

    if rfp.is_archived:
        raise ArchivedReadOnlyError(rfp.id)

    for action in due:
        _apply_action(rfp, action["action_id"], now)
        session.add(RfpTimelineEvent(
            rfp_id=rfp.id,
            event_type=action["action_id"].upper(),
            payload_json=json.dumps({
                "automated": True,
                "trigger_at": action["trigger_at"].isoformat(),
                "applied_at": now.isoformat(),
            }),
            created_by_id=triggered_by_user_id,
            created_at=now,
        ))
        _notify(rfp, action["action_id"], action["trigger_at"], session)

    if actions:
        # Effects of this tick (e.g. the submission lock) belong in its snapshot
        snapshot = compute_timeline_state(rfp, config, now)
    rfp.timeline_state_json = dump_record(snapshot, TIMELINE_SNAPSHOT_VERSION)
    session.flush()

    if actions:
        log_activity(
            event_type="RFP_TIMELINE_TICK", actor_role="BUYER" if triggered_by_user_id else "SYSTEM",
            summary=f"Timeline actions applied: {', '.join(actions)}",
            rfp_id=rfp.id, user_id=triggered_by_user_id,
            details={"actions": actions, "issues": snapshot["issues"]},
            session=session,
        )
        logger.info("Timeline tick applied %s to RFP %d", actions, rfp.id, extra={"rfp_id": rfp.id})
    return {"snapshot": snapshot, "actions_applied": actions}


# ═════════════════════════════════════════════════════════════════════════════
# Read / update
# ═════════════════════════════════════════════════════════════════════════════


def get_timeline(rfp_id, *, now=None, session=None):
    """Config, fresh snapshot, last persisted snapshot and event history."""
    session = session or db.session
    rfp = get_or_raise(RFP, rfp_id, session=session)
    config = normalize_timeline_config(rfp)
    stored = load_record(rfp.timeline_state_json, current_version=TIMELINE_SNAPSHOT_VERSION) \
        if rfp.timeline_state_json else None
    return {
        "config": config,
        "snapshot": compute_timeline_state(rfp, config, now),
        "persisted_snapshot": stored,
        "events": [e.to_dict() for e in rfp.timeline_events.all()],
    }


def _is_known_timezone(name):
    """True for an IANA zone key; region directories such as "America" are not zones."""
    if not isinstance(name, str) or not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def update_timeline(rfp_id, data, *, actor, now=None, session=None):
    """
    Update milestone columns and the stored timeline config.

    Accepted keys: the RFP milestone fields, ``timezone``, ``key_dates``
    (invitation_sent_at / evaluation_start_at overrides) and ``automation``
    (flags plus ``reminder_rules``).  Window ordering is not enforced here;
    inverted windows show up as snapshot issues.
    """
    session = session or db.session
    rfp = get_or_raise(RFP, rfp_id, session=session)
    ensure_mutable(rfp)

    errors = {}
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

    stored = _stored_config(rfp)
    stored.pop("schema_version", None)

    if "timezone" in data:
        tz = data["timezone"]
        if _is_known_timezone(tz):
            stored["timezone"] = tz
        else:
            errors["timezone"] = f"unknown timezone {tz!r}"

    if "key_dates" in data:
        key_dates = dict(stored.get("key_dates") or {})
        for key, raw in (data.get("key_dates") or {}).items():
            if key not in ("invitation_sent_at", "evaluation_start_at"):
                errors[f"key_dates.{key}"] = "not overridable; set the milestone field instead"
                continue
            if raw in (None, ""):
                key_dates.pop(key, None)
                continue
            parsed = parse_datetime(raw)
            if parsed is None:
                errors[f"key_dates.{key}"] = "must be an ISO-8601 date or datetime"
            else:
                key_dates[key] = parsed.isoformat()
        stored["key_dates"] = key_dates

    if "automation" in data:
        automation = dict(stored.get("automation") or {})
        incoming = data.get("automation") or {}
        for flag in AUTOMATION_FLAGS:
            if flag in incoming:
                if not isinstance(incoming[flag], bool):
                    errors[f"automation.{flag}"] = "must be a boolean"
                else:
                    automation[flag] = incoming[flag]
        rules = dict(automation.get("reminder_rules") or {})
        for rule, value in (incoming.get("reminder_rules") or {}).items():
            if rule not in REMINDER_RULES:
                errors[f"automation.reminder_rules.{rule}"] = "unknown rule"
            elif value is not None and (isinstance(value, bool) or not isinstance(value, int) or value <= 0):
                errors[f"automation.reminder_rules.{rule}"] = "must be a positive integer or null"
            else:
                rules[rule] = value
        automation["reminder_rules"] = rules
        stored["automation"] = automation

    if errors:
        raise ValidationError("Invalid timeline data", details=errors)

    rfp.timeline_config_json = dump_record(stored, TIMELINE_CONFIG_VERSION)
    if "submission_end" in data:
        reopen_submissions_if_extended(rfp, actor=actor, now=now, session=session)
    session.flush()
    log_activity(
        event_type="RFP_TIMELINE_UPDATED", actor_role=actor_role_of(actor), session=session,
        summary="Timeline updated", rfp_id=rfp.id, user_id=actor.id,
        details={"fields": sorted(data)},
    )
    return rfp
