"""
RFP Platform
Timeline Blueprint — timeline config, snapshot, ticks and the company sweep.

Endpoints:
    GET    /api/v1/rfps/<id>/timeline          — config + live snapshot + events
    PUT    /api/v1/rfps/<id>/timeline          — update milestones / automation config
    POST   /api/v1/rfps/<id>/timeline/run      — run a tick (?dry_run=true)
    POST   /api/v1/timeline/automation/run     — company-wide automation sweep

Tick and sweep routes share a per-address limit (TIMELINE_TICK_RATE_LIMIT).
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from rfp_platform import limiter
from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.services.timeline_automation import run_timeline_automation
from rfp_platform.services.timeline_engine import get_timeline, run_rfp_timeline_tick, update_timeline
from rfp_platform.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

timeline_bp = Blueprint("timeline", __name__, url_prefix="/api/v1")


def _tick_limit():
    return current_app.config.get("TIMELINE_TICK_RATE_LIMIT", "30/minute")


_timeline_run_limit = limiter.shared_limit(_tick_limit, scope="timeline_run")


def _dry_run_flag(data):
    if "dry_run" in data:
        return bool(data["dry_run"])
    return request.args.get("dry_run", "false").lower() == "true"


@timeline_bp.route("/rfps/<int:rfp_id>/timeline", methods=["GET"])
@require_session(rfp_scope="rfp_id")
def get_rfp_timeline(rfp_id):
    return jsonify(get_timeline(rfp_id)), 200


@timeline_bp.route("/rfps/<int:rfp_id>/timeline", methods=["PUT"])
@require_session(role="buyer", rfp_scope="rfp_id")
def put_rfp_timeline(rfp_id):
    """
    Body (all optional):
        { "submission_end": "2026-03-01T17:00:00Z", "timezone": "Europe/Berlin",
          "key_dates": {"invitation_sent_at": "..."},
          "automation": {"enable_submission_auto_lock": true,
                         "reminder_rules": {"submission_reminder_days_before": 3}} }
    """
    data = request.get_json(silent=True) or {}
    update_timeline(rfp_id, data, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(get_timeline(rfp_id)), 200


@timeline_bp.route("/rfps/<int:rfp_id>/timeline/run", methods=["POST"])
@_timeline_run_limit
@require_session(role="buyer", rfp_scope="rfp_id")
def run_rfp_timeline(rfp_id):
    """Body: { "dry_run": true } (or ?dry_run=true)"""
    data = request.get_json(silent=True) or {}
    dry_run = _dry_run_flag(data)
    result = run_rfp_timeline_tick(
        rfp_id, dry_run=dry_run, triggered_by_user_id=current_session_user().id,
    )
    if not dry_run:
        err = db_commit_or_error()
        if err:
            return err
    return jsonify({**result, "dry_run": dry_run}), 200


@timeline_bp.route("/timeline/automation/run", methods=["POST"])
@_timeline_run_limit
@require_session(role="buyer")
def run_company_automation():
    """Body: { "dry_run": true } (or ?dry_run=true)"""
    data = request.get_json(silent=True) or {}
    dry_run = _dry_run_flag(data)
    user = current_session_user()
    result = run_timeline_automation(user.company_id, dry_run=dry_run)
    if not dry_run:
        err = db_commit_or_error()
        if err:
            return err
    return jsonify(result), 200
