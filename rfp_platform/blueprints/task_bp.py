"""
RFP Platform
Stage Task Blueprint — per-stage checklists.

Endpoints:
    GET    /api/v1/rfps/<id>/tasks            — list (?stage=)
    POST   /api/v1/rfps/<id>/tasks            — add a manual task
    POST   /api/v1/rfps/<id>/tasks/generate   — seed the stage template checklist
    PATCH  /api/v1/tasks/<task_id>            — complete / rename
"""

from flask import Blueprint, g, jsonify, request

from rfp_platform.middleware.permission_required import (
    check_rfp_access,
    current_session_user,
    require_session,
)
from rfp_platform.models import db
from rfp_platform.models.rfp import RFP_STAGES, StageTask
from rfp_platform.services import rfp_service
from rfp_platform.utils.errors import E, api_error
from rfp_platform.utils.helpers import db_commit_or_error, get_or_404

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")


@task_bp.route("/rfps/<int:rfp_id>/tasks", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def list_tasks(rfp_id):
    stage = request.args.get("stage")
    if stage and stage not in RFP_STAGES:
        return api_error(E.VALIDATION_INVALID, f"Unknown stage: {stage}")
    tasks = rfp_service.list_tasks(rfp_id, stage=stage)
    return jsonify({
        "items": [t.to_dict() for t in tasks],
        "total": len(tasks),
        "incomplete": sum(1 for t in tasks if not t.completed),
    }), 200


@task_bp.route("/rfps/<int:rfp_id>/tasks", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def create_task(rfp_id):
    """Body: { "title": "...", "stage": "DISCOVERY" (optional, defaults to current) }"""
    data = request.get_json(silent=True) or {}
    task = rfp_service.create_task(rfp_id, data, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(task.to_dict()), 201


@task_bp.route("/rfps/<int:rfp_id>/tasks/generate", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def generate_tasks(rfp_id):
    data = request.get_json(silent=True) or {}
    created = rfp_service.generate_tasks(rfp_id, data.get("stage"), actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "stage": data.get("stage") or g.rfp.stage,
        "created": [t.to_dict() for t in created],
    }), 201 if created else 200


@task_bp.route("/tasks/<int:task_id>", methods=["PATCH"])
@require_session(role="buyer")
def update_task(task_id):
    """Body: { "completed": true } and/or { "title": "..." }"""
    task, err = get_or_404(StageTask, task_id, label="StageTask")
    if err:
        return err
    user = current_session_user()
    check_rfp_access(user, task.rfp)

    data = request.get_json(silent=True) or {}
    task = rfp_service.update_task(task_id, data, actor=user, session=db.session)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(task.to_dict()), 200
