"""
RFP Platform
RFP Blueprint — RFP lifecycle, SLA, stage transitions, archive, opportunity score.

Endpoints:
    GET    /api/v1/rfps                              — list (company scope)
    POST   /api/v1/rfps                              — create (INTAKE)
    GET    /api/v1/rfps/<id>                         — detail + SLA
    PUT    /api/v1/rfps/<id>                         — update fields
    GET    /api/v1/rfps/<id>/sla                     — SLA status
    POST   /api/v1/rfps/<id>/validate-transition     — dry validation
    POST   /api/v1/rfps/<id>/stage                   — change stage
    POST   /api/v1/rfps/<id>/archive                 — archive (read-only)
    GET    /api/v1/rfps/<id>/opportunity-score       — stored score
    POST   /api/v1/rfps/<id>/opportunity-score       — score from breakdown
"""

import logging

from flask import Blueprint, g, jsonify, request

from rfp_platform.blueprints import paginate_query
from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.models.rfp import RFP, RFP_STAGES
from rfp_platform.models.supplier import SupplierContact
from rfp_platform.services import rfp_service
from rfp_platform.services.opportunity_scoring import opportunity_payload, score_rfp_opportunity
from rfp_platform.services.stage_sla import get_sla_status
from rfp_platform.services.stage_transition import allowed_next_stages, validate_stage_transition
from rfp_platform.utils.errors import E, api_error
from rfp_platform.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

rfp_bp = Blueprint("rfp", __name__, url_prefix="/api/v1")


def _rfp_detail(rfp):
    d = rfp.to_dict()
    d["sla"] = get_sla_status(rfp)
    d["allowed_next_stages"] = [] if rfp.is_archived else allowed_next_stages(rfp.stage)
    return d


def _version_conflict(rfp, data):
    """409 response when the client's ``version`` is behind the stored row."""
    expected = data.get("version")
    if expected is not None and expected != rfp.version:
        return api_error(
            E.CONFLICT_STATE, "RFP was modified by someone else; reload and retry",
            details={"expected_version": expected, "current_version": rfp.version},
        )
    return None


# ═════════════════════════════════════════════════════════════════════════════
# RFP CRUD
# ═════════════════════════════════════════════════════════════════════════════


@rfp_bp.route("/rfps", methods=["GET"])
@require_session()
def list_rfps():
    """
    List RFPs visible to the session.

    Query params: stage, status, include_archived (default false), limit, offset
    """
    user = current_session_user()
    if user.role == "buyer":
        q = RFP.query_for_company(user.company_id)
    else:
        q = RFP.query.join(SupplierContact, SupplierContact.rfp_id == RFP.id).filter(
            SupplierContact.portal_user_id == user.id,
        )

    stage = request.args.get("stage")
    if stage:
        if stage not in RFP_STAGES:
            return api_error(E.VALIDATION_INVALID, f"Unknown stage: {stage}")
        q = q.filter(RFP.stage == stage)
    status = request.args.get("status")
    if status:
        q = q.filter(RFP.status == status)
    if request.args.get("include_archived", "false").lower() != "true":
        q = q.filter(RFP.is_archived.is_(False))

    items, total = paginate_query(q.order_by(RFP.created_at.desc(), RFP.id.desc()))
    return jsonify({"items": [_rfp_detail(r) for r in items], "total": total}), 200


@rfp_bp.route("/rfps", methods=["POST"])
@require_session(role="buyer")
def create_rfp():
    data = request.get_json(silent=True) or {}
    rfp = rfp_service.create_rfp(data, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_rfp_detail(rfp)), 201


@rfp_bp.route("/rfps/<int:rfp_id>", methods=["GET"])
@require_session(rfp_scope="rfp_id")
def get_rfp(rfp_id):
    return jsonify(_rfp_detail(g.rfp)), 200


@rfp_bp.route("/rfps/<int:rfp_id>", methods=["PUT"])
@require_session(role="buyer", rfp_scope="rfp_id")
def update_rfp(rfp_id):
    data = request.get_json(silent=True) or {}
    conflict = _version_conflict(g.rfp, data)
    if conflict:
        return conflict
    rfp = rfp_service.update_rfp(rfp_id, data, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_rfp_detail(rfp)), 200


# ═════════════════════════════════════════════════════════════════════════════
# SLA & stage transitions
# ═════════════════════════════════════════════════════════════════════════════


@rfp_bp.route("/rfps/<int:rfp_id>/sla", methods=["GET"])
@require_session(rfp_scope="rfp_id")
def rfp_sla(rfp_id):
    d = get_sla_status(g.rfp)
    d["rfp_id"] = rfp_id
    d["stage"] = g.rfp.stage
    return jsonify(d), 200


@rfp_bp.route("/rfps/<int:rfp_id>/validate-transition", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def validate_transition(rfp_id):
    """
    Check a stage move without applying it.

    Body: { "stage": "DISCOVERY" }
    """
    data = request.get_json(silent=True) or {}
    result = validate_stage_transition(g.rfp.stage, data.get("stage"), rfp_id)
    if g.rfp.is_archived:
        result = {**result, "valid": False, "reason": "RFP is archived and read-only"}
    return jsonify(result), 200


@rfp_bp.route("/rfps/<int:rfp_id>/stage", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def change_stage(rfp_id):
    """
    Move the RFP to a new stage.

    Body: { "stage": "DISCOVERY", "version": 3 }
    """
    data = request.get_json(silent=True) or {}
    new_stage = data.get("stage")
    if not new_stage:
        return api_error(E.VALIDATION_REQUIRED, "stage is required")
    conflict = _version_conflict(g.rfp, data)
    if conflict:
        return conflict

    result = rfp_service.change_stage(rfp_id, new_stage, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "rfp": _rfp_detail(result["rfp"]),
        "transition": result["transition"],
        "automated_tasks": [t.to_dict() for t in result["automated_tasks"]],
    }), 200


@rfp_bp.route("/rfps/<int:rfp_id>/archive", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def archive_rfp(rfp_id):
    rfp = rfp_service.archive_rfp(rfp_id, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_rfp_detail(rfp)), 200


# ═════════════════════════════════════════════════════════════════════════════
# Opportunity score
# ═════════════════════════════════════════════════════════════════════════════


@rfp_bp.route("/rfps/<int:rfp_id>/opportunity-score", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def get_opportunity_score(rfp_id):
    return jsonify(opportunity_payload(g.rfp)), 200


@rfp_bp.route("/rfps/<int:rfp_id>/opportunity-score", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def post_opportunity_score(rfp_id):
    """
    Body: { "breakdown": { "strategic_fit": {"score": 80, "rationale": "..."}, ... } }
    """
    data = request.get_json(silent=True) or {}
    payload = score_rfp_opportunity(rfp_id, data.get("breakdown"), actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), 200
