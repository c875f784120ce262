"""
RFP Platform
Readiness Blueprint — supplier response readiness (buyer side).

Endpoints:
    GET    /api/v1/rfps/<id>/responses/<contact_id>/readiness       — stored readiness
    POST   /api/v1/rfps/<id>/responses/<contact_id>/readiness/run   — recompute
"""

from flask import Blueprint, jsonify

from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.services.readiness import readiness_payload, update_response_readiness
from rfp_platform.services.supplier_outcomes import invalidate_rfp_insights
from rfp_platform.services.supplier_service import response_for_contact
from rfp_platform.utils.errors import E, api_error
from rfp_platform.utils.helpers import db_commit_or_error

readiness_bp = Blueprint("readiness", __name__, url_prefix="/api/v1")


@readiness_bp.route("/rfps/<int:rfp_id>/responses/<int:contact_id>/readiness", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def get_readiness(rfp_id, contact_id):
    contact, response = response_for_contact(rfp_id, contact_id)
    if response is None:
        return api_error(E.NOT_FOUND, f"No response yet from {contact.email}")
    return jsonify(readiness_payload(response)), 200


@readiness_bp.route("/rfps/<int:rfp_id>/responses/<int:contact_id>/readiness/run", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def run_readiness(rfp_id, contact_id):
    contact, response = response_for_contact(rfp_id, contact_id)
    if response is None:
        return api_error(E.NOT_FOUND, f"No response yet from {contact.email}")
    payload = update_response_readiness(response.id, actor=current_session_user())
    invalidate_rfp_insights(rfp_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), 200
