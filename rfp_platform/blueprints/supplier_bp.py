"""
RFP Platform
Supplier Blueprint — invitations (buyer side) and the supplier portal.

Buyer endpoints:
    GET    /api/v1/rfps/<id>/suppliers                 — invited contacts
    POST   /api/v1/rfps/<id>/suppliers                 — invite a contact
    GET    /api/v1/rfps/<id>/responses                 — responses with readiness

Supplier portal endpoints:
    GET    /api/v1/supplier/rfps/<id>/response         — own response (draft)
    PUT    /api/v1/supplier/rfps/<id>/response         — save draft
    POST   /api/v1/supplier/rfps/<id>/response/submit  — submit
"""

from flask import Blueprint, g, jsonify, request

from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.services import supplier_service
from rfp_platform.services.readiness import load_structured_data
from rfp_platform.services.timeline_engine import compute_timeline_state, normalize_timeline_config
from rfp_platform.utils.helpers import db_commit_or_error, utcnow

supplier_bp = Blueprint("supplier", __name__, url_prefix="/api/v1")


# ── Buyer side ───────────────────────────────────────────────────────────────


@supplier_bp.route("/rfps/<int:rfp_id>/suppliers", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def list_suppliers(rfp_id):
    contacts = supplier_service.list_contacts(rfp_id)
    return jsonify({"items": [c.to_dict() for c in contacts], "total": len(contacts)}), 200


@supplier_bp.route("/rfps/<int:rfp_id>/suppliers", methods=["POST"])
@require_session(role="buyer", rfp_scope="rfp_id")
def invite_supplier(rfp_id):
    """Body: { "name": "...", "email": "...", "organization": "..." }"""
    data = request.get_json(silent=True) or {}
    contact = supplier_service.invite_supplier(rfp_id, data, actor=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(contact.to_dict()), 201


@supplier_bp.route("/rfps/<int:rfp_id>/responses", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def list_responses(rfp_id):
    items = []
    for contact in supplier_service.list_contacts(rfp_id):
        items.append({
            "contact": contact.to_dict(),
            "response": contact.response.to_dict() if contact.response else None,
        })
    return jsonify({"items": items, "total": len(items)}), 200


# ── Supplier portal ──────────────────────────────────────────────────────────


def _portal_state(rfp):
    snapshot = compute_timeline_state(rfp, normalize_timeline_config(rfp), utcnow())
    return {
        "submissions_closed": supplier_service.submissions_closed(rfp, utcnow()),
        "is_qa_open": snapshot["is_qa_open"],
        "current_phase": snapshot["current_phase"],
        "submission_deadline": snapshot["phases"][3]["ends_at"],
    }


@supplier_bp.route("/supplier/rfps/<int:rfp_id>/response", methods=["GET"])
@require_session(role="supplier", rfp_scope="rfp_id")
def get_own_response(rfp_id):
    d = supplier_service.get_own_response(rfp_id, current_session_user())
    d["rfp"] = {"id": g.rfp.id, "title": g.rfp.title, **_portal_state(g.rfp)}
    return jsonify(d), 200


@supplier_bp.route("/supplier/rfps/<int:rfp_id>/response", methods=["PUT"])
@require_session(role="supplier", rfp_scope="rfp_id")
def save_own_response(rfp_id):
    """Body: { "structured_data": { "executive_summary": "...", ... } }"""
    data = request.get_json(silent=True) or {}
    response = supplier_service.save_response(rfp_id, data, user=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    d = response.to_dict()
    d["structured_data"] = load_structured_data(response.structured_data_json)
    return jsonify(d), 200


@supplier_bp.route("/supplier/rfps/<int:rfp_id>/response/submit", methods=["POST"])
@require_session(role="supplier", rfp_scope="rfp_id")
def submit_own_response(rfp_id):
    response, readiness = supplier_service.submit_response(rfp_id, user=current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"response": response.to_dict(), "readiness": readiness}), 200
