"""
RFP Platform
Activity Blueprint — append-only activity log of an RFP.

Endpoints:
    GET    /api/v1/rfps/<id>/activity   — newest first (?event_type, limit, offset)
"""

from flask import Blueprint, jsonify, request

from rfp_platform.blueprints import paginate_query
from rfp_platform.middleware.permission_required import require_session
from rfp_platform.models.activity import ACTIVITY_EVENT_TYPES, ActivityLog
from rfp_platform.utils.errors import E, api_error

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1")


@activity_bp.route("/rfps/<int:rfp_id>/activity", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def list_activity(rfp_id):
    q = ActivityLog.query.filter_by(rfp_id=rfp_id)

    event_type = request.args.get("event_type")
    if event_type:
        if event_type not in ACTIVITY_EVENT_TYPES:
            return api_error(E.VALIDATION_INVALID, f"Unknown event_type: {event_type}")
        q = q.filter_by(event_type=event_type)

    items, total = paginate_query(q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()))
    return jsonify({"items": [a.to_dict() for a in items], "total": total}), 200
