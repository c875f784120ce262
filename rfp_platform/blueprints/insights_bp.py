"""
RFP Platform
Insights Blueprint — per-RFP decision brief and supplier outcome board.

Both are served from the snapshot cache; ``?refresh=true`` regenerates.

Endpoints:
    GET    /api/v1/rfps/<id>/decision-brief      — recommendation, risks, timeline
    GET    /api/v1/rfps/<id>/supplier-outcomes   — outcome of every invited supplier
"""

from flask import Blueprint, current_app, jsonify, request

from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.models.activity import log_activity
from rfp_platform.services.decision_brief import compose_decision_brief
from rfp_platform.services.supplier_outcomes import compose_supplier_outcomes
from rfp_platform.utils.helpers import db_commit_or_error

insights_bp = Blueprint("insights", __name__, url_prefix="/api/v1")


def _cache_options():
    return {
        "max_age_minutes": current_app.config.get("INSIGHTS_CACHE_MINUTES", 60),
        "force": request.args.get("refresh", "false").lower() == "true",
    }


@insights_bp.route("/rfps/<int:rfp_id>/decision-brief", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def get_decision_brief(rfp_id):
    brief, meta = compose_decision_brief(rfp_id, **_cache_options())
    if not meta["from_cache"]:
        err = db_commit_or_error()
        if err:
            return err
    return jsonify({"brief": brief, "meta": meta}), 200


@insights_bp.route("/rfps/<int:rfp_id>/supplier-outcomes", methods=["GET"])
@require_session(role="buyer", rfp_scope="rfp_id")
def get_supplier_outcomes(rfp_id):
    user = current_session_user()
    board, meta = compose_supplier_outcomes(rfp_id, **_cache_options())
    log_activity(
        event_type="SUPPLIER_OUTCOMES_VIEWED", actor_role="BUYER",
        summary=f"Viewed supplier outcomes for '{board['rfp_title']}'",
        rfp_id=rfp_id, user_id=user.id,
        details={
            "total_suppliers": board["high_level"]["total_suppliers"],
            "total_recommended": board["high_level"]["total_recommended"],
        },
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"outcomes": board, "meta": meta}), 200
