"""
RFP Platform
Portfolio Blueprint — company-wide overview served from the snapshot cache.

Endpoints:
    GET    /api/v1/portfolio/overview   — ?refresh=true forces regeneration
"""

from flask import Blueprint, current_app, jsonify, request

from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.services.portfolio import compose_portfolio_snapshot
from rfp_platform.utils.helpers import db_commit_or_error

portfolio_bp = Blueprint("portfolio", __name__, url_prefix="/api/v1")


@portfolio_bp.route("/portfolio/overview", methods=["GET"])
@require_session(role="buyer")
def portfolio_overview():
    user = current_session_user()
    snapshot, meta = compose_portfolio_snapshot(
        user.company_id,
        max_age_minutes=current_app.config.get("PORTFOLIO_CACHE_MINUTES", 60),
        force=request.args.get("refresh", "false").lower() == "true",
    )
    if not meta["from_cache"]:
        err = db_commit_or_error()
        if err:
            return err
    return jsonify({"snapshot": snapshot, "meta": meta}), 200
