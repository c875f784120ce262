"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login       — Email + password → access token
  GET  /api/v1/auth/me          — Current user profile
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.models.activity import log_activity
from rfp_platform.models.auth import User
from rfp_platform.services.jwt_service import issue_session
from rfp_platform.utils.crypto import verify_password
from rfp_platform.utils.errors import E, api_error
from rfp_platform.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return an access token.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        return api_error(E.UNAUTHENTICATED, "Invalid email or password")
    if not user.is_active:
        return api_error(E.FORBIDDEN, "Account is inactive")

    user.last_login_at = datetime.now(timezone.utc)
    log_activity(
        event_type="USER_LOGIN", actor_role="BUYER" if user.role == "buyer" else "SUPPLIER",
        summary=f"{user.email} signed in", user_id=user.id,
    )
    err = db_commit_or_error()
    if err:
        return err

    return jsonify(issue_session(user)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_session()
def me():
    """Current user profile."""
    user = current_session_user()
    d = user.to_dict()
    d["company"] = user.company.to_dict() if user.company else None
    return jsonify(d), 200
