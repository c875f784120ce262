"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_company_id, g.jwt_role

The middleware never rejects a request itself; an absent or invalid token
just leaves the g.jwt_* fields empty and ``require_session`` turns that
into a 401 on protected routes.
"""

import logging

import jwt as pyjwt
from flask import g, request

from rfp_platform.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_company_id = None
        g.jwt_role = None
        g.current_user = None
        g.rfp = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.debug("Invalid access token on %s: %s", path, exc)
            return

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.jwt_company_id = payload.get("company_id")
        g.jwt_role = payload.get("role")
