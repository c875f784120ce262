"""
Health check blueprint.

Endpoints:
    GET /api/v1/health  — status of the database and the optional Redis store
"""

import logging
import time

import redis
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from rfp_platform.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1")


@health_bp.route("/health", methods=["GET"])
def health():
    """Liveness check with dependency status; 503 when the database is down."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Redis ────────────────────────────────────────────────────────
    redis_url = current_app.config.get("REDIS_URL", "")
    if redis_url.startswith(("redis://", "rediss://")):
        try:
            t0 = time.perf_counter()
            redis.from_url(redis_url, socket_timeout=2).ping()
            checks["redis"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
        except redis.RedisError as exc:
            # Redis is optional; don't fail overall health
            checks["redis"] = {"status": "error", "detail": str(exc)}
    else:
        checks["redis"] = {"status": "skipped", "detail": "no REDIS_URL configured"}

    checks["app"] = {"name": "RFP Platform", "testing": current_app.testing}

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
