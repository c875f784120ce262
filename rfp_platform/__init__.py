"""
RFP Platform
Flask Application Factory.

Usage:
    from rfp_platform import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from rfp_platform.config import config
from rfp_platform.models import db
from rfp_platform.middleware.logging_config import configure_logging
from rfp_platform.middleware.timing import init_request_timing
from rfp_platform.middleware.rate_limiter import init_rate_limits
from rfp_platform.middleware.jwt_auth import init_jwt_middleware
from rfp_platform.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

# ── SQLite connection setup (global engine events) ──────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _configure_sqlite(dbapi_conn, connection_record):
    """Enable FK enforcement and hand transaction control to SQLAlchemy."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # pysqlite's implicit BEGIN breaks SAVEPOINT; emit our own below
        dbapi_conn.isolation_level = None


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """Create and configure the Flask application."""
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config[config_name]())

    # ── Structured logging ───────────────────────────────────────────────
    configure_logging(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(os.path.join(os.path.dirname(os.path.dirname(__file__)), "instance"), exist_ok=True)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if isinstance(cors_origins, str) and cors_origins != "*":
        cors_origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    CORS(app, resources={r"/api/*": {"origins": cors_origins}})

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    register_error_handlers(app)

    @app.before_request
    def _guard_request():
        from flask import request as _req, abort
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and _req.content_length and _req.content_length > max_len:
            abort(413, description="Request body too large")
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            if _req.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from rfp_platform.models import auth as _auth_models              # noqa: F401
    from rfp_platform.models import rfp as _rfp_models                # noqa: F401
    from rfp_platform.models import supplier as _supplier_models      # noqa: F401
    from rfp_platform.models import timeline as _timeline_models      # noqa: F401
    from rfp_platform.models import activity as _activity_models      # noqa: F401
    from rfp_platform.models import notification as _notification_models  # noqa: F401
    from rfp_platform.models import snapshot as _snapshot_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from rfp_platform.blueprints.auth_bp import auth_bp
    from rfp_platform.blueprints.rfp_bp import rfp_bp
    from rfp_platform.blueprints.task_bp import task_bp
    from rfp_platform.blueprints.timeline_bp import timeline_bp
    from rfp_platform.blueprints.supplier_bp import supplier_bp
    from rfp_platform.blueprints.readiness_bp import readiness_bp
    from rfp_platform.blueprints.portfolio_bp import portfolio_bp
    from rfp_platform.blueprints.insights_bp import insights_bp
    from rfp_platform.blueprints.notification_bp import notification_bp
    from rfp_platform.blueprints.activity_bp import activity_bp
    from rfp_platform.blueprints.health_bp import health_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(rfp_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(timeline_bp)
    app.register_blueprint(supplier_bp)
    app.register_blueprint(readiness_bp)
    app.register_blueprint(portfolio_bp)
    app.register_blueprint(insights_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("password")
    @click.option("--company", "company_name", default="Default Company", help="Company name (created if missing)")
    @click.option("--role", type=click.Choice(["buyer", "supplier"]), default="buyer")
    @click.option("--full-name", default=None)
    def create_user_cmd(email, password, company_name, role, full_name):
        """Create a login for EMAIL with PASSWORD."""
        from rfp_platform.models.auth import Company, User
        from rfp_platform.utils.crypto import hash_password

        if User.query.filter_by(email=email.strip().lower()).first():
            raise click.ClickException(f"User {email} already exists")
        company = Company.query.filter_by(name=company_name).first()
        if company is None:
            company = Company(name=company_name)
            db.session.add(company)
            db.session.flush()
        user = User(
            company_id=company.id,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        logger.info("Created %s user %s in company %s", role, user.email, company.id)

    @app.cli.command("run-timeline-automation")
    @click.argument("company_id", type=int)
    @click.option("--dry-run", is_flag=True, default=False)
    def run_timeline_automation_cmd(company_id, dry_run):
        """Run the company-wide timeline automation pass once."""
        from rfp_platform.services.timeline_automation import run_timeline_automation

        result = run_timeline_automation(company_id, dry_run=dry_run)
        if not dry_run:
            db.session.commit()
        meta = result["metadata"]
        click.echo(
            f"Processed {meta['total_rfps_processed']} RFPs in {meta['execution_time_ms']} ms: "
            f"{len(result['auto_advanced'])} advanced, {len(result['timeline_actions'])} timeline actions, "
            f"{len(result['errors'])} errors"
        )

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return {"error": e.description or "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description or "Unsupported media type"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "RATE_LIMITED", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
