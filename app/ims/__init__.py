import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from flask_cors import CORS
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.ims.auth import bp as auth_bp, load_current_user
from app.ims.config import load_config
from app.ims.db import init_db, teardown_db_session
from app.ims.errors import ApiError
from app.ims.models import Base
from app.ims.routes import bp as routes_bp
from app.ims.modules.audit_log.api import bp as audit_log_bp
from app.ims.modules.competency.api import bp as competency_bp
from app.ims.modules.documents.api import bp as documents_bp, files_bp
from app.ims.modules.flowcharts.api import bp as flowcharts_bp
from app.ims.modules.internal_audit.api import bp as internal_audit_bp
from app.ims.modules.notifications.api import bp as notifications_bp
from app.ims.modules.objectives.api import bp as objectives_bp
from app.ims.modules.org_chart.api import bp as org_chart_bp
from app.ims.modules.risks.api import bp as risks_bp
from app.ims.modules.settings.api import bp as settings_bp
from app.ims.modules.users.api import bp as users_bp

_CSRF_EXEMPT_ENDPOINTS = ("auth.login", "auth.logout")
_UNGUARDED_PREFIXES = ("/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    log_level = app.config.get("LOG_LEVEL") or "INFO"
    app.logger.setLevel(log_level)
    logging.getLogger("app.ims").setLevel(log_level)

    # The SPA runs on its own origin and authenticates with the session cookie.
    CORS(
        app,
        origins=app.config["CORS_ORIGINS"],
        supports_credentials=True,
        expose_headers=["X-Request-ID", "Content-Disposition"],
    )

    from app.ims.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "") in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return jsonify({"error": "csrf_failed", "message": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.ims.storage import S3Storage, storage_from_config

            storage = storage_from_config(app.config)
            if isinstance(storage, S3Storage):
                try:
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
                except (BotoCoreError, ClientError) as e:
                    app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(users_bp, url_prefix="/api/users")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")
    app.register_blueprint(documents_bp, url_prefix="/api/documents")
    app.register_blueprint(files_bp, url_prefix="/api/files")
    app.register_blueprint(risks_bp, url_prefix="/api/risks")
    app.register_blueprint(objectives_bp, url_prefix="/api/objectives")
    app.register_blueprint(internal_audit_bp, url_prefix="/api")
    app.register_blueprint(audit_log_bp, url_prefix="/api/audit-logs")
    app.register_blueprint(org_chart_bp, url_prefix="/api/org-chart")
    app.register_blueprint(flowcharts_bp, url_prefix="/api/flowcharts")
    app.register_blueprint(competency_bp, url_prefix="/api/competencies")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _echo_request_id(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    # Migration health (lean): every mapped table must exist.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> None:
        engine = app.extensions["sqlalchemy_engine"]
        insp = sa_inspect(engine)
        existing = set(insp.get_table_names())
        missing = sorted(t for t in Base.metadata.tables if t not in existing)
        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing
        if missing and not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():
        if app.config.get("_schema_health_ok") or not request.path.startswith("/api"):
            return None
        # Re-check so a migration applied after boot is picked up without a restart.
        _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        return jsonify(
            {
                "error": "schema_out_of_date",
                "message": "Database schema is out of date.",
                "details": app.config.get("_schema_health_missing") or [],
            }
        ), 503

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        if e.status_code >= 500:
            app.logger.error("API error %s (request_id=%s): %s", e.status_code, getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        code = (e.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code, "message": e.description}), e.code or 500

    @app.errorhandler(Exception)
    def _err_500(e: Exception):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "internal_error", "message": "Internal server error."}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
