import logging
import os
import uuid
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, render_template, request, session
from sqlalchemy import inspect as sa_inspect

from app.portal.config import load_config
from app.portal.db import init_db, teardown_db_session
from app.portal.ratelimit import limiter_from_config
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.admin import bp as admin_bp
from app.portal.modules.applications.admin import bp as applications_admin_bp
from app.portal.modules.applications.webhook import bp as webhooks_bp
from app.portal.modules.investments.admin import bp as investments_bp
from app.portal.security import (
    apply_security_headers,
    client_ip,
    ensure_csrf_token,
    is_ip_allowed,
    validate_csrf,
)

# Paths that bypass rate limiting, sessions and CSRF.
_PASSTHROUGH_PREFIXES = ("/static/", "/health", "/healthz")
_ADMIN_PREFIXES = ("/admin", "/api/admin")
_CSRF_EXEMPT_BLUEPRINTS = ("auth.", "webhooks.")
_REQUIRED_TABLES = (
    "users",
    "roles",
    "permissions",
    "audit_events",
    "applications",
    "application_documents",
    "webhook_logs",
    "rate_limit_counters",
    "agents",
    "investors",
    "investments",
)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def _error_response(status: int, message: str, template: str):
    if _is_api_request():
        return jsonify({"error": message}), status
    return render_template(template, message=message, status=status), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("app.portal").setLevel(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
    if not app.config.get("JOTFORM_WEBHOOK_SECRET"):
        app.logger.error("JOTFORM_WEBHOOK_SECRET is not set; every webhook delivery will be rejected with 401.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.extensions["rate_limiter"] = limiter_from_config(app.config, app.extensions["sqlalchemy_sessionmaker"])

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.before_request
    def _request_id_and_rate_limit():
        g.request_id = uuid.uuid4().hex
        if request.path.startswith(_PASSTHROUGH_PREFIXES):
            return None
        if not app.config.get("RATE_LIMIT_ENABLED"):
            return None
        ip = client_ip(request)
        decision = app.extensions["rate_limiter"].check_and_consume(ip, request.path)
        if decision.allowed:
            return None
        app.logger.warning(
            "Rate limit exceeded (ip=%s path=%s retry_after=%s request_id=%s)",
            ip,
            request.path,
            decision.retry_after,
            g.request_id,
        )
        resp = jsonify({"error": "Too many requests. Please try again later."})
        resp.status_code = 429
        resp.headers["Retry-After"] = str(decision.retry_after)
        return resp

    @app.before_request
    def _admin_ip_guard():
        if not request.path.startswith(_ADMIN_PREFIXES):
            return None
        ip = client_ip(request)
        if is_ip_allowed(ip, app.config.get("ADMIN_IP_ALLOWLIST") or []):
            return None
        app.logger.warning("Admin access denied for ip=%s path=%s", ip, request.path)
        return _error_response(403, "Access denied", "errors/403.html")

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_PASSTHROUGH_PREFIXES):
            return None
        endpoint = request.endpoint or ""
        if endpoint.startswith("webhooks."):
            # Server-to-server; authenticated by signature, no session cookie.
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if endpoint.startswith(_CSRF_EXEMPT_BLUEPRINTS):
                return None
            if not validate_csrf(request):
                return _error_response(400, "CSRF token missing or invalid.", "errors/400.html")
        return None

    def _load_user_wrapper():
        if request.path.startswith(_PASSTHROUGH_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)

    # Schema health: detect missing tables (run `alembic upgrade head`).
    # Checked on the first request so that freshly created databases are seen.
    app.config.setdefault("_schema_health_ok", None)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in _REQUIRED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing

    @app.before_request
    def _schema_health_guardrail():
        if request.path.startswith(_PASSTHROUGH_PREFIXES):
            return None
        if app.config.get("_schema_health_ok") is None:
            _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith(_ADMIN_PREFIXES):
            return jsonify({"error": "Database schema out of date", "missing": app.config["_schema_health_missing"]}), 503
        return None

    @app.after_request
    def _security_headers(response):
        return apply_security_headers(response)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(webhooks_bp, url_prefix="/api/webhooks")
    app.register_blueprint(applications_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(investments_bp, url_prefix="/api/investments")

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(400)
    def _err_400(e):
        return _error_response(400, "Bad request", "errors/400.html")

    @app.errorhandler(403)
    def _err_403(e):
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return _error_response(403, "Forbidden", "errors/403.html")

    @app.errorhandler(404)
    def _err_404(e):
        return _error_response(404, "Not found", "errors/404.html")

    @app.errorhandler(405)
    def _err_405(e):
        return _error_response(405, "Method not allowed", "errors/400.html")

    @app.errorhandler(413)
    def _err_413(e):
        return _error_response(413, "Request body too large", "errors/400.html")

    @app.errorhandler(429)
    def _err_429(e):
        return _error_response(429, "Too many requests. Please try again later.", "errors/400.html")

    @app.errorhandler(500)
    def _err_500(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error_response(500, "Internal server error", "errors/500.html")

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
