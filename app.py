from models.base import init_engine_and_session, Base
import os
import logging
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, current_app, g, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from controllers.auth import auth_bp, login_manager
from controllers.billing import billing_bp
from controllers.gl import gl_bp
from controllers.webhooks import webhooks_bp
from services.errors import AppError
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY

# --- Load .env exactly once, here ---
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _configure_logging(app: Flask) -> None:
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # read-only filesystem in a container
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)


def _seed(app: Flask) -> None:
    from models.users_db import get_user, create_user, create_organization, list_memberships
    from services.gl_accounts import ensure_default_accounts

    admin_pwd = os.getenv("ADMIN_PASSWORD")
    if admin_pwd and not get_user("admin"):
        create_user("admin", admin_pwd, role="admin",
                    email=os.getenv("ADMIN_EMAIL"))
        app.logger.info("Seeded admin user from .env")

    org_name = os.getenv("ADMIN_ORG")
    if org_name and get_user("admin") and not list_memberships("admin"):
        org_id = create_organization(org_name, "admin")
        ensure_default_accounts(org_id, actor="admin")
        app.logger.info("Seeded organization %r for admin", org_name)


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)

    # ---- Base config from environment (no hardcoded secrets) ----
    APP_ENV = os.getenv("APP_ENV", "development").lower()

    # SECRET_KEY:
    # - In production: must be provided
    # - In dev: fall back to a random key each run (sessions will reset on restart)
    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key and APP_ENV == "production":
        raise RuntimeError("FLASK_SECRET_KEY must be set in production (.env)")
    if not secret_key:
        secret_key = os.urandom(32)  # dev-only fallback

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        APP_ENV=APP_ENV,
        JSON_SORT_KEYS=False,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=APP_ENV == "production",

        # Billing
        PAYMENT_PROVIDER=os.getenv("PAYMENT_PROVIDER", "paystack"),
        PAYSTACK_API_BASE=os.getenv("PAYSTACK_API_BASE", "https://api.paystack.co"),
        PAYSTACK_TIMEOUT=int(os.getenv("PAYSTACK_TIMEOUT", "15")),
        BILLING_CURRENCY=os.getenv("BILLING_CURRENCY", "NGN"),
    )
    if test_config:
        app.config.update(test_config)

    # ---- CSRF ----
    csrf = CSRFProtect()
    csrf.init_app(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF failed: %s", getattr(e, "description", ""))
        return jsonify({"error": getattr(e, "description", "CSRF failed"), "code": "csrf"}), 400

    _configure_logging(app)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # ---- DB & seed ----
    engine, _Session = init_engine_and_session()

    if _env_bool("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine, checkfirst=True)

    with app.app_context():
        _seed(app)

    login_manager.init_app(app)

    # ---- Blueprints ----
    app.register_blueprint(auth_bp)
    app.register_blueprint(gl_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(webhooks_bp)

    # Paystack signs its callbacks and sends no session; JSON clients pass
    # X-CSRFToken from /csrf-token
    csrf.exempt(webhooks_bp)

    # Prometheus
    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(AppError)
    def handle_app_error(e: AppError):
        level = logging.ERROR if e.status >= 500 else logging.WARNING
        app.logger.log(level, "%s %s -> %s %s: %s", request.method, request.path,
                       e.status, e.code, e.message)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(PydanticValidationError)
    def handle_validation_error(e: PydanticValidationError):
        app.logger.warning("400 %s %s: invalid body", request.method, request.path)
        details = [{"loc": list(err["loc"]), "msg": err["msg"]}
                   for err in e.errors(include_url=False)]
        return jsonify({"error": "Invalid request", "code": "validation_error",
                        "details": details}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        app.logger.warning("%s %s %s", e.code, request.method, request.path)
        return jsonify({"error": e.description, "code": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error", "code": "internal_error"}), 500

    # ---- Routes ----
    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _log_request(resp):
        ms = (time() - getattr(g, "_t0", time())) * 1000
        app.logger.info("%s %s %s %s %.1fms",
                        request.remote_addr, request.method, request.full_path, resp.status_code, ms)

        # --- Skip self-scrapes to keep series clean ---
        ep = request.endpoint or ""
        if (request.path or "").startswith("/metrics"):
            return resp

        endpoint = ep.replace(".", "_") or "unknown"
        REQUEST_COUNT.labels(
            method=request.method, endpoint=endpoint, status=str(resp.status_code)).inc()
        REQUEST_LATENCY.labels(
            endpoint=endpoint, method=request.method).observe(ms / 1000.0)
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: app can talk to the DB
        try:
            engine, _ = init_engine_and_session()
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ok"), 200
        except Exception as e:
            current_app.logger.exception("Readiness check failed")
            return jsonify(status="error", error=str(e)), 500

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production FLASK_SECRET_KEY=... when deploying
    app = create_app()
    app.run(host="0.0.0.0", port=8000, debug=(
        app.config["APP_ENV"] != "production"))
