"""Flask application factory for the CivicPulse issue reporting and triage API."""
import os
import uuid
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_wtf.csrf import CSRFError
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from extensions import csrf, db, login_manager, migrate
from utils.errors import AuthenticationRequired, CivicPulseError
from utils.logger import init_logging
from utils.security import apply_security_headers


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CivicPulseError)
    def domain_error(error: CivicPulseError):
        log = app.logger.warning if error.status_code < 500 else app.logger.error
        log(
            error.message,
            extra={"error_code": error.error_code, "method": request.method},
        )
        return jsonify(error.to_payload()), error.status_code

    @app.errorhandler(CSRFError)
    def csrf_error(error: CSRFError):
        app.logger.warning("CSRF validation failed", extra={"method": request.method})
        return jsonify({"error": "csrf_failed", "message": error.description}), 400

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        if error.code and error.code >= 500:
            app.logger.error("HTTP %s", error.code)
        else:
            app.logger.warning("HTTP %s", error.code, extra={"method": request.method})
        name = (error.name or "error").lower().replace(" ", "_")
        return jsonify({"error": name, "message": error.description}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return jsonify({"error": "internal_error", "message": "Unexpected error. Please retry."}), 500


def ensure_default_roles_and_admin(app: Flask) -> None:
    """Ensure baseline roles exist and, when configured, a default admin account."""
    from models import ROLE_ADMIN, ROLE_CITIZEN, ROLE_OFFICIAL, Role, User  # Local import to avoid circular dependency
    from routes.auth import ROLE_DESCRIPTIONS

    role_cache: dict[str, Role] = {}
    for name in (ROLE_CITIZEN, ROLE_OFFICIAL, ROLE_ADMIN):
        role_cache[name] = Role.get_or_create(name, description=ROLE_DESCRIPTIONS[name])

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    admin_password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        return

    admin_role = role_cache[ROLE_ADMIN]
    admin_user = User.query.filter_by(email=admin_email).first()
    if admin_user:
        if admin_user.role != admin_role or not admin_user.is_active:
            admin_user.role = admin_role
            admin_user.is_active = True
            db.session.commit()
        return

    admin_user = User(full_name="System Administrator", email=admin_email, role=admin_role, is_active=True)
    admin_user.set_password(admin_password)
    db.session.add(admin_user)
    db.session.commit()
    app.logger.info("Default admin account created", extra={"email": admin_email})


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # Startup fails loudly later if the database really is unreachable.
            pass
        finally:
            engine.dispose()


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)

    logger = init_logging(app)

    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.session_protection = "strong"

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        # API clients own the redirect to their login screen.
        raise AuthenticationRequired("Sign in to continue")

    from routes import assistant_bp, auth_bp, issues_bp, main_bp, routing_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(issues_bp)
    app.register_blueprint(assistant_bp)
    app.register_blueprint(routing_bp)

    register_error_handlers(app)

    @app.before_request
    def _before_request() -> None:
        incoming = (request.headers.get("X-Request-ID") or "").strip()
        g.request_id = incoming[:64] if incoming else uuid.uuid4().hex

    @app.after_request
    def _after_request(response):
        response.headers.setdefault("X-Request-ID", getattr(g, "request_id", ""))
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    with app.app_context():
        db.create_all()
        ensure_default_roles_and_admin(app)

    logger.info("Application ready", extra={"config": config_class.__name__})
    return app


if __name__ == "__main__":
    application = create_app()
    port = int(os.getenv("PORT", 5000))
    application.run(host="0.0.0.0", port=port, use_reloader=False)
