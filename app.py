"""Flask application factory for the location registry approval service."""
import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError

from extensions import csrf, db, enable_sqlite_savepoints, login_manager, migrate
from utils.logger import init_logging
from utils.security import apply_security_headers

HTTP_ERRORS: dict[int, tuple[str, str]] = {
    400: ("bad_request", "Yêu cầu không hợp lệ"),
    403: ("forbidden", "Bạn không có quyền truy cập"),
    404: ("not_found", "Không tìm thấy tài nguyên"),
    405: ("method_not_allowed", "Phương thức không được hỗ trợ"),
    500: ("server_error", "Lỗi hệ thống. Vui lòng thử lại sau."),
}


def register_error_handlers(app: Flask) -> None:
    """Answer framework-level errors with the same JSON envelope as workflow results."""

    def make_handler(status: int, error: str, message: str):
        def handler(exc):
            if status >= 500:
                app.logger.exception("Unhandled error", extra={"path": request.path, "method": request.method})
                db.session.rollback()
            else:
                app.logger.warning("HTTP %s", status, extra={"path": request.path, "method": request.method})
            return jsonify({"success": False, "error": error, "message": message}), status

        return handler

    for status, (error, message) in HTTP_ERRORS.items():
        app.register_error_handler(status, make_handler(status, error, message))


def seed_roles_and_admin(app: Flask) -> None:
    """Create the four workflow roles and, when configured, a system administrator account."""
    from models import ROLE_DESCRIPTIONS, Role, User  # Local import to avoid circular dependency

    roles = {name: Role.get_or_create(name, description=description) for name, description in ROLE_DESCRIPTIONS.items()}

    email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not email or not password:
        return

    admin = User.query.filter_by(email=email).first()
    if admin is None:
        admin = User(full_name="Quản trị hệ thống", email=email, role=roles["system_admin"])
        admin.set_password(password)
        db.session.add(admin)
    elif admin.role_name == "system_admin" and admin.is_active:
        return
    admin.role = roles["system_admin"]
    admin.is_active = True
    db.session.commit()
    app.logger.info("System administrator account ensured", extra={"email": email})


def ensure_database_exists(database_uri: str) -> None:
    """Prepare the storage target: a directory for SQLite files, the database itself for PostgreSQL."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return
    if not url.drivername.startswith("postgres"):
        return

    maintenance = create_engine(
        url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres")), isolation_level="AUTOCOMMIT"
    )
    try:
        with maintenance.connect() as conn:
            found = conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": url.database})
            if found.scalar() is None:
                conn.execute(text(f'CREATE DATABASE "{url.database}"'))
    except OperationalError:
        # Managed Postgres often forbids CREATE DATABASE; the app engine fails loudly if it is missing.
        pass
    finally:
        maintenance.dispose()


def bootstrap_database(app: Flask) -> None:
    with app.app_context():
        if db.engine.url.drivername.startswith("sqlite"):
            # Identifier inserts run inside SAVEPOINTs.
            enable_sqlite_savepoints(db.engine)
        db.create_all()
        seed_roles_and_admin(app)


def create_app(config_name: Optional[str] = None) -> Flask:
    load_dotenv()

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    configs = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    selected = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(configs.get(selected, ProductionConfig)())
    if not app.config.get("TESTING"):
        # instance/config.py may override anything above
        app.config.from_pyfile("config.py", silent=True)
        os.makedirs(app.instance_path, exist_ok=True)
    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    app.logger = init_logging(app)

    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.session_protection = app.config.get("SESSION_PROTECTION")

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        return db.session.get(User, str(user_id)) if user_id else None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "unauthenticated", "message": "Vui lòng đăng nhập"}), 401

    from routes import lookup_bp, main_bp, workflow_bp

    for blueprint in (main_bp, workflow_bp, lookup_bp):
        app.register_blueprint(blueprint)
    register_error_handlers(app)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    bootstrap_database(app)
    app.logger.info("Application ready", extra={"config": selected})
    return app


# WSGI entry point (gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)), use_reloader=False)
