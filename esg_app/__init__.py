import os
import logging
import traceback

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message_category = "info"

_startup_errors = []


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    os.makedirs(app.instance_path, exist_ok=True)

    # HTTPS support behind a reverse proxy
    if os.environ.get("FORCE_HTTPS"):
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    db.init_app(app)
    login_manager.init_app(app)

    from flask_compress import Compress
    Compress(app)

    from esg_app.auth.routes import auth_bp
    from esg_app.dashboard.routes import dashboard_bp
    from esg_app.process.routes import process_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(process_bp)

    @app.route("/health")
    def health():
        """Health check: database connectivity and startup errors."""
        db_url = app.config["SQLALCHEMY_DATABASE_URI"]
        db_type = db_url.split("://")[0] if "://" in db_url else "sqlite"

        db_ok = False
        db_error = None
        tables = []
        try:
            from sqlalchemy import inspect, text
            db.session.execute(text("SELECT 1"))
            db_ok = True
            inspector = inspect(db.engine)
            tables = inspector.get_table_names()
        except Exception as e:
            db_error = str(e)

        return jsonify({
            "status": "ok" if db_ok else "db_error",
            "database_type": db_type,
            "database_connected": db_ok,
            "database_error": db_error,
            "tables": tables,
            "startup_errors": _startup_errors,
        })

    @app.errorhandler(500)
    def internal_error(error):
        try:
            db.session.rollback()
        except Exception:
            logger.exception("Rollback failed while handling a 500 error")
        original = getattr(error, "original_exception", None) or error
        error_detail = f"{type(original).__name__}: {original}"
        logger.error(f"500 error: {error_detail}\n{traceback.format_exc()}")
        from markupsafe import escape
        return jsonify({"ok": False, "error": str(escape(error_detail))}), 500

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(db.engine)

        try:
            db.create_all()
            logger.info("Database tables created/verified.")
        except Exception as e:
            msg = f"db.create_all() failed: {e}"
            logger.error(msg)
            _startup_errors.append(msg)

        try:
            _safe_migrate()
        except Exception as e:
            msg = f"_safe_migrate() failed: {e}"
            logger.error(msg)
            _startup_errors.append(msg)

        if app.config.get("SEED_ADMIN", True):
            try:
                _seed_admin()
            except Exception as e:
                msg = f"_seed_admin() failed: {e}"
                logger.error(msg)
                _startup_errors.append(msg)

    return app


def _enable_sqlite_savepoints(engine):
    """Let SQLAlchemy own BEGIN on pysqlite so nested SAVEPOINTs roll back correctly."""
    from sqlalchemy import event

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _safe_migrate():
    """Add any missing columns for tables created by older releases."""
    from sqlalchemy import inspect, text
    inspector = inspect(db.engine)
    table_names = inspector.get_table_names()

    if "users" in table_names:
        columns = [c["name"] for c in inspector.get_columns("users")]
        if "organization_name" not in columns:
            db.session.execute(text("ALTER TABLE users ADD COLUMN organization_name VARCHAR(256)"))
            db.session.commit()

    # Indicator junction rows predating per-link units
    if "criteria_indicators" in table_names:
        columns = [c["name"] for c in inspector.get_columns("criteria_indicators")]
        if "unit" not in columns:
            db.session.execute(text("ALTER TABLE criteria_indicators ADD COLUMN unit VARCHAR(64)"))
            db.session.commit()


def _seed_admin():
    """Create default admin user if none exists."""
    from esg_app.models import User

    if not User.query.filter_by(username="admin").first():
        admin = User(
            username="admin",
            email="admin@example.com",
            role="admin",
            full_name="Administrator",
        )
        admin.set_password("admin123")
        db.session.add(admin)
        db.session.commit()
