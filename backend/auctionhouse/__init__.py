# backend/auctionhouse/__init__.py
from flask import Flask, g, request
from sqlalchemy import event

from .config import Config
from .extensions import db, migrate


def _configure_sqlite(app: Flask) -> None:
    """WAL + busy timeout so concurrent writers wait instead of failing."""
    if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        return

    @event.listens_for(db.engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.state_cache import StateCache
    from .services.sumup_client import SumUpClient

    app.extensions["auction_state_cache"] = StateCache(app.config["AUCTION_STATE_CACHE_TTL_SECONDS"])
    app.extensions["payment_provider"] = app.config.get("PAYMENT_PROVIDER") or SumUpClient.from_config(app.config)

    with app.app_context():
        _configure_sqlite(app)

    # Register blueprints
    from .routes.auctions import auctions_bp
    from .routes.items import items_bp
    from .routes.lots import lots_bp
    from .routes.settlement import settlement_bp
    from .routes.payments import payments_bp
    from .routes.audit import audit_bp

    app.register_blueprint(auctions_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(lots_bp)
    app.register_blueprint(settlement_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(audit_bp)

    from .decorators import load_identity

    @app.before_request
    def attach_identity():
        g.identity = load_identity()

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
