# backend/lunebilling/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("lunebilling").setLevel(app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Long-lived collaborators, injected once per app
    from .services.lifecycle_service import LifecycleEngine
    from .services.reporting_service import AggregationReporter
    from .services.payment_service import build_payment_gateway
    from .services.notification_service import build_email_sender

    app.extensions["lifecycle_engine"] = LifecycleEngine(db.session)
    app.extensions["aggregation_reporter"] = AggregationReporter(
        db.session,
        overdue_after_days=app.config["OVERDUE_AFTER_DAYS"],
    )
    app.extensions["payment_gateway"] = build_payment_gateway(app.config)
    app.extensions["email_sender"] = build_email_sender(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.offices import offices_bp
    from .routes.devices import devices_bp
    from .routes.usage import usage_bp
    from .routes.invoices import invoices_bp
    from .routes.payments import payments_bp
    from .routes.dashboard import dashboard_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(offices_bp)
    app.register_blueprint(devices_bp)
    app.register_blueprint(usage_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(dashboard_bp)

    allowed_origins = set(app.config["CORS_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Stripe-Signature"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
